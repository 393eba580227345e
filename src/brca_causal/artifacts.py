# ============================================================
# artifacts.py
# Output writers that survive locked files + table loaders
# ============================================================

import json
from pathlib import Path
from typing import Callable

import pandas as pd


# -------------------------
# Lock-tolerant writers
# -------------------------
def safe_path_if_locked(path: Path) -> Path:
    """First free sibling name: name__new.ext, name__new2.ext, ..."""
    if not path.exists():
        return path

    candidates = [f"{path.stem}__new{path.suffix}"]
    candidates += [f"{path.stem}__new{i}{path.suffix}" for i in range(2, 1000)]
    for name in candidates:
        if not (path.parent / name).exists():
            return path.parent / name
    return path.parent / candidates[-1]


def write_with_fallback(path: Path, writer: Callable[[Path], None]) -> Path:
    """
    Run writer(path); if the file is locked (PermissionError), run it again
    on a fresh sibling name. Returns the path actually written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        writer(path)
        return path
    except PermissionError:
        new_path = safe_path_if_locked(path)
        writer(new_path)
        print(f"⚠️  Permission denied writing {path} (file may be open/locked).")
        print(f"✅ Saved instead to: {new_path}")
        return new_path


def safe_to_csv(df: pd.DataFrame, path: Path, index: bool = False) -> Path:
    return write_with_fallback(path, lambda p: df.to_csv(p, index=index))


def safe_write_text(text: str, path: Path, encoding: str = "utf-8") -> Path:
    return write_with_fallback(path, lambda p: p.write_text(text, encoding=encoding))


def _dump_json(obj, p: Path, encoding: str):
    with open(p, "w", encoding=encoding) as f:
        json.dump(obj, f, indent=2, ensure_ascii=False)


def safe_write_json(obj: dict, path: Path, encoding: str = "utf-8") -> Path:
    return write_with_fallback(path, lambda p: _dump_json(obj, p, encoding))


# -------------------------
# Loaders
# -------------------------
def load_csv(path: Path, required: set = None, index_col=None) -> pd.DataFrame:
    if not path.exists():
        raise FileNotFoundError(f"Missing: {path}")
    df = pd.read_csv(path, index_col=index_col)
    if required:
        missing = set(required) - set(df.columns)
        if missing:
            raise ValueError(f"{path.name} is missing columns: {sorted(missing)}")
    return df


def load_json(path: Path) -> dict:
    if not path.exists():
        raise FileNotFoundError(f"Missing: {path}")
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def section(title: str):
    print("\n" + "=" * 80)
    print(title)
    print("=" * 80)
