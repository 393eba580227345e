# ============================================================
# clean.py
# STEP 1: Load & validate the gene-expression table
# ============================================================

import warnings
warnings.filterwarnings("ignore")

from pathlib import Path
from typing import Tuple

import numpy as np
import pandas as pd
from sklearn.preprocessing import StandardScaler

from brca_causal import settings
from brca_causal.artifacts import safe_to_csv, safe_write_text, section


# ------------------------------------------------------------
# Configuration
# ------------------------------------------------------------
class ExpressionRules:
    """Thresholds applied to every gene column"""
    MAX_MISSING_FRACTION = 0.2
    MIN_VARIANCE = 1e-8
    LOG_THRESHOLD = 100.0   # raw intensities / counts above this get log2(x+1)
    MIN_SAMPLES = 20
    OUTLIER_Z = 3.0


ID_COLUMNS = {"id", "sample", "sample_id", "patient", "patient_id"}


# ------------------------------------------------------------
# Load
# ------------------------------------------------------------
def load_expression(path: Path, transpose: bool = False) -> pd.DataFrame:
    """Load a samples x genes table (CSV or TSV)"""
    if not path.exists():
        raise FileNotFoundError(f"❌ Expression file not found: {path}")

    sep = "\t" if path.suffix.lower() in (".tsv", ".txt") else ","
    df = pd.read_csv(path, sep=sep)

    if df.empty:
        raise ValueError(f"❌ Expression file is empty: {path}")

    first = df.columns[0]
    if str(first).lower() in ID_COLUMNS or str(first).startswith("Unnamed") \
            or not pd.api.types.is_numeric_dtype(df[first]):
        df = df.set_index(first)
        df.index.name = "sample"

    if transpose:
        df = df.T
        df.index.name = "sample"

    df.columns = [str(c).strip() for c in df.columns]
    df = df.loc[:, ~pd.Index(df.columns).duplicated()]
    return df


# ------------------------------------------------------------
# Validation
# ------------------------------------------------------------
def validate_expression(df: pd.DataFrame) -> Tuple[pd.DataFrame, dict]:
    """Drop unusable genes, impute the rest and return clean data + report"""
    report = {
        "total_rows": len(df),
        "total_columns": df.shape[1],
        "dropped": {},
    }

    numeric = df.apply(pd.to_numeric, errors="coerce")
    non_numeric = [c for c in df.columns if numeric[c].isna().all() and not df[c].isna().all()]
    report["dropped"]["non_numeric"] = non_numeric
    numeric = numeric.drop(columns=non_numeric)

    missing_frac = numeric.isna().mean()
    too_sparse = missing_frac[missing_frac > ExpressionRules.MAX_MISSING_FRACTION].index.tolist()
    report["dropped"]["too_many_missing"] = too_sparse
    numeric = numeric.drop(columns=too_sparse)

    report["imputed_values"] = int(numeric.isna().sum().sum())
    numeric = numeric.fillna(numeric.median())

    variances = numeric.var()
    constant = variances[variances <= ExpressionRules.MIN_VARIANCE].index.tolist()
    report["dropped"]["constant"] = constant
    numeric = numeric.drop(columns=constant)

    if len(numeric) < ExpressionRules.MIN_SAMPLES:
        raise ValueError(
            f"❌ Only {len(numeric)} samples; need at least {ExpressionRules.MIN_SAMPLES}"
        )
    if numeric.shape[1] < 2:
        raise ValueError(f"❌ Only {numeric.shape[1]} usable gene(s) left after cleaning")

    report["kept_rows"] = len(numeric)
    report["kept_genes"] = numeric.shape[1]
    return numeric, report


def log_transform_if_raw(df: pd.DataFrame) -> Tuple[pd.DataFrame, bool]:
    """log2(x + 1) when the table looks like raw intensities"""
    values = df.values
    if np.nanmax(values) > ExpressionRules.LOG_THRESHOLD and np.nanmin(values) >= 0:
        return np.log2(df + 1.0), True
    return df, False


def standardize(df: pd.DataFrame) -> pd.DataFrame:
    """z-score every gene; effects downstream are in SD units"""
    scaler = StandardScaler()
    scaled = scaler.fit_transform(df.values.astype(float))
    return pd.DataFrame(scaled, index=df.index, columns=df.columns)


def detect_outliers(df: pd.DataFrame, threshold: float = ExpressionRules.OUTLIER_Z) -> pd.Series:
    """Count |z| > threshold per gene (reported, never removed)"""
    z_scores = np.abs((df - df.mean()) / df.std(ddof=0))
    return (z_scores > threshold).sum().astype(int)


def prepare_expression(df_raw: pd.DataFrame, scale: bool = True) -> Tuple[pd.DataFrame, dict]:
    df_clean, report = validate_expression(df_raw)
    df_clean, logged = log_transform_if_raw(df_clean)
    report["log_transformed"] = logged
    report["outliers"] = detect_outliers(df_clean).to_dict()
    if scale:
        df_clean = standardize(df_clean)
    report["standardized"] = scale
    return df_clean, report


# ------------------------------------------------------------
# Reporting
# ------------------------------------------------------------
def generate_report(df_clean: pd.DataFrame, report: dict, output_path: Path) -> str:
    lines = []
    lines.append("=" * 80)
    lines.append("DATA CLEANING REPORT")
    lines.append("=" * 80)
    lines.append("")

    lines.append("DATASET OVERVIEW")
    lines.append("-" * 80)
    lines.append(f"Samples (raw):        {report['total_rows']:,}")
    lines.append(f"Columns (raw):        {report['total_columns']:,}")
    lines.append(f"Samples kept:         {report['kept_rows']:,}")
    lines.append(f"Genes kept:           {report['kept_genes']:,}")
    lines.append(f"Imputed values:       {report['imputed_values']:,}")
    lines.append(f"log2(x+1) applied:    {report['log_transformed']}")
    lines.append(f"Standardized:         {report['standardized']}")
    lines.append("")

    lines.append("DROPPED COLUMNS")
    lines.append("-" * 80)
    for reason, cols in report["dropped"].items():
        shown = ", ".join(cols) if cols else "(none)"
        lines.append(f"{reason:.<30} {shown}")
    lines.append("")

    lines.append(f"OUTLIERS (|z| > {ExpressionRules.OUTLIER_Z:g}, kept)")
    lines.append("-" * 80)
    flagged = {g: n for g, n in report["outliers"].items() if n > 0}
    if not flagged:
        lines.append("No outlying values.")
    for gene, n in sorted(flagged.items(), key=lambda kv: -kv[1])[:15]:
        lines.append(f"  {gene:<15} {n:>5}")
    lines.append("")

    lines.append("GENES")
    lines.append("-" * 80)
    lines.append(", ".join(df_clean.columns))
    lines.append("")
    lines.append("=" * 80)

    report_text = "\n".join(lines)
    safe_write_text(report_text, output_path)
    return report_text


# ------------------------------------------------------------
# Main
# ------------------------------------------------------------
def main(data_path: Path = settings.DATA_PATH, out_dir: Path = settings.OUT_DIR,
         transpose: bool = False, scale: bool = True) -> pd.DataFrame:
    section("STEP 1: LOAD & VALIDATE EXPRESSION DATA")

    df_raw = load_expression(data_path, transpose=transpose)
    print(f"\n✓ Loaded raw data: {df_raw.shape}")

    df_clean, report = prepare_expression(df_raw, scale=scale)
    n_dropped = sum(len(v) for v in report["dropped"].values())
    print(f"✓ Validated data: {df_clean.shape} (dropped {n_dropped} column(s))")
    if report["log_transformed"]:
        print("✓ Applied log2(x + 1) to raw intensities")

    saved = safe_to_csv(df_clean, out_dir / settings.CLEAN_FILE, index=True)
    print(f"✓ Saved clean data: {saved}")

    generate_report(df_clean, report, out_dir / settings.CLEAN_REPORT_FILE)
    print(f"✓ Generated report: {out_dir / settings.CLEAN_REPORT_FILE}")

    return df_clean


if __name__ == "__main__":
    main()
