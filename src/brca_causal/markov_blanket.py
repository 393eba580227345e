# ============================================================
# markov_blanket.py
# STEP 4: Markov blanket of the target gene
# - Read off the CPDAG (parents, children, co-parents)
# - Learned directly with IAMB (partial-correlation tests)
# - Alpha chosen by k-fold held-out prediction error
# ============================================================

import warnings
warnings.filterwarnings("ignore")

from pathlib import Path

import numpy as np
import pandas as pd
from pgmpy.estimators.CITests import pearsonr
from sklearn.linear_model import LinearRegression
from sklearn.metrics import mean_squared_error
from sklearn.model_selection import KFold

from brca_causal import settings
from brca_causal.artifacts import safe_to_csv, safe_write_json, safe_write_text, section
from brca_causal.discovery import CPDAG, load_clean, load_cpdag


# -------------------------
# Graph blanket
# -------------------------
def graph_markov_blanket(cpdag: CPDAG, target: str) -> list:
    """Parents, children and co-parents; the same for every DAG in the class"""
    if not cpdag.has_node(target):
        raise ValueError(f"Target '{target}' is not a node of the graph")
    dag = cpdag.to_dag()
    return sorted(str(n) for n in dag.get_markov_blanket(target))


# -------------------------
# IAMB
# -------------------------
def _p_value(df: pd.DataFrame, target: str, candidate: str, given: list) -> float:
    _, p_value = pearsonr(target, candidate, list(given), df, boolean=False)
    return 1.0 if np.isnan(p_value) else float(p_value)


def iamb(df: pd.DataFrame, target: str, alpha: float = settings.ALPHA) -> list:
    """
    Incremental Association Markov Blanket.
    Grow: add the most dependent candidate given the current blanket.
    Shrink: drop members independent of the target given the others.
    """
    if target not in df.columns:
        raise ValueError(f"Target '{target}' not in data")

    candidates = [c for c in df.columns if c != target]
    blanket = []

    while True:
        best, best_p = None, 1.0
        for c in candidates:
            if c in blanket:
                continue
            p = _p_value(df, target, c, blanket)
            if p < best_p:
                best, best_p = c, p
        if best is None or best_p >= alpha:
            break
        blanket.append(best)

    for member in list(blanket):
        rest = [b for b in blanket if b != member]
        if _p_value(df, target, member, rest) >= alpha:
            blanket.remove(member)

    return sorted(blanket)


# -------------------------
# Cross-validation
# -------------------------
def _heldout_mse(train: pd.DataFrame, test: pd.DataFrame, target: str, features: list) -> float:
    if not features:
        pred = np.full(len(test), train[target].mean())
    else:
        model = LinearRegression()
        model.fit(train[features].values, train[target].values)
        pred = model.predict(test[features].values)
    return float(mean_squared_error(test[target].values, pred))


def cross_validate_blanket(df: pd.DataFrame, target: str, alphas=settings.ALPHA_GRID,
                           n_splits: int = settings.CV_FOLDS, graph_blanket: list = None,
                           random_state: int = settings.RANDOM_STATE) -> pd.DataFrame:
    """Held-out MSE of predicting the target from each candidate feature set"""
    if target not in df.columns:
        raise ValueError(f"Target '{target}' not in data")

    others = [c for c in df.columns if c != target]
    kf = KFold(n_splits=n_splits, shuffle=True, random_state=random_state)
    rows = []

    for fold, (train_idx, test_idx) in enumerate(kf.split(df)):
        train, test = df.iloc[train_idx], df.iloc[test_idx]

        for alpha in alphas:
            mb = iamb(train, target, alpha=alpha)
            rows.append({"fold": fold, "method": "iamb", "alpha": alpha,
                         "n_features": len(mb), "mse": _heldout_mse(train, test, target, mb),
                         "features": ", ".join(mb)})

        rows.append({"fold": fold, "method": "all_genes", "alpha": np.nan,
                     "n_features": len(others), "mse": _heldout_mse(train, test, target, others),
                     "features": ""})
        rows.append({"fold": fold, "method": "intercept", "alpha": np.nan,
                     "n_features": 0, "mse": _heldout_mse(train, test, target, []),
                     "features": ""})
        if graph_blanket is not None:
            rows.append({"fold": fold, "method": "cpdag_blanket", "alpha": np.nan,
                         "n_features": len(graph_blanket),
                         "mse": _heldout_mse(train, test, target, list(graph_blanket)),
                         "features": ", ".join(graph_blanket)})

        print(f"  Fold {fold + 1}/{n_splits} done")

    return pd.DataFrame(rows)


def summarize_cv(cv_results: pd.DataFrame) -> pd.DataFrame:
    key = cv_results["method"] + cv_results["alpha"].map(
        lambda a: "" if pd.isna(a) else f"@{a:g}")
    return (cv_results.assign(setting=key)
            .groupby("setting", sort=False)
            .agg(mean_mse=("mse", "mean"), std_mse=("mse", "std"),
                 mean_features=("n_features", "mean"))
            .sort_values("mean_mse")
            .reset_index())


def select_alpha(cv_results: pd.DataFrame) -> float:
    """Alpha with the lowest mean IAMB error; ties go to the smaller alpha"""
    iamb_rows = cv_results[cv_results["method"] == "iamb"]
    if iamb_rows.empty:
        raise ValueError("No IAMB rows in cross-validation results")
    means = iamb_rows.groupby("alpha")["mse"].mean().reset_index()
    best = means.sort_values(["mse", "alpha"]).iloc[0]
    return float(best["alpha"])


def compare_blankets(graph_mb: list, data_mb: list) -> dict:
    a, b = set(graph_mb), set(data_mb)
    union = a | b
    return {
        "jaccard": len(a & b) / len(union) if union else 1.0,
        "both": sorted(a & b),
        "graph_only": sorted(a - b),
        "data_only": sorted(b - a),
    }


# -------------------------
# Report
# -------------------------
def generate_mb_report(target: str, graph_mb: list, data_mb: list, best_alpha: float,
                       comparison: dict, cv_summary: pd.DataFrame, output_path: Path) -> Path:
    lines = []
    lines.append("=" * 80)
    lines.append(f"MARKOV BLANKET REPORT: {target}")
    lines.append("=" * 80)
    lines.append("")

    lines.append("BLANKETS")
    lines.append("-" * 80)
    lines.append(f"From CPDAG ({len(graph_mb)}):        {', '.join(graph_mb) or '(empty)'}")
    lines.append(f"IAMB @ alpha={best_alpha:g} ({len(data_mb)}): {', '.join(data_mb) or '(empty)'}")
    lines.append(f"Jaccard overlap:         {comparison['jaccard']:.2f}")
    lines.append(f"Only in CPDAG blanket:   {', '.join(comparison['graph_only']) or '(none)'}")
    lines.append(f"Only in IAMB blanket:    {', '.join(comparison['data_only']) or '(none)'}")
    lines.append("")

    lines.append("CROSS-VALIDATED PREDICTION ERROR (held-out MSE)")
    lines.append("-" * 80)
    for row in cv_summary.to_dict("records"):
        lines.append(f"  {row['setting']:<22} {row['mean_mse']:.4f} ± {row['std_mse']:.4f}"
                     f"   ({row['mean_features']:.1f} features)")
    lines.append("")
    lines.append("=" * 80)

    return safe_write_text("\n".join(lines), output_path)


# -------------------------
# Main
# -------------------------
def main(out_dir: Path = settings.OUT_DIR, target: str = settings.TARGET_GENE,
         alphas=settings.ALPHA_GRID, n_splits: int = settings.CV_FOLDS) -> dict:
    section("STEP 4: MARKOV BLANKET DISCOVERY")

    df = load_clean(out_dir)
    cpdag = load_cpdag(out_dir, [str(c) for c in df.columns])
    print(f"\n✓ Loaded data {df.shape} and CPDAG {cpdag}")

    graph_mb = graph_markov_blanket(cpdag, target)
    print(f"✓ CPDAG blanket of {target}: {graph_mb or '(empty)'}")

    print(f"\n⚙️  {n_splits}-fold cross-validation over alpha={list(alphas)}")
    cv_results = cross_validate_blanket(df, target, alphas=alphas, n_splits=n_splits,
                                        graph_blanket=graph_mb)
    cv_summary = summarize_cv(cv_results)
    best_alpha = select_alpha(cv_results)
    print(f"✓ Selected alpha: {best_alpha:g}")

    data_mb = iamb(df, target, alpha=best_alpha)
    print(f"✓ IAMB blanket of {target}: {data_mb or '(empty)'}")

    comparison = compare_blankets(graph_mb, data_mb)
    print(f"✓ Jaccard overlap: {comparison['jaccard']:.2f}")

    summary = {
        "target": target,
        "graph_blanket": graph_mb,
        "iamb_blanket": data_mb,
        "iamb_alpha": best_alpha,
        "comparison": comparison,
    }
    print(f"\n✓ Saved: {safe_write_json(summary, out_dir / settings.MB_JSON_FILE)}")
    print(f"✓ Saved: {safe_to_csv(cv_results, out_dir / settings.MB_CV_FILE)}")
    print(f"✓ Saved: {generate_mb_report(target, graph_mb, data_mb, best_alpha, comparison, cv_summary, out_dir / settings.MB_REPORT_FILE)}")

    return summary


if __name__ == "__main__":
    main()
