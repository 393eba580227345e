# ============================================================
# ida.py
# STEP 3: Causal effect bounds over the CPDAG (IDA)
# - One linear-regression effect per locally valid parent set
# - Conservative lower bound = min |effect|
# - Single-DAG cross-check with DoWhy backdoor.linear_regression
# ============================================================

import warnings
warnings.filterwarnings("ignore")

from dataclasses import dataclass, field
from itertools import combinations
from pathlib import Path

import networkx as nx
import numpy as np
import pandas as pd
from dowhy import CausalModel
from sklearn.linear_model import LinearRegression

from brca_causal import settings
from brca_causal.artifacts import safe_to_csv, safe_write_json, safe_write_text, section
from brca_causal.discovery import CPDAG, load_clean, load_cpdag


@dataclass
class IDAResult:
    cause: str
    effect_on: str
    effects: list = field(default_factory=list)
    adjustment_sets: list = field(default_factory=list)

    @property
    def min_effect(self) -> float:
        return float(min(self.effects))

    @property
    def max_effect(self) -> float:
        return float(max(self.effects))

    @property
    def min_abs_effect(self) -> float:
        """Lower bound on the effect magnitude across the equivalence class"""
        return float(min(abs(e) for e in self.effects))

    @property
    def sign_consistent(self) -> bool:
        return all(e > 0 for e in self.effects) or all(e < 0 for e in self.effects)

    def as_row(self) -> dict:
        return {
            "cause": self.cause,
            "effect_on": self.effect_on,
            "n_dags": len(self.effects),
            "min_effect": self.min_effect,
            "max_effect": self.max_effect,
            "min_abs_effect": self.min_abs_effect,
            "sign_consistent": self.sign_consistent,
            "effects": "; ".join(f"{e:+.4f}" for e in self.effects),
        }


# -------------------------
# Parent-set enumeration
# -------------------------
def _creates_new_collider(cpdag: CPDAG, x: str, parents: list, into_x: tuple, out_of_x: list) -> bool:
    # siblings turned into parents must be adjacent to the fixed parents and to each other
    for s in into_x:
        for p in parents:
            if not cpdag.adjacent(s, p):
                return True
    for a, b in combinations(into_x, 2):
        if not cpdag.adjacent(a, b):
            return True

    # x -> f <- p with p not adjacent to x
    for f in out_of_x:
        for p in cpdag.parents(f):
            if p != x and not cpdag.adjacent(p, x):
                return True
    return False


def valid_parent_sets(cpdag: CPDAG, x: str) -> list:
    """
    All parent sets of x over the DAGs in the equivalence class, found
    locally: pa(x) plus each subset of the undirected neighbours that can
    be oriented into x without introducing a new v-structure.
    """
    if not cpdag.has_node(x):
        raise ValueError(f"'{x}' is not a node of the graph")

    parents = cpdag.parents(x)
    siblings = cpdag.siblings(x)

    sets = []
    for k in range(len(siblings) + 1):
        for into_x in combinations(siblings, k):
            out_of_x = [s for s in siblings if s not in into_x]
            if _creates_new_collider(cpdag, x, parents, into_x, out_of_x):
                continue
            sets.append(sorted(set(parents) | set(into_x)))
    return sets


# -------------------------
# Effect estimation
# -------------------------
def causal_effect(df: pd.DataFrame, x: str, y: str, adjustment: list) -> float:
    """OLS coefficient of x in y ~ x + adjustment"""
    if y in adjustment:
        return 0.0
    X = df[[x] + list(adjustment)].values.astype(float)
    target = df[y].values.astype(float)
    model = LinearRegression()
    model.fit(X, target)
    return float(model.coef_[0])


def ida(df: pd.DataFrame, cpdag: CPDAG, x: str, y: str) -> IDAResult:
    if x == y:
        raise ValueError("Cause and outcome must differ")
    for node in (x, y):
        if not cpdag.has_node(node):
            raise ValueError(f"'{node}' is not a node of the graph")
        if node not in df.columns:
            raise ValueError(f"'{node}' is not a column of the data")

    result = IDAResult(cause=x, effect_on=y)
    for adjustment in valid_parent_sets(cpdag, x):
        result.effects.append(causal_effect(df, x, y, adjustment))
        result.adjustment_sets.append(adjustment)
    return result


def ida_to_target(df: pd.DataFrame, cpdag: CPDAG, target: str) -> pd.DataFrame:
    """Effect of every other gene on the target"""
    rows = [ida(df, cpdag, gene, target).as_row() for gene in cpdag.nodes if gene != target]
    return _rank(pd.DataFrame(rows))


def ida_from_target(df: pd.DataFrame, cpdag: CPDAG, target: str) -> pd.DataFrame:
    """Effect of the target on every other gene (parent sets of the target are reused)"""
    parent_sets = valid_parent_sets(cpdag, target)
    rows = []
    for gene in cpdag.nodes:
        if gene == target:
            continue
        result = IDAResult(cause=target, effect_on=gene)
        for adjustment in parent_sets:
            result.effects.append(causal_effect(df, target, gene, adjustment))
            result.adjustment_sets.append(adjustment)
        rows.append(result.as_row())
    return _rank(pd.DataFrame(rows))


def _rank(table: pd.DataFrame) -> pd.DataFrame:
    if table.empty:
        return table
    return (table.sort_values(["min_abs_effect", "cause", "effect_on"],
                              ascending=[False, True, True])
            .reset_index(drop=True))


# -------------------------
# Single-DAG cross-check (DoWhy)
# -------------------------
def estimate_effect_in_dag(df: pd.DataFrame, dag_edges, treatment: str, outcome: str,
                           method: str = "backdoor.linear_regression",
                           adjustment: list = None) -> dict:
    """
    DoWhy estimate of treatment -> outcome in one DAG.
    With `adjustment` (e.g. the treatment's parents in that DAG) the backdoor
    set is fixed instead of DoWhy's default choice.
    """
    graph = nx.DiGraph()
    graph.add_nodes_from(df.columns)
    graph.add_edges_from(dag_edges)

    res = {
        "treatment": treatment,
        "outcome": outcome,
        "method": method,
        "effect": None,
        "backdoor_set": [],
        "error": None,
    }

    if adjustment is not None and outcome in adjustment:
        # outcome is a parent of the treatment: no causal path
        res["effect"] = 0.0
        res["backdoor_set"] = sorted(adjustment)
        return res

    try:
        model = CausalModel(
            data=df,
            treatment=treatment,
            outcome=outcome,
            graph=graph,
            proceed_when_unidentifiable=True,
        )
        identified_estimand = model.identify_effect()
        if adjustment is not None:
            identified_estimand.set_backdoor_variables(sorted(adjustment), key="backdoor")
        bset = identified_estimand.get_backdoor_variables(key="backdoor")
        res["backdoor_set"] = sorted(bset) if bset else []

        estimate = model.estimate_effect(identified_estimand, method_name=method)
        res["effect"] = float(estimate.value)
    except Exception as e:
        res["error"] = str(e)

    return res


def cross_check_with_dowhy(df: pd.DataFrame, cpdag: CPDAG, dag, target: str,
                           rows: pd.DataFrame, tol: float = 1e-6) -> list:
    """
    Re-estimate effects on the target with DoWhy in one DAG of the class,
    adjusting for each cause's parents in that DAG. The estimate must equal
    one member of the cause's IDA multiset.
    """
    dag_edges = list(dag.edges())
    results = []
    for row in rows.to_dict("records"):
        cause = row["cause"]
        parents = sorted(str(p) for p in dag.get_parents(cause))
        res = estimate_effect_in_dag(df, dag_edges, cause, target, adjustment=parents)
        if res["effect"] is not None:
            effects = ida(df, cpdag, cause, target).effects
            inside = any(abs(e - res["effect"]) <= tol for e in effects)
            res["within_ida_range"] = bool(inside)
            print(f"  DoWhy {cause} → {target}: {res['effect']:+.4f} "
                  f"({'matches' if inside else 'differs from'} IDA multiset)")
        else:
            print(f"  ⚠️  DoWhy {cause} → {target} failed: {res['error']}")
        results.append(res)
    return results


# -------------------------
# Interpretation
# -------------------------
def interpret_effect(row: dict) -> str:
    bound = row["min_abs_effect"]
    magnitude = "negligible" if bound < 0.05 else ("small" if bound < 0.2 else
                                                  ("moderate" if bound < 0.5 else "large"))
    if row["min_effect"] == 0.0 and row["max_effect"] == 0.0:
        return (f"{row['cause']} → {row['effect_on']}: no causal effect "
                f"(outcome is in every parent set)")
    if not row["sign_consistent"]:
        return (f"{row['cause']} → {row['effect_on']}: sign not identified "
                f"(effects range {row['min_effect']:+.3f} to {row['max_effect']:+.3f})")
    direction = "raises" if row["min_effect"] > 0 else "lowers"
    return (f"{row['cause']} → {row['effect_on']}: +1 SD {direction} expression by at least "
            f"{bound:.3f} SD ({magnitude})")


def generate_ida_report(to_target: pd.DataFrame, from_target: pd.DataFrame,
                        target: str, cross_check: list, output_path: Path,
                        top: int = 10) -> Path:
    lines = []
    lines.append("=" * 80)
    lines.append("IDA CAUSAL EFFECT REPORT")
    lines.append("=" * 80)
    lines.append("")
    lines.append("NOTE")
    lines.append("-" * 80)
    lines.append("Each gene gets one regression effect per DAG-consistent parent set.")
    lines.append("min |effect| is the conservative bound; a bound of 0 means some DAG")
    lines.append("in the equivalence class has no causal path.")
    lines.append("")

    for title, table in ((f"EFFECTS ON {target}", to_target),
                         (f"EFFECTS OF {target}", from_target)):
        lines.append(title)
        lines.append("-" * 80)
        if table.empty:
            lines.append("No effects computed.")
        else:
            for i, row in enumerate(table.head(top).to_dict("records"), 1):
                lines.append(f"{i:>2}. {interpret_effect(row)}")
                lines.append(f"    effects: {row['effects']}")
        lines.append("")

    lines.append("SINGLE-DAG CROSS-CHECK (DoWhy)")
    lines.append("-" * 80)
    if not cross_check:
        lines.append("No cross-checks run.")
    for r in cross_check:
        if r.get("error"):
            lines.append(f"• {r['treatment']} → {r['outcome']}: failed ({r['error']})")
        else:
            lines.append(f"• {r['treatment']} → {r['outcome']}: {r['effect']:+.4f} "
                         f"(adjusted for: {', '.join(r['backdoor_set']) or 'nothing'}; "
                         f"{'matches' if r.get('within_ida_range') else 'differs from'} IDA)")
    lines.append("")

    return safe_write_text("\n".join(lines), output_path)


# -------------------------
# Main
# -------------------------
def main(out_dir: Path = settings.OUT_DIR, target: str = settings.TARGET_GENE,
         n_cross_check: int = 3) -> dict:
    section("STEP 3: IDA CAUSAL EFFECT ESTIMATION")

    df = load_clean(out_dir)
    cpdag = load_cpdag(out_dir, [str(c) for c in df.columns])
    print(f"\n✓ Loaded data {df.shape} and CPDAG {cpdag}")

    to_target = ida_to_target(df, cpdag, target)
    print(f"✓ Effects on {target}: {len(to_target)} genes")
    from_target = ida_from_target(df, cpdag, target)
    print(f"✓ Effects of {target}: {len(from_target)} genes")

    for row in to_target.head(5).to_dict("records"):
        print(f"  {interpret_effect(row)}")

    dag = cpdag.to_dag()
    cross_check = cross_check_with_dowhy(df, cpdag, dag, target, to_target.head(n_cross_check))

    summary = {
        "target": target,
        "to_target": {r["cause"]: r["min_abs_effect"] for r in to_target.to_dict("records")},
        "from_target": {r["effect_on"]: r["min_abs_effect"] for r in from_target.to_dict("records")},
        "cross_check": cross_check,
    }

    print(f"\n✓ Saved: {safe_to_csv(to_target, out_dir / settings.IDA_TO_TARGET_FILE)}")
    print(f"✓ Saved: {safe_to_csv(from_target, out_dir / settings.IDA_FROM_TARGET_FILE)}")
    print(f"✓ Saved: {safe_write_json(summary, out_dir / settings.IDA_JSON_FILE)}")
    print(f"✓ Saved: {generate_ida_report(to_target, from_target, target, cross_check, out_dir / settings.IDA_REPORT_FILE)}")

    return {"to_target": to_target, "from_target": from_target, "cross_check": cross_check}


if __name__ == "__main__":
    main()
