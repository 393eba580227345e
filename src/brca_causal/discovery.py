# ============================================================
# discovery.py
# STEP 2: Constraint-based causal discovery (PC -> CPDAG)
# Gaussian partial-correlation tests + alpha sweep + bootstrap stability
# ============================================================

import warnings
warnings.filterwarnings("ignore")

from collections import Counter
from pathlib import Path

import networkx as nx
import numpy as np
import pandas as pd
from pgmpy.base import PDAG
from pgmpy.estimators import PC

from brca_causal import settings
from brca_causal.artifacts import load_csv, safe_to_csv, safe_write_text, section


# ============================================================
# CPDAG container
# ============================================================
class CPDAG:
    """
    Completed partially directed acyclic graph over gene names.
    Undirected edges are stored once, with sorted endpoints.
    """

    def __init__(self, nodes, directed=(), undirected=()):
        self.nodes = list(nodes)
        self.directed = {(str(u), str(v)) for u, v in directed}
        self.undirected = {tuple(sorted((str(u), str(v)))) for u, v in undirected}

        overlap = {e for e in self.directed if tuple(sorted(e)) in self.undirected}
        if overlap:
            raise ValueError(f"Edges both directed and undirected: {sorted(overlap)}")

        unknown = {n for e in self.directed | self.undirected for n in e} - set(self.nodes)
        if unknown:
            raise ValueError(f"Edges reference unknown nodes: {sorted(unknown)}")

    def __repr__(self):
        return (f"CPDAG(nodes={len(self.nodes)}, directed={len(self.directed)}, "
                f"undirected={len(self.undirected)})")

    @classmethod
    def from_pdag(cls, pdag, nodes=None) -> "CPDAG":
        """pgmpy stores an undirected edge as a pair of opposite arcs"""
        edges = {(str(u), str(v)) for u, v in pdag.edges()}
        directed, undirected = set(), set()
        for u, v in edges:
            if (v, u) in edges:
                undirected.add(tuple(sorted((u, v))))
            else:
                directed.add((u, v))
        if nodes is None:
            nodes = [str(n) for n in pdag.nodes()]
        return cls(nodes, directed, undirected)

    # -------------------------
    # Local structure
    # -------------------------
    def parents(self, node: str) -> list:
        return sorted(u for u, v in self.directed if v == node)

    def children(self, node: str) -> list:
        return sorted(v for u, v in self.directed if u == node)

    def siblings(self, node: str) -> list:
        out = []
        for u, v in self.undirected:
            if u == node:
                out.append(v)
            elif v == node:
                out.append(u)
        return sorted(out)

    def neighbours(self, node: str) -> list:
        return sorted(set(self.parents(node)) | set(self.children(node)) | set(self.siblings(node)))

    def adjacent(self, a: str, b: str) -> bool:
        return ((a, b) in self.directed or (b, a) in self.directed
                or tuple(sorted((a, b))) in self.undirected)

    def has_node(self, node: str) -> bool:
        return node in self.nodes

    # -------------------------
    # Conversions
    # -------------------------
    def skeleton(self) -> nx.Graph:
        G = nx.Graph()
        G.add_nodes_from(self.nodes)
        G.add_edges_from(self.directed)
        G.add_edges_from(self.undirected)
        return G

    def directed_part(self) -> nx.DiGraph:
        G = nx.DiGraph()
        G.add_nodes_from(self.nodes)
        G.add_edges_from(self.directed)
        return G

    def to_dag(self):
        """One member of the equivalence class (pgmpy Dor-Tarsi extension)"""
        pdag = PDAG(directed_ebunch=sorted(self.directed),
                    undirected_ebunch=sorted(self.undirected))
        dag = pdag.to_dag()
        dag.add_nodes_from(self.nodes)
        return dag

    def to_frame(self) -> pd.DataFrame:
        rows = [{"source": u, "target": v, "type": "directed"} for u, v in sorted(self.directed)]
        rows += [{"source": u, "target": v, "type": "undirected"} for u, v in sorted(self.undirected)]
        return pd.DataFrame(rows, columns=["source", "target", "type"])

    @classmethod
    def from_frame(cls, edges_df: pd.DataFrame, nodes) -> "CPDAG":
        if not {"source", "target", "type"}.issubset(edges_df.columns):
            raise ValueError("Edges file must have 'source', 'target' and 'type' columns")
        kinds = set(edges_df["type"].unique()) - {"directed", "undirected"}
        if kinds:
            raise ValueError(f"Unknown edge types: {sorted(kinds)}")
        directed = edges_df[edges_df["type"] == "directed"]
        undirected = edges_df[edges_df["type"] == "undirected"]
        return cls(
            nodes,
            zip(directed["source"].astype(str), directed["target"].astype(str)),
            zip(undirected["source"].astype(str), undirected["target"].astype(str)),
        )


# ============================================================
# PC Algorithm (Constraint-based)
# ============================================================
def run_pc(df: pd.DataFrame, alpha: float = settings.ALPHA,
           max_cond_vars: int = settings.MAX_COND_VARS,
           variant: str = "stable", verbose: bool = True) -> CPDAG:
    """
    PC (Peter-Clark) algorithm with Gaussian partial-correlation tests.
    Returns the CPDAG (skeleton + orientations by v-structures and Meek rules).
    """
    if verbose:
        print(f"  Running PC on {len(df)} samples x {df.shape[1]} genes...")
        print(f"  Parameters: variant={variant}, alpha={alpha}, max_cond_vars={max_cond_vars}")

    pc = PC(data=df)
    pdag = pc.estimate(
        variant=variant,
        ci_test="pearsonr",
        max_cond_vars=max_cond_vars,
        significance_level=alpha,
        return_type="pdag",
        show_progress=False,
    )
    cpdag = CPDAG.from_pdag(pdag, nodes=[str(c) for c in df.columns])

    if verbose:
        print(f"✓ PC complete: {len(cpdag.directed)} directed + "
              f"{len(cpdag.undirected)} undirected edges")
    return cpdag


def alpha_sweep(df: pd.DataFrame, alphas=settings.ALPHA_GRID,
                max_cond_vars: int = settings.MAX_COND_VARS) -> pd.DataFrame:
    """Edge counts of the CPDAG across significance levels"""
    rows = []
    for alpha in alphas:
        cpdag = run_pc(df, alpha=alpha, max_cond_vars=max_cond_vars, verbose=False)
        rows.append({
            "alpha": alpha,
            "directed": len(cpdag.directed),
            "undirected": len(cpdag.undirected),
            "total": len(cpdag.directed) + len(cpdag.undirected),
        })
        print(f"  alpha={alpha:<8g} → {rows[-1]['total']:>3} edges "
              f"({rows[-1]['directed']} directed)")
    return pd.DataFrame(rows)


def bootstrap_edges(df: pd.DataFrame, alpha: float = settings.ALPHA,
                    n_boot: int = settings.N_BOOTSTRAP,
                    max_cond_vars: int = settings.MAX_COND_VARS,
                    random_state: int = settings.RANDOM_STATE,
                    failures: list = None) -> pd.DataFrame:
    """
    Skeleton edge frequencies over row resamples. Replicates where PC fails
    are skipped; their error strings are appended to `failures` when given.
    """
    rng = np.random.RandomState(random_state)
    votes = Counter()
    completed = 0

    for b in range(n_boot):
        idx = rng.randint(0, len(df), size=len(df))
        sample = df.iloc[idx].reset_index(drop=True)
        try:
            cpdag = run_pc(sample, alpha=alpha, max_cond_vars=max_cond_vars, verbose=False)
        except Exception as e:
            print(f"  ⚠️  Bootstrap replicate {b} failed: {e}")
            if failures is not None:
                failures.append(f"replicate {b}: {e}")
            continue
        completed += 1
        for u, v in cpdag.skeleton().edges():
            votes[tuple(sorted((u, v)))] += 1

    print(f"✓ Bootstrap complete: {completed}/{n_boot} replicates")
    if completed == 0:
        return pd.DataFrame(columns=["source", "target", "frequency"])

    rows = [{"source": u, "target": v, "frequency": count / completed}
            for (u, v), count in votes.items()]
    return (pd.DataFrame(rows, columns=["source", "target", "frequency"])
            .sort_values(["frequency", "source", "target"], ascending=[False, True, True])
            .reset_index(drop=True))


# ============================================================
# Summaries
# ============================================================
def target_neighbourhood(cpdag: CPDAG, target: str) -> dict:
    if not cpdag.has_node(target):
        raise ValueError(f"Target '{target}' is not a node of the graph")
    return {
        "parents": cpdag.parents(target),
        "children": cpdag.children(target),
        "siblings": cpdag.siblings(target),
    }


def validate_cpdag(cpdag: CPDAG, target: str) -> dict:
    skeleton = cpdag.skeleton()
    n_nodes = skeleton.number_of_nodes()
    return {
        "is_acyclic": nx.is_directed_acyclic_graph(cpdag.directed_part()),
        "num_nodes": n_nodes,
        "num_directed": len(cpdag.directed),
        "num_undirected": len(cpdag.undirected),
        "avg_degree": sum(dict(skeleton.degree()).values()) / n_nodes if n_nodes else 0.0,
        "isolated": sorted(nx.isolates(skeleton)),
        "has_target": cpdag.has_node(target),
        "target_degree": skeleton.degree(target) if cpdag.has_node(target) else 0,
    }


def generate_discovery_report(cpdag: CPDAG, target: str, validation: dict,
                              sweep: pd.DataFrame, boot: pd.DataFrame,
                              alpha: float, output_path: Path,
                              failures: list = None) -> str:
    lines = []
    lines.append("=" * 80)
    lines.append("CAUSAL DISCOVERY REPORT (PC ALGORITHM)")
    lines.append("=" * 80)
    lines.append("")

    lines.append("METHODOLOGY")
    lines.append("-" * 80)
    lines.append("PC-stable with Gaussian partial-correlation (Fisher) tests.")
    lines.append(f"Significance level alpha = {alpha}")
    lines.append("Output is a CPDAG: directed edges are shared by every DAG in the")
    lines.append("equivalence class, undirected edges could point either way.")
    lines.append("")

    lines.append("GRAPH SUMMARY")
    lines.append("-" * 80)
    lines.append(f"Nodes:                    {validation['num_nodes']:>4}")
    lines.append(f"Directed edges:           {validation['num_directed']:>4}")
    lines.append(f"Undirected edges:         {validation['num_undirected']:>4}")
    lines.append(f"Average degree:           {validation['avg_degree']:>7.2f}")
    lines.append(f"Directed part acyclic:    {validation['is_acyclic']}")
    lines.append(f"Isolated genes:           {', '.join(validation['isolated']) or '(none)'}")
    lines.append("")

    if validation["has_target"]:
        hood = target_neighbourhood(cpdag, target)
        lines.append(f"NEIGHBOURHOOD OF {target}")
        lines.append("-" * 80)
        lines.append(f"Parents:   {', '.join(hood['parents']) or '(none)'}")
        lines.append(f"Children:  {', '.join(hood['children']) or '(none)'}")
        lines.append(f"Undirected: {', '.join(hood['siblings']) or '(none)'}")
        lines.append("")

    lines.append("ALPHA SWEEP")
    lines.append("-" * 80)
    for _, row in sweep.iterrows():
        lines.append(f"alpha={row['alpha']:<8g} total={int(row['total']):>4}  "
                     f"directed={int(row['directed']):>4}  undirected={int(row['undirected']):>4}")
    lines.append("")

    lines.append("BOOTSTRAP EDGE STABILITY")
    lines.append("-" * 80)
    if boot.empty:
        lines.append("No bootstrap replicates available.")
    else:
        stable = boot[boot["frequency"] >= settings.BOOTSTRAP_MIN_FREQ]
        lines.append(f"Edges seen in >= {settings.BOOTSTRAP_MIN_FREQ:.0%} of replicates: {len(stable)}")
        for _, row in boot.head(15).iterrows():
            lines.append(f"  {row['source']:>12} -- {row['target']:<12} {row['frequency']:.2f}")
    if failures:
        lines.append(f"Failed replicates: {len(failures)}")
        for msg in failures:
            lines.append(f"  ⚠️  {msg}")
    lines.append("")
    lines.append("=" * 80)

    report_text = "\n".join(lines)
    safe_write_text(report_text, output_path)
    return report_text


# ============================================================
# Main
# ============================================================
def load_clean(out_dir: Path) -> pd.DataFrame:
    return load_csv(out_dir / settings.CLEAN_FILE, index_col=0)


def main(out_dir: Path = settings.OUT_DIR, target: str = settings.TARGET_GENE,
         alpha: float = settings.ALPHA, n_boot: int = settings.N_BOOTSTRAP) -> CPDAG:
    section("STEP 2: CAUSAL DISCOVERY (PC ALGORITHM)")

    df = load_clean(out_dir)
    print(f"\n✓ Loaded cleaned data: {df.shape}")
    if target not in df.columns:
        raise ValueError(f"Target gene '{target}' not in cleaned data")

    section("STEP 2A: CPDAG")
    cpdag = run_pc(df, alpha=alpha)
    hood = target_neighbourhood(cpdag, target)
    print(f"  Parents of {target}:    {hood['parents'] or '(none)'}")
    print(f"  Children of {target}:   {hood['children'] or '(none)'}")
    print(f"  Undirected at {target}: {hood['siblings'] or '(none)'}")

    section("STEP 2B: ALPHA SWEEP")
    sweep = alpha_sweep(df)

    section("STEP 2C: BOOTSTRAP STABILITY")
    boot_failures = []
    boot = bootstrap_edges(df, alpha=alpha, n_boot=n_boot, failures=boot_failures)

    validation = validate_cpdag(cpdag, target)
    print(f"\n✓ Directed part acyclic: {validation['is_acyclic']}")

    section("SAVING RESULTS")
    print(f"✓ Saved: {safe_to_csv(cpdag.to_frame(), out_dir / settings.CPDAG_FILE)}")
    print(f"✓ Saved: {safe_to_csv(sweep, out_dir / settings.ALPHA_SWEEP_FILE)}")
    print(f"✓ Saved: {safe_to_csv(boot, out_dir / settings.BOOTSTRAP_FILE)}")
    generate_discovery_report(cpdag, target, validation, sweep, boot, alpha,
                              out_dir / settings.DISCOVERY_REPORT_FILE, failures=boot_failures)
    print(f"✓ Generated report: {out_dir / settings.DISCOVERY_REPORT_FILE}")

    return cpdag


def load_cpdag(out_dir: Path, nodes) -> CPDAG:
    edges_df = load_csv(out_dir / settings.CPDAG_FILE, required={"source", "target", "type"})
    return CPDAG.from_frame(edges_df, nodes)


if __name__ == "__main__":
    main()
