# ============================================================
# visualize.py
# STEP 6: Figures for the CPDAG, IDA bounds, alpha sweep,
# blanket cross-validation and bootstrap stability
# ============================================================

from pathlib import Path

import matplotlib
matplotlib.use("Agg")
import matplotlib.patches as mpatches
import matplotlib.pyplot as plt
import networkx as nx
import pandas as pd

from brca_causal import settings
from brca_causal.artifacts import load_csv, load_json, section
from brca_causal.discovery import CPDAG, load_clean, load_cpdag

# -------------------------
# Palette
# -------------------------
COLORS = {
    "target": "#AA4465",     # dark red
    "blanket": "#FFC857",    # yellow
    "neighbour": "#F38181",  # light red
    "other": "#4ECDC4",      # teal
    "edge": "#666666",
    "undirected": "#999999",
}


def _save(fig, output_path: Path) -> Path:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(output_path, dpi=300, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    print(f"✅ Saved visualization: {output_path}")
    return output_path


# -------------------------
# CPDAG
# -------------------------
def plot_cpdag(cpdag: CPDAG, target: str, output_path: Path, blanket: list = None,
               title: str = "PC CPDAG") -> Path:
    """Directed edges as arrows, undirected edges as dashed lines"""
    blanket = set(blanket or [])
    skeleton = cpdag.skeleton()
    pos = nx.spring_layout(skeleton, k=1.2, iterations=100, seed=settings.RANDOM_STATE)

    node_colors = []
    for node in skeleton.nodes():
        if node == target:
            node_colors.append(COLORS["target"])
        elif node in blanket:
            node_colors.append(COLORS["blanket"])
        elif cpdag.has_node(target) and cpdag.adjacent(node, target):
            node_colors.append(COLORS["neighbour"])
        else:
            node_colors.append(COLORS["other"])

    fig, ax = plt.subplots(figsize=(16, 12))

    nx.draw_networkx_nodes(skeleton, pos, ax=ax, node_color=node_colors,
                           node_size=700, edgecolors="white", linewidths=2)

    directed = nx.DiGraph()
    directed.add_nodes_from(skeleton.nodes())
    directed.add_edges_from(cpdag.directed)
    nx.draw_networkx_edges(directed, pos, ax=ax, edge_color=COLORS["edge"], width=1.5,
                           alpha=0.7, arrows=True, arrowsize=15, arrowstyle="-|>",
                           node_size=700)
    nx.draw_networkx_edges(skeleton, pos, ax=ax, edgelist=sorted(cpdag.undirected),
                           edge_color=COLORS["undirected"], width=1.2, style="dashed",
                           alpha=0.7)
    nx.draw_networkx_labels(skeleton, pos, ax=ax, font_size=8, font_weight="bold")

    legend = [
        mpatches.Patch(color=COLORS["target"], label=target),
        mpatches.Patch(color=COLORS["blanket"], label="Markov blanket"),
        mpatches.Patch(color=COLORS["neighbour"], label="Adjacent to target"),
        mpatches.Patch(color=COLORS["other"], label="Other genes"),
    ]
    ax.legend(handles=legend, loc="upper left", frameon=True)

    stats = (f"Nodes: {len(cpdag.nodes)}  |  Directed: {len(cpdag.directed)}  |  "
             f"Undirected: {len(cpdag.undirected)}")
    ax.text(0.5, -0.03, stats, transform=ax.transAxes, ha="center", va="top", fontsize=10,
            bbox=dict(boxstyle="round,pad=0.5", facecolor="white", edgecolor="#CCCCCC", alpha=0.8))

    ax.set_title(title, fontsize=18, fontweight="bold")
    ax.axis("off")
    return _save(fig, output_path)


# -------------------------
# IDA
# -------------------------
def plot_ida_effects(table: pd.DataFrame, output_path: Path, top: int = 20,
                     title: str = "IDA effect ranges") -> Path:
    """Horizontal min-max range per gene, ordered by the conservative bound"""
    data = table.head(top).iloc[::-1]
    by_cause = table.empty or table["effect_on"].nunique() == 1
    fig, ax = plt.subplots(figsize=(10, max(4, 0.4 * len(data) + 1)))

    if data.empty:
        ax.text(0.5, 0.5, "No effects computed", ha="center", va="center",
                fontsize=14, color="#999999")
    for i, row in enumerate(data.to_dict("records")):
        label = row["cause"] if by_cause else row["effect_on"]
        color = COLORS["target"] if row["sign_consistent"] else COLORS["undirected"]
        ax.plot([row["min_effect"], row["max_effect"]], [i, i], color=color, linewidth=4,
                solid_capstyle="round")
        ax.scatter([row["min_effect"], row["max_effect"]], [i, i], color=color, zorder=3)
        ax.text(-0.02, i, label, transform=ax.get_yaxis_transform(), ha="right",
                va="center", fontsize=9)

    ax.axvline(0, color="#CCCCCC", linestyle="--")
    ax.set_yticks([])
    ax.set_xlabel("Causal effect (SD per SD)")
    ax.set_title(title, fontsize=14, fontweight="bold")
    return _save(fig, output_path)


# -------------------------
# Diagnostics
# -------------------------
def plot_alpha_sweep(sweep: pd.DataFrame, output_path: Path, chosen: float = None) -> Path:
    fig, ax = plt.subplots(figsize=(8, 5))
    ax.plot(sweep["alpha"], sweep["total"], marker="o", color=COLORS["target"], label="total")
    ax.plot(sweep["alpha"], sweep["directed"], marker="s", color=COLORS["other"], label="directed")
    ax.plot(sweep["alpha"], sweep["undirected"], marker="^", color=COLORS["blanket"],
            label="undirected")
    if chosen is not None:
        ax.axvline(chosen, color="#999999", linestyle="--", label=f"alpha={chosen:g}")
    ax.set_xscale("log")
    ax.set_xlabel("Significance level (alpha)")
    ax.set_ylabel("Edges")
    ax.set_title("CPDAG size vs alpha", fontsize=14, fontweight="bold")
    ax.legend()
    return _save(fig, output_path)


def plot_mb_cv(cv_results: pd.DataFrame, output_path: Path) -> Path:
    iamb_rows = cv_results[cv_results["method"] == "iamb"]
    curve = iamb_rows.groupby("alpha")["mse"].agg(["mean", "std"]).reset_index()

    fig, ax = plt.subplots(figsize=(8, 5))
    ax.errorbar(curve["alpha"], curve["mean"], yerr=curve["std"].fillna(0), marker="o",
                color=COLORS["target"], capsize=4, label="IAMB blanket")

    styles = {"all_genes": "--", "intercept": ":", "cpdag_blanket": "-."}
    for method, style in styles.items():
        rows = cv_results[cv_results["method"] == method]
        if not rows.empty:
            ax.axhline(rows["mse"].mean(), color="#666666", linestyle=style, label=method)

    ax.set_xscale("log")
    ax.set_xlabel("IAMB significance level (alpha)")
    ax.set_ylabel("Held-out MSE")
    ax.set_title("Markov blanket cross-validation", fontsize=14, fontweight="bold")
    ax.legend()
    return _save(fig, output_path)


def plot_bootstrap(boot: pd.DataFrame, output_path: Path, top: int = 25) -> Path:
    data = boot.head(top).iloc[::-1]
    fig, ax = plt.subplots(figsize=(9, max(4, 0.3 * len(data) + 1)))
    labels = [f"{s} -- {t}" for s, t in zip(data["source"], data["target"])]
    colors = [COLORS["target"] if f >= settings.BOOTSTRAP_MIN_FREQ else COLORS["other"]
              for f in data["frequency"]]
    ax.barh(labels, data["frequency"], color=colors)
    ax.axvline(settings.BOOTSTRAP_MIN_FREQ, color="#999999", linestyle="--")
    ax.set_xlim(0, 1)
    ax.set_xlabel("Bootstrap frequency")
    ax.set_title("Edge stability", fontsize=14, fontweight="bold")
    return _save(fig, output_path)


# -------------------------
# Main
# -------------------------
def main(out_dir: Path = settings.OUT_DIR, target: str = settings.TARGET_GENE,
         alpha: float = settings.ALPHA) -> list:
    section("STEP 6: VISUALIZATION")

    df = load_clean(out_dir)
    cpdag = load_cpdag(out_dir, [str(c) for c in df.columns])
    mb = load_json(out_dir / settings.MB_JSON_FILE)

    saved = [
        plot_cpdag(cpdag, target, out_dir / "cpdag.png", blanket=mb["graph_blanket"],
                   title=f"PC CPDAG (alpha={alpha:g})"),
        plot_ida_effects(load_csv(out_dir / settings.IDA_TO_TARGET_FILE),
                         out_dir / "ida_to_target.png", title=f"IDA: effects on {target}"),
        plot_ida_effects(load_csv(out_dir / settings.IDA_FROM_TARGET_FILE),
                         out_dir / "ida_from_target.png", title=f"IDA: effects of {target}"),
        plot_alpha_sweep(load_csv(out_dir / settings.ALPHA_SWEEP_FILE),
                         out_dir / "alpha_sweep.png", chosen=alpha),
        plot_mb_cv(load_csv(out_dir / settings.MB_CV_FILE), out_dir / "mb_cv.png"),
    ]

    boot = load_csv(out_dir / settings.BOOTSTRAP_FILE)
    if boot.empty:
        print("⚠️  Skipping bootstrap plot (no replicates)")
    else:
        saved.append(plot_bootstrap(boot, out_dir / "bootstrap_edges.png"))

    return saved


if __name__ == "__main__":
    main()
