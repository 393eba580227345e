# ============================================================
# pipeline.py
# Runs steps 1-6 in order over one expression table
# ============================================================

import argparse
from pathlib import Path

from brca_causal import bayes_net, clean, discovery, ida, markov_blanket, settings, visualize


def run_pipeline(data_path: Path = settings.DATA_PATH, target: str = settings.TARGET_GENE,
                 alpha: float = settings.ALPHA, out_dir: Path = settings.OUT_DIR,
                 transpose: bool = False, n_boot: int = settings.N_BOOTSTRAP) -> dict:
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    df = clean.main(data_path=Path(data_path), out_dir=out_dir, transpose=transpose)
    if target not in df.columns:
        raise ValueError(f"Target gene '{target}' not found. Available: {', '.join(df.columns)}")

    cpdag = discovery.main(out_dir=out_dir, target=target, alpha=alpha, n_boot=n_boot)
    effects = ida.main(out_dir=out_dir, target=target)
    blanket = markov_blanket.main(out_dir=out_dir, target=target)
    model = bayes_net.main(out_dir=out_dir, target=target)
    figures = visualize.main(out_dir=out_dir, target=target, alpha=alpha)

    print("\n" + "=" * 80)
    print(f"✅ Analysis complete. Outputs in {out_dir}")
    print("=" * 80 + "\n")

    return {
        "data": df,
        "cpdag": cpdag,
        "ida": effects,
        "markov_blanket": blanket,
        "bayes_net": model,
        "figures": figures,
    }


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="PC / IDA / Markov blanket / Bayesian network analysis of a gene-expression table"
    )
    parser.add_argument("--data", type=Path, default=settings.DATA_PATH,
                        help="samples x genes CSV/TSV (default: %(default)s)")
    parser.add_argument("--target", default=settings.TARGET_GENE,
                        help="gene analysed as the target (default: %(default)s)")
    parser.add_argument("--alpha", type=float, default=settings.ALPHA,
                        help="PC significance level (default: %(default)s)")
    parser.add_argument("--out-dir", type=Path, default=settings.OUT_DIR,
                        help="where reports and figures go (default: %(default)s)")
    parser.add_argument("--bootstrap", type=int, default=settings.N_BOOTSTRAP,
                        help="PC bootstrap replicates (default: %(default)s)")
    parser.add_argument("--transpose", action="store_true",
                        help="input file is genes x samples")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    run_pipeline(data_path=args.data, target=args.target, alpha=args.alpha,
                 out_dir=args.out_dir, transpose=args.transpose, n_boot=args.bootstrap)


if __name__ == "__main__":
    main()
