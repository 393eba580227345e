"""
BRCA Causal Notebook

Causal structure learning and Bayesian network inference over a small
breast-cancer gene-expression table.

Steps:
- Data loading and validation (clean)
- PC algorithm / CPDAG (discovery)
- IDA causal effect bounds (ida)
- Markov blanket discovery (markov_blanket)
- Manual CPTs and exact inference (bayes_net)
- Figures (visualize)
"""

__version__ = "0.1.0"
