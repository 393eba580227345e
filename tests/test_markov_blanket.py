"""
Tests for Markov blanket discovery and its cross-validation.

Run with: pytest tests/test_markov_blanket.py -v
"""

import numpy as np
import pandas as pd
import pytest

from brca_causal import markov_blanket as mb

TRUE_BLANKET = ["ERBB2", "ESR1", "GATA3", "TP53"]


class TestGraphBlanket:

    def test_parents_children_coparents(self, true_cpdag):
        assert mb.graph_markov_blanket(true_cpdag, "BRCA1") == TRUE_BLANKET

    def test_isolated_gene_has_empty_blanket(self, true_cpdag):
        assert mb.graph_markov_blanket(true_cpdag, "KRT5") == []

    def test_unknown_target(self, true_cpdag):
        with pytest.raises(ValueError, match="not a node"):
            mb.graph_markov_blanket(true_cpdag, "MYC")


class TestIAMB:

    def test_recovers_blanket(self, sem_data):
        assert mb.iamb(sem_data, "BRCA1", alpha=0.001) == TRUE_BLANKET

    def test_leaf_blanket(self, sem_data):
        # MDM2 only depends on its parent TP53
        assert mb.iamb(sem_data, "MDM2", alpha=0.001) == ["TP53"]

    def test_unknown_target(self, sem_data):
        with pytest.raises(ValueError, match="not in data"):
            mb.iamb(sem_data, "MYC")


class TestCrossValidation:

    @pytest.fixture(scope="class")
    def cv(self, small_sem_data):
        return mb.cross_validate_blanket(small_sem_data, "BRCA1", alphas=[0.001, 0.05],
                                         n_splits=3, graph_blanket=TRUE_BLANKET)

    def test_rows_per_fold(self, cv):
        # 2 alphas + all_genes + intercept + cpdag_blanket
        assert len(cv) == 3 * 5
        assert set(cv["method"]) == {"iamb", "all_genes", "intercept", "cpdag_blanket"}

    def test_blanket_beats_intercept(self, cv):
        means = cv.groupby("method")["mse"].mean()
        assert means["cpdag_blanket"] < means["intercept"]

    def test_summary_sorted(self, cv):
        summary = mb.summarize_cv(cv)

        assert summary["mean_mse"].is_monotonic_increasing
        assert "iamb@0.001" in set(summary["setting"])
        assert "intercept" in set(summary["setting"])

    def test_selected_alpha_from_grid(self, cv):
        assert mb.select_alpha(cv) in (0.001, 0.05)


def test_select_alpha_tie_goes_to_smaller():
    cv = pd.DataFrame([
        {"fold": 0, "method": "iamb", "alpha": 0.05, "mse": 0.5},
        {"fold": 0, "method": "iamb", "alpha": 0.01, "mse": 0.5},
        {"fold": 0, "method": "iamb", "alpha": 0.1, "mse": 0.7},
        {"fold": 0, "method": "intercept", "alpha": np.nan, "mse": 0.1},
    ])
    assert mb.select_alpha(cv) == 0.01


def test_select_alpha_without_iamb_rows():
    cv = pd.DataFrame([{"fold": 0, "method": "intercept", "alpha": np.nan, "mse": 1.0}])
    with pytest.raises(ValueError):
        mb.select_alpha(cv)


def test_compare_blankets():
    cmp = mb.compare_blankets(["A", "B", "C"], ["B", "C", "D"])

    assert cmp["jaccard"] == pytest.approx(0.5)
    assert cmp["both"] == ["B", "C"]
    assert cmp["graph_only"] == ["A"]
    assert cmp["data_only"] == ["D"]
    assert mb.compare_blankets([], [])["jaccard"] == 1.0


def test_main_writes_summary(tmp_path, small_sem_data, true_cpdag):
    small_sem_data.to_csv(tmp_path / "expression_clean.csv")
    true_cpdag.to_frame().to_csv(tmp_path / "edges_cpdag.csv", index=False)

    summary = mb.main(out_dir=tmp_path, target="BRCA1", alphas=[0.01], n_splits=2)

    assert summary["graph_blanket"] == TRUE_BLANKET
    assert summary["iamb_alpha"] == 0.01
    assert (tmp_path / "markov_blanket.json").exists()
    assert (tmp_path / "mb_report.txt").exists()
