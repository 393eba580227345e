"""
Tests for IDA effect bounds.

Run with: pytest tests/test_ida.py -v
"""

import numpy as np
import pandas as pd
import pytest

from brca_causal import ida
from brca_causal.discovery import CPDAG

from conftest import TRUE_EDGES


# =============================================================================
# PARENT SETS
# =============================================================================

class TestValidParentSets:

    def test_undirected_chain(self):
        # a - b - c: b may take a or c as parent, never both (new collider)
        cpdag = CPDAG(["a", "b", "c"], undirected=[("a", "b"), ("b", "c")])

        assert ida.valid_parent_sets(cpdag, "b") == [[], ["a"], ["c"]]

    def test_undirected_triangle(self):
        cpdag = CPDAG(["a", "b", "c"], undirected=[("a", "b"), ("b", "c"), ("a", "c")])

        assert ida.valid_parent_sets(cpdag, "b") == [[], ["a"], ["c"], ["a", "c"]]

    def test_sibling_not_adjacent_to_parent(self):
        # p -> x - s with p, s non-adjacent: s cannot point into x
        cpdag = CPDAG(["p", "x", "s"], directed=[("p", "x")], undirected=[("x", "s")])

        assert ida.valid_parent_sets(cpdag, "x") == [["p"]]

    def test_collider_at_sibling(self):
        # orienting x -> f would collide with q -> f (q, x non-adjacent)
        cpdag = CPDAG(["x", "f", "q"], directed=[("q", "f")], undirected=[("x", "f")])

        assert ida.valid_parent_sets(cpdag, "x") == [["f"]]

    def test_fully_directed_single_set(self, true_cpdag):
        assert ida.valid_parent_sets(true_cpdag, "BRCA1") == [["ESR1", "GATA3"]]
        assert ida.valid_parent_sets(true_cpdag, "ESR1") == [[]]

    def test_unknown_node(self, true_cpdag):
        with pytest.raises(ValueError):
            ida.valid_parent_sets(true_cpdag, "MYC")


# =============================================================================
# EFFECTS
# =============================================================================

class TestEffects:

    def test_causal_effect_zero_when_outcome_adjusted(self, sem_data):
        assert ida.causal_effect(sem_data, "BRCA1", "TP53", ["TP53"]) == 0.0

    def test_direct_effect_recovered(self, sem_data, true_cpdag):
        res = ida.ida(sem_data, true_cpdag, "ESR1", "BRCA1")

        assert res.effects == pytest.approx([0.8], abs=0.1)
        assert res.sign_consistent

    def test_downstream_effect(self, sem_data, true_cpdag):
        # BRCA1 -> TP53 -> MDM2: 0.9 * 0.8
        res = ida.ida(sem_data, true_cpdag, "BRCA1", "MDM2")

        assert res.min_effect == pytest.approx(0.72, abs=0.1)
        assert res.adjustment_sets == [["ESR1", "GATA3"]]

    def test_co_parent_has_no_effect(self, sem_data, true_cpdag):
        res = ida.ida(sem_data, true_cpdag, "ERBB2", "BRCA1")

        assert res.min_abs_effect < 0.1

    def test_undirected_edge_gives_zero_lower_bound(self):
        rng = np.random.RandomState(1)
        x = rng.normal(size=500)
        df = pd.DataFrame({"X": x, "Y": 0.5 * x + rng.normal(size=500)})
        cpdag = CPDAG(["X", "Y"], undirected=[("X", "Y")])

        res = ida.ida(df, cpdag, "X", "Y")

        assert len(res.effects) == 2
        assert res.min_abs_effect == 0.0
        assert res.max_effect == pytest.approx(0.5, abs=0.1)
        assert not res.sign_consistent

    def test_same_node_raises(self, sem_data, true_cpdag):
        with pytest.raises(ValueError, match="must differ"):
            ida.ida(sem_data, true_cpdag, "BRCA1", "BRCA1")


class TestTables:

    def test_to_target_ranked(self, sem_data, true_cpdag):
        table = ida.ida_to_target(sem_data, true_cpdag, "BRCA1")

        assert len(table) == 6
        assert set(table["effect_on"]) == {"BRCA1"}
        assert table["min_abs_effect"].is_monotonic_decreasing
        assert table.iloc[0]["cause"] == "ESR1"

    def test_from_target(self, sem_data, true_cpdag):
        table = ida.ida_from_target(sem_data, true_cpdag, "BRCA1")
        by_gene = table.set_index("effect_on")

        assert set(table["cause"]) == {"BRCA1"}
        assert by_gene.loc["TP53", "min_effect"] == pytest.approx(0.9, abs=0.1)
        # ancestors of BRCA1 are in its parent set, so the effect is exactly 0
        assert by_gene.loc["ESR1", "min_abs_effect"] == 0.0

    def test_interpret_effect(self):
        row = {"cause": "ESR1", "effect_on": "BRCA1", "min_effect": 0.6, "max_effect": 0.7,
               "min_abs_effect": 0.6, "sign_consistent": True}
        text = ida.interpret_effect(row)

        assert "raises" in text
        assert "large" in text

    def test_interpret_zero_effect(self):
        row = {"cause": "BRCA1", "effect_on": "ESR1", "min_effect": 0.0, "max_effect": 0.0,
               "min_abs_effect": 0.0, "sign_consistent": False}
        text = ida.interpret_effect(row)

        assert "no causal effect" in text
        assert "sign not identified" not in text


# =============================================================================
# DOWHY CROSS-CHECK
# =============================================================================

def test_dowhy_matches_ida(sem_data, true_cpdag):
    res = ida.estimate_effect_in_dag(sem_data, TRUE_EDGES, "BRCA1", "TP53",
                                     adjustment=["ESR1", "GATA3"])
    bounds = ida.ida(sem_data, true_cpdag, "BRCA1", "TP53")

    assert res["error"] is None
    assert res["backdoor_set"] == ["ESR1", "GATA3"]
    assert res["effect"] == pytest.approx(bounds.effects[0], abs=1e-6)


def test_dowhy_default_backdoor_set(sem_data):
    res = ida.estimate_effect_in_dag(sem_data, TRUE_EDGES, "BRCA1", "TP53")

    assert res["error"] is None
    assert res["effect"] == pytest.approx(0.9, abs=0.1)


def test_dowhy_outcome_parent_of_treatment(sem_data):
    res = ida.estimate_effect_in_dag(sem_data, TRUE_EDGES, "TP53", "BRCA1",
                                     adjustment=["BRCA1", "ERBB2"])

    assert res["effect"] == 0.0
    assert res["error"] is None


def test_cross_check_on_true_dag(sem_data, true_cpdag):
    rows = ida.ida_to_target(sem_data, true_cpdag, "BRCA1").head(3)

    checks = ida.cross_check_with_dowhy(sem_data, true_cpdag, true_cpdag.to_dag(), "BRCA1", rows)

    assert len(checks) == 3
    assert all(c["within_ida_range"] for c in checks)


def test_main_writes_outputs(tmp_path, sem_data, true_cpdag):
    sem_data.to_csv(tmp_path / "expression_clean.csv")
    true_cpdag.to_frame().to_csv(tmp_path / "edges_cpdag.csv", index=False)

    out = ida.main(out_dir=tmp_path, target="BRCA1", n_cross_check=3)

    assert len(out["to_target"]) == 6
    assert [c["within_ida_range"] for c in out["cross_check"]] == [True, True, True]
    assert (tmp_path / "ida_report.txt").exists()
    assert (tmp_path / "ida_results.json").exists()
