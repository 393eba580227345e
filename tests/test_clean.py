"""
Tests for loading and validating the expression table.

Run with: pytest tests/test_clean.py -v
"""

import numpy as np
import pandas as pd
import pytest

from brca_causal import clean
from brca_causal.clean import ExpressionRules


# =============================================================================
# LOADING
# =============================================================================

class TestLoadExpression:

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            clean.load_expression(tmp_path / "nope.csv")

    def test_id_column_becomes_index(self, tmp_path, raw_expression):
        path = tmp_path / "expr.csv"
        raw_expression.to_csv(path, index=False)

        df = clean.load_expression(path)

        assert df.index.name == "sample"
        assert "sample_id" not in df.columns
        assert df.index[0] == "S000"

    def test_tsv_and_transpose(self, tmp_path):
        genes_by_samples = pd.DataFrame(
            {"gene": ["ESR1", "BRCA1"], "S1": [1.0, 2.0], "S2": [3.0, 4.0], "S3": [5.0, 6.0]}
        )
        path = tmp_path / "expr.tsv"
        genes_by_samples.to_csv(path, sep="\t", index=False)

        df = clean.load_expression(path, transpose=True)

        assert list(df.columns) == ["ESR1", "BRCA1"]
        assert df.shape == (3, 2)
        assert df.loc["S2", "BRCA1"] == 4.0


# =============================================================================
# VALIDATION
# =============================================================================

class TestValidateExpression:

    def test_drops_unusable_columns(self, raw_expression):
        df, report = clean.validate_expression(raw_expression.set_index("sample_id"))

        assert list(df.columns) == ["ESR1", "GATA3", "BRCA1"]
        assert report["dropped"]["non_numeric"] == ["subtype"]
        assert report["dropped"]["too_many_missing"] == ["SPARSE"]
        assert report["dropped"]["constant"] == ["CONST"]

    def test_imputes_with_median(self, raw_expression):
        raw = raw_expression.set_index("sample_id")
        df, report = clean.validate_expression(raw)

        assert report["imputed_values"] == 1
        assert not df.isna().any().any()
        assert df["BRCA1"].iloc[3] == pytest.approx(raw["BRCA1"].median())

    def test_too_few_samples_raises(self, raw_expression):
        tiny = raw_expression.set_index("sample_id").head(ExpressionRules.MIN_SAMPLES - 1)
        with pytest.raises(ValueError, match="samples"):
            clean.validate_expression(tiny)

    def test_single_gene_raises(self):
        df = pd.DataFrame({"ESR1": np.arange(30, dtype=float), "CONST": np.ones(30)})
        with pytest.raises(ValueError, match="usable gene"):
            clean.validate_expression(df)


# =============================================================================
# TRANSFORMS
# =============================================================================

class TestTransforms:

    def test_log_transform_on_raw_intensities(self, raw_expression):
        df, _ = clean.validate_expression(raw_expression.set_index("sample_id"))
        logged, applied = clean.log_transform_if_raw(df)

        assert applied
        assert np.allclose(logged["ESR1"], np.log2(df["ESR1"] + 1))

    def test_no_log_transform_on_normalized_data(self, sem_data):
        out, applied = clean.log_transform_if_raw(sem_data)

        assert not applied
        pd.testing.assert_frame_equal(out, sem_data)

    def test_standardize(self, raw_expression):
        df, _ = clean.validate_expression(raw_expression.set_index("sample_id"))
        z = clean.standardize(df)

        assert np.allclose(z.mean().values, 0.0, atol=1e-10)
        assert np.allclose(z.std(ddof=0).values, 1.0)
        assert list(z.index) == list(df.index)

    def test_detect_outliers_counts(self):
        df = pd.DataFrame({"A": [0.0] * 99 + [100.0], "B": np.linspace(0, 1, 100)})
        counts = clean.detect_outliers(df)

        assert counts["A"] == 1
        assert counts["B"] == 0


# =============================================================================
# STEP
# =============================================================================

def test_main_writes_clean_table_and_report(tmp_path, raw_expression):
    path = tmp_path / "expr.csv"
    raw_expression.to_csv(path, index=False)

    df = clean.main(data_path=path, out_dir=tmp_path)

    saved = pd.read_csv(tmp_path / "expression_clean.csv", index_col=0)
    assert list(saved.columns) == list(df.columns)
    assert (tmp_path / "cleaning_report.txt").read_text(encoding="utf-8").startswith("=" * 80)
