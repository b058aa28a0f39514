"""Tests for GWAS file loading."""

import numpy as np
import pytest

from mocasa.config import GwasCols, GwasConfig, parse_config
from mocasa.errors import DataError
from mocasa.data import load_classification_data, load_training_data, read_gwas_file, read_ids_file

from conftest import make_data


def config_for(tmp_path, gwas_files, ids_file="ids.txt", classify_extra=None):
    doc = {
        "files": {"params": str(tmp_path / "params.json")},
        "gwas": [{"name": name, "file": str(tmp_path / file)} for name, file in gwas_files],
        "train": {
            "ids_file": str(tmp_path / ids_file), "n_steps_burn_in": 1, "n_samples_per_iteration": 1,
            "n_iterations_per_round": 1, "n_rounds": 1,
        },
        "classify": {"n_steps_burn_in": 1, "n_samples": 1, "out_file": str(tmp_path / "out.tsv"),
                     **(classify_extra or {})},
    }
    return parse_config(doc)


@pytest.fixture
def two_traits(tmp_path, write_text):
    write_text("t1.tsv", "VAR_ID\tBETA\tSE\nrs1\t0.1\t0.01\nrs2\t0.2\t0.02\nrs3\tNA\t0.03\n")
    write_text("t2.tsv", "VAR_ID\tBETA\tSE\nrs2\t-0.4\t0.04\nrs1\t-0.3\t0.03\nrs4\t0.5\t0.05\n")
    return [("t1", "t1.tsv"), ("t2", "t2.tsv")]


class TestReadGwasFile:
    """Single file parsing."""

    def test_custom_columns(self, write_text):
        """Configured column names are used and extra columns are ignored."""
        path = write_text("g.tsv", "CHR\tSNP\tB\tSE\n1\trs1\t0.5\t0.1\n")
        df = read_gwas_file(GwasConfig("g", str(path), GwasCols(id="SNP", effect="B")))
        assert df.columns == ["id", "beta", "se"]
        assert df.row(0) == ("rs1", 0.5, 0.1)

    def test_missing_column(self, write_text):
        """A missing required column is reported."""
        path = write_text("g.tsv", "VAR_ID\tBETA\nrs1\t0.5\n")
        with pytest.raises(DataError, match="Missing required columns"):
            read_gwas_file(GwasConfig("g", str(path)))

    def test_unparsable_number(self, write_text):
        """Garbage in a numeric column is an error, NA is not."""
        path = write_text("g.tsv", "VAR_ID\tBETA\tSE\nrs1\tNA\t0.1\nrs2\tabc\t0.1\n")
        with pytest.raises(DataError, match="Cannot parse 'abc'"):
            read_gwas_file(GwasConfig("g", str(path)))

    def test_duplicate_variant(self, write_text):
        """A variant listed twice is an error."""
        path = write_text("g.tsv", "VAR_ID\tBETA\tSE\nrs1\t0.1\t0.1\nrs1\t0.2\t0.1\n")
        with pytest.raises(DataError, match="Duplicate lines for rs1"):
            read_gwas_file(GwasConfig("g", str(path)))

    def test_non_positive_se(self, write_text):
        """Standard errors must be positive."""
        path = write_text("g.tsv", "VAR_ID\tBETA\tSE\nrs1\t0.1\t0\n")
        with pytest.raises(DataError, match="Standard error must be positive"):
            read_gwas_file(GwasConfig("g", str(path)))

    def test_other_delimiter(self, write_text):
        """The configured delimiter is honored."""
        path = write_text("g.csv", "VAR_ID,BETA,SE\nrs1,0.1,0.2\n")
        df = read_gwas_file(GwasConfig("g", str(path)), delimiter=",")
        assert df.height == 1


class TestIdsFile:
    def test_blank_lines_skipped(self, write_text):
        """Blank lines and surrounding whitespace are ignored."""
        assert read_ids_file(str(write_text("ids.txt", "rs1\n\n  rs2 \n"))) == ["rs1", "rs2"]

    def test_duplicates_rejected(self, write_text):
        """Each id may appear once."""
        with pytest.raises(DataError, match="Duplicate id rs1"):
            read_ids_file(str(write_text("ids.txt", "rs1\nrs1\n")))


class TestTrainingData:
    """Complete rows for the training ids."""

    def test_rows_follow_ids_file(self, tmp_path, write_text, two_traits):
        """Rows are in ids-file order and joined across files by id."""
        write_text("ids.txt", "rs2\nrs1\n")
        data = load_training_data(config_for(tmp_path, two_traits))
        assert data.meta.var_ids == ("rs2", "rs1")
        assert data.meta.trait_names == ("t1", "t2")
        np.testing.assert_array_equal(data.betas.elements, [[0.2, -0.4], [0.1, -0.3]])
        np.testing.assert_array_equal(data.ses.elements, [[0.02, 0.04], [0.01, 0.03]])
        assert data.is_complete()

    def test_missing_value(self, tmp_path, write_text, two_traits):
        """A training id without a value in some trait is an error naming both."""
        write_text("ids.txt", "rs1\nrs3\n")
        with pytest.raises(DataError, match="Missing value for rs3 in t1"):
            load_training_data(config_for(tmp_path, two_traits))

    def test_absent_variant(self, tmp_path, write_text, two_traits):
        """An id absent from a file is also missing."""
        write_text("ids.txt", "rs4\n")
        with pytest.raises(DataError, match="Missing value for rs4 in t1"):
            load_training_data(config_for(tmp_path, two_traits))


class TestClassificationData:
    """All variants, missing traits as NaN."""

    def test_union_of_ids(self, tmp_path, two_traits):
        """Ids from every file in first-seen order, gaps as NaN."""
        data = load_classification_data(config_for(tmp_path, two_traits))
        assert data.meta.var_ids == ("rs1", "rs2", "rs3", "rs4")
        betas = data.betas.elements
        assert np.isnan(betas[2, 0]) and np.isnan(betas[2, 1])
        assert np.isnan(betas[3, 0]) and betas[3, 1] == 0.5
        assert not data.is_complete()

    def test_only_ids(self, tmp_path, write_text, two_traits):
        """Inline ids and an ids file are combined."""
        write_text("only.txt", "rs4\nrs2\n")
        config = config_for(tmp_path, two_traits,
                            classify_extra={"only_ids": ["rs2", "rs1"], "only_ids_file": str(tmp_path / "only.txt")})
        data = load_classification_data(config)
        assert data.meta.var_ids == ("rs2", "rs1", "rs4")

    def test_only_data_point(self):
        """A single variant is restricted to its observed traits."""
        data = make_data([[1.0, np.nan, 3.0]], [[0.1, 0.2, 0.3]], trait_names=["a", "b", "c"])
        single, is_cols = data.only_data_point(0)
        assert is_cols == [True, False, True]
        assert single.meta.trait_names == ("a", "c")
        assert single.betas.to_list() == [1.0, 3.0]
        assert single.ses.to_list() == [0.1, 0.3]
