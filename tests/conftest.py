"""Shared fixtures for mocasa tests."""

from pathlib import Path

import numpy as np
import pytest

from mocasa.data import GwasData, Meta
from mocasa.matrix import Matrix
from mocasa.params import Params


def make_data(betas, ses, trait_names=None, var_ids=None, n_endos=1) -> GwasData:
    """Build GwasData from nested lists or arrays, one row per variant."""
    betas = np.asarray(betas, dtype=float)
    ses = np.asarray(ses, dtype=float)
    n_rows, n_cols = betas.shape
    trait_names = tuple(trait_names or [f"trait{i + 1}" for i in range(n_cols)])
    var_ids = tuple(var_ids or [f"var{i + 1}" for i in range(n_rows)])
    meta = Meta(var_ids, trait_names, n_endos)
    return GwasData(meta, Matrix(n_rows, n_cols, betas), Matrix(n_rows, n_cols, ses))


@pytest.fixture
def rng():
    return np.random.default_rng(20240501)


@pytest.fixture
def params_one_endo():
    """Single endophenotype driving two traits."""
    return Params(["trait1", "trait2"], [0.0], [1.0], Matrix(1, 2, [2.0, 3.0]), [0.5, 0.5])


@pytest.fixture
def params_two_endos():
    return Params(
        ["a", "b", "c"],
        [0.5, -1.0],
        [1.0, 2.0],
        Matrix(2, 3, [1.0, 0.2, 0.0, 0.1, 1.5, -0.7]),
        [0.3, 0.4, 0.5],
    )


@pytest.fixture
def write_text(tmp_path):
    """Write a text file under tmp_path and return its path."""

    def _write(name: str, content: str) -> Path:
        path = tmp_path / name
        path.write_text(content)
        return path

    return _write
