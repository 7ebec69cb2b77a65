# tests/test_crossval.py

import numpy as np
import pandas as pd
import pytest

from ThroughputKrigE.crossval import compare_methods, loo_cross_validation, loo_predictions
from ThroughputKrigE.errors import InputError, NumericalError
from ThroughputKrigE.utils import pairwise_distances
from ThroughputKrigE.variofit import VariogramModel


def _line(xs):
    return np.column_stack([np.asarray(xs, float), np.zeros(len(xs))])


def test_k1_uses_single_nearest_other_point():
    # nearest other sample: 0 -> 1, 1 -> 0, 2 -> 1
    D = pairwise_distances(_line([0, 1, 3]))
    z = np.array([1.0, 2.0, 4.0])
    expected = ((1.0 - 2.0) ** 2 + (2.0 - 1.0) ** 2 + (4.0 - 2.0) ** 2) / 3.0

    for method in ("knn_mean", "knn_weighted"):
        res = loo_cross_validation(D, z, [1], method)
        assert np.isclose(res.table.loc[0, "mse"], expected)
        assert res.best_k == 1


def test_outlier_line_loo_predictions():
    D = pairwise_distances(_line([0, 1, 2, 3, 4]))
    z = np.array([0.0, 1.0, 2.0, 3.0, 1000.0])
    est = loo_predictions(D, z, 2, "knn_mean")
    assert est[2] == 2.0
    # the endpoint is predicted from x=3 and x=2
    assert est[4] == 2.5


def test_table_and_best_k():
    D = pairwise_distances(_line([0, 1, 2, 3, 4]))
    z = np.array([0.0, 1.0, 2.0, 3.0, 1000.0])
    res = loo_cross_validation(D, z, [1, 2, 3], "knn_mean")

    assert list(res.table.columns) == ["k", "mse", "n_failed"]
    assert res.table["k"].tolist() == [1, 2, 3]
    assert (res.table["n_failed"] == 0).all()
    assert res.best_k == int(res.table.loc[res.table["mse"].idxmin(), "k"])


def test_repeated_sizes_are_scored_once():
    D = pairwise_distances(_line([0, 1, 2, 3, 4]))
    z = np.array([0.0, 1.0, 2.0, 3.0, 1000.0])
    res = loo_cross_validation(D, z, [3, 2, 3, 2], "knn_mean")
    assert res.table["k"].tolist() == [3, 2]

    table = compare_methods(D, z, [2, 2, 3], methods=("knn_mean", "knn_weighted"))
    assert table.index.tolist() == [2, 3]
    assert table.index.is_unique


def test_kriging_cross_validation_with_threads():
    rng = np.random.default_rng(4)
    coords = np.column_stack([rng.uniform(0.0, 1.0, 25), rng.uniform(0.0, 1.0, 25)])
    z = 20.0 + 10.0 * coords[:, 1] + rng.normal(0.0, 0.5, 25)
    D = pairwise_distances(coords)
    model = VariogramModel("exponential", 0.1, 5.0, 30.0)

    serial = loo_cross_validation(D, z, [2, 4, 6], "kriging", model=model)
    threaded = loo_cross_validation(D, z, [2, 4, 6], "kriging", model=model, n_jobs=4)
    pd.testing.assert_frame_equal(serial.table, threaded.table)
    assert serial.best_k in (2, 4, 6)
    assert np.all(np.isfinite(serial.table["mse"]))


def test_kriging_requires_model():
    D = pairwise_distances(_line([0, 1, 2, 3]))
    with pytest.raises(InputError):
        loo_cross_validation(D, [1.0, 2.0, 3.0, 4.0], [2], "kriging")


def test_neighborhood_sizes_validated():
    D = pairwise_distances(_line([0, 1, 2, 3]))
    z = [1.0, 2.0, 3.0, 4.0]
    with pytest.raises(InputError):
        loo_cross_validation(D, z, [4], "knn_mean")
    with pytest.raises(InputError):
        loo_cross_validation(D, z, [], "knn_mean")
    with pytest.raises(InputError):
        loo_cross_validation(D, z, [1], "nearest")


def test_numerical_failures_raise_or_are_counted():
    # samples 1 and 2 share a location, so sample 0's kriging system is singular
    D = pairwise_distances(_line([0, 1, 1, 3, 4, 5]))
    z = np.array([1.0, 2.0, 3.0, 4.0, 5.0, 6.0])
    model = VariogramModel("spherical", 0.0, 1.0, 500.0)

    with pytest.raises(NumericalError):
        loo_cross_validation(D, z, [2], "kriging", model=model)

    res = loo_cross_validation(D, z, [2], "kriging", model=model, on_error="nan")
    assert res.table.loc[0, "n_failed"] >= 1
    assert np.isfinite(res.table.loc[0, "mse"])


def test_compare_methods_table():
    rng = np.random.default_rng(8)
    coords = np.column_stack([rng.uniform(0.0, 1.0, 20), rng.uniform(0.0, 1.0, 20)])
    z = 5.0 + coords[:, 0] + rng.normal(0.0, 0.1, 20)
    D = pairwise_distances(coords)
    model = VariogramModel("spherical", 0.01, 0.2, 50.0)

    table = compare_methods(D, z, [2, 3, 5], model=model)
    assert table.index.name == "k"
    assert table.index.tolist() == [2, 3, 5]
    assert list(table.columns) == ["knn_mean", "knn_weighted", "kriging"]
    assert np.all(np.isfinite(table.to_numpy()))
