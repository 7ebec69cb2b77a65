# tests/test_utils.py

import numpy as np
import pytest

from ThroughputKrigE.errors import InputError
from ThroughputKrigE.utils import (
    EARTH_RADIUS_MILES,
    SampleSet,
    haversine_distances,
    pairwise_distances,
    select_neighbors,
)


def _random_points(n, seed=0):
    rng = np.random.default_rng(seed)
    lon = rng.uniform(-100.0, -80.0, n)
    lat = rng.uniform(30.0, 45.0, n)
    return np.column_stack([lon, lat])


def test_haversine_symmetry_and_zero_self_distance():
    P = _random_points(7, seed=1)
    Q = _random_points(5, seed=2)

    D_pq = haversine_distances(P, Q)
    D_qp = haversine_distances(Q, P)
    assert D_pq.shape == (7, 5)
    assert np.allclose(D_pq, D_qp.T)
    assert np.all(D_pq >= 0.0)

    D_pp = haversine_distances(P, P)
    assert np.all(np.diag(D_pp) == 0.0)


def test_haversine_one_degree_at_equator_in_miles():
    d = haversine_distances([[0.0, 0.0]], [[1.0, 0.0]])[0, 0]
    expected = 2.0 * np.pi * EARTH_RADIUS_MILES / 360.0
    assert np.isclose(d, expected)
    assert np.isclose(d, 69.09, atol=0.01)


def test_haversine_empty_inputs_give_empty_matrix():
    P = _random_points(3)
    assert haversine_distances(np.empty((0, 2)), P).shape == (0, 3)
    assert haversine_distances(P, np.empty((0, 2))).shape == (3, 0)


def test_haversine_rejects_bad_shape():
    with pytest.raises(InputError):
        haversine_distances(np.zeros((3, 3)), np.zeros((2, 2)))


def test_pairwise_distances_symmetric_zero_diagonal():
    D = pairwise_distances(_random_points(6))
    assert np.allclose(D, D.T)
    assert np.all(np.diag(D) == 0.0)


def test_sample_set_validation():
    P = _random_points(4)
    with pytest.raises(InputError):
        SampleSet(np.empty((0, 2)), [])
    with pytest.raises(InputError):
        SampleSet(P, [1.0, 2.0, 3.0])
    with pytest.raises(InputError):
        SampleSet(P, [1.0, np.nan, 3.0, 4.0])


def test_sample_set_is_read_only_and_caches_distances():
    P = _random_points(5)
    ss = SampleSet(P, np.arange(5.0))

    assert len(ss) == 5
    assert not ss.values.flags.writeable
    assert not ss.coords.flags.writeable
    assert ss.distances is ss.distances
    assert np.allclose(ss.distances, pairwise_distances(P))

    sub = ss.subset(np.array([True, False, True, False, True]))
    assert len(sub) == 3
    assert sub.distances.shape == (3, 3)
    assert np.allclose(sub.values, [0.0, 2.0, 4.0])


def test_select_neighbors_skips_rank_one_by_default():
    d = np.array([0.0, 3.0, 1.0, 2.0])
    assert select_neighbors(d, 2).tolist() == [2, 3]
    assert select_neighbors(d, 2, skip=0).tolist() == [0, 2]


def test_select_neighbors_pins_self_index_against_duplicates():
    # samples 0 and 1 share a location; querying sample 1 must not return itself
    d = np.array([0.0, 0.0, 5.0, 1.0])
    assert select_neighbors(d, 2, self_index=1).tolist() == [0, 3]
    assert 1 not in select_neighbors(d, 3, self_index=1).tolist()


def test_select_neighbors_rejects_too_many():
    with pytest.raises(InputError):
        select_neighbors(np.arange(4.0), 4)
    with pytest.raises(InputError):
        select_neighbors(np.arange(4.0), 0)
