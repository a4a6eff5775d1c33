import numpy as np
import pandas as pd
import pytest
from scipy.cluster.hierarchy import is_valid_linkage, fcluster

from carp.admm import Termination
from carp.core import (
    CARPConfig, carp, cluster_assignments, fusion_linkage
)


@pytest.fixture(scope="module")
def two_groups():
    X = np.array([
        [0.0, 0.0], [0.0, 1.0], [1.0, 0.0],
        [10.0, 10.0], [10.0, 11.0], [11.0, 10.0],
    ])
    return pd.DataFrame(X, index=[f"obs{i}" for i in range(6)], columns=["g1", "g2"])


@pytest.fixture(scope="module")
def fit(two_groups):
    return carp(two_groups, phi=0.01)


@pytest.mark.parametrize("kwargs", [
    dict(rho=0.0),
    dict(t=1.0),
    dict(max_iter=0),
    dict(burn_in=100, max_iter=50),
    dict(alg_type='carp-viz'),
    dict(keep=0),
    dict(k=0),
    dict(phi=-1.0),
    dict(weight_dist='cosine'),
    dict(X_center='yes'),
    dict(gamma_init=0.0),
])
def test_config_validation(kwargs):
    with pytest.raises(ValueError):
        CARPConfig(**kwargs).validate()


def test_unknown_option_rejected(two_groups):
    with pytest.raises(TypeError):
        carp(two_groups, not_an_option=1)
    with pytest.raises(TypeError):
        carp(two_groups, config=CARPConfig(), not_an_option=1)


def test_fit_reaches_single_cluster(fit):
    assert fit.path.termination is Termination.FULLY_FUSED
    assert fit.k == 3
    assert fit.phi == 0.01
    assert fit.card_e == fit.edges.shape[0]
    np.testing.assert_array_equal(fit.clust_path[0], np.arange(6))
    np.testing.assert_array_equal(fit.clust_path[-1], np.zeros(6))


def test_fit_recovers_groups(fit):
    np.testing.assert_array_equal(fit.clustering(2), [0, 0, 0, 1, 1, 1])
    np.testing.assert_array_equal(fit.clustering(6), np.arange(6))
    with pytest.raises(ValueError):
        fit.clustering(0)


def test_fit_linkage(fit):
    Z = fit.linkage
    assert Z.shape == (5, 4)
    assert is_valid_linkage(Z)
    assert np.all(np.diff(Z[:, 2]) >= 0), "merge heights follow the gamma path"
    labels = fcluster(Z, t=2, criterion='maxclust')
    assert len(set(labels[:3])) == 1 and len(set(labels[3:])) == 1
    assert labels[0] != labels[3]


def test_cluster_path_table(fit):
    vis = fit.cluster_path_vis
    k = len(fit.path)
    assert list(vis.columns) == [
        'Iter', 'Iteration', 'Obs', 'ObsLabel', 'Cluster', 'NCluster',
        'Gamma', 'GammaPercent', 'g1', 'g2',
    ]
    assert len(vis) == 6 * k
    assert vis['ObsLabel'].iloc[0] == 'obs0'
    assert vis['GammaPercent'].max() == 1.0
    first = vis[vis['Iter'] == 0]
    np.testing.assert_allclose(first[['g1', 'g2']].to_numpy(), fit.X_processed)


def test_fit_summary(fit):
    text = str(fit)
    assert text.startswith("CARP Fit Summary")
    assert "CARP (t = 1.05)" in text
    assert "Number of Observations:  6" in text
    assert "fully_fused" in text


def test_user_weights(two_groups):
    fit = carp(two_groups, weights=np.ones(15))
    assert fit.phi is None and fit.k is None
    assert fit.card_e == 15
    assert "user weights" in str(fit)
    with pytest.raises(ValueError):
        carp(two_groups, weights=np.ones(14))


def test_l1_variant(two_groups):
    fit = carp(two_groups, phi=0.01, alg_type='carpl1')
    assert fit.alg_type == 'carpl1'
    assert "[L1]" in str(fit)
    assert fit.path.termination is Termination.FULLY_FUSED
    np.testing.assert_array_equal(fit.clustering(2), [0, 0, 0, 1, 1, 1])


def test_interrupted_fit_has_no_linkage(two_groups):
    fit = carp(two_groups, phi=0.01, interrupt=lambda: True)
    assert fit.path.termination is Termination.INTERRUPTED
    assert fit.linkage is None
    np.testing.assert_array_equal(fit.clust_path[-1], np.arange(6))


def test_cluster_assignments_relabels_by_first_appearance():
    edges = np.array([[0, 1], [1, 2], [2, 3]])
    v_zero_inds = np.array([[0, 0], [0, 0], [0, 1]])
    clusters = cluster_assignments(edges, v_zero_inds, 4)
    np.testing.assert_array_equal(clusters, [[0, 1, 2, 3], [0, 1, 2, 2]])


def test_fusion_linkage_simultaneous_merges():
    edges = np.array([[0, 1], [1, 2], [2, 3]])
    v_zero_inds = np.array([[0, 1, 1], [0, 0, 1], [0, 1, 1]])
    Z = fusion_linkage(edges, v_zero_inds, np.array([0.1, 0.2, 0.4]), 4)
    np.testing.assert_allclose(Z, [
        [0, 1, 0.2, 2],
        [2, 3, 0.2, 2],
        [4, 5, 0.4, 4],
    ])
    assert is_valid_linkage(Z)
    assert fusion_linkage(edges, v_zero_inds[:, :2], np.array([0.1, 0.2]), 4) is None
