"""
preprocess.py

Everything CARP needs before the ADMM loop starts:
- validation, centering and scaling of the data matrix,
- Gaussian kernel weights, their kernel scale phi, and k-nearest-neighbour
  sparsification (with the smallest k that keeps the graph connected),
- the edge set, the edge index matrices, the fixed system matrix and the
  initial primal / split vectors.
"""

import logging

import numpy as np
import pandas as pd
from scipy.sparse import coo_matrix
from scipy.sparse.csgraph import connected_components
from scipy.spatial.distance import pdist, squareform

from .matrix_ops import EdgeIndex, d_mat_op, premat_generator

logger = logging.getLogger(__name__)

# distance names accepted by CARPConfig -> scipy.spatial.distance metric
SUPPORTED_DISTANCES = {
    'euclidean': 'euclidean',
    'maximum': 'chebyshev',
    'manhattan': 'cityblock',
    'canberra': 'canberra',
    'minkowski': 'minkowski',
}

PHI_GRID = 10.0 ** np.arange(-10, 11)


def validate_data(X, obs_labels=None, var_labels=None):
    """
    Check the data matrix and resolve observation / variable labels.

    Parameters
    ----------
    X : array-like or pd.DataFrame, shape (n, p)
    obs_labels, var_labels : sequence, optional
        Default to the DataFrame index / columns, else 1..n and 1..p.

    Returns
    -------
    X : np.ndarray of float64
    obs_labels, var_labels : list
    """
    if isinstance(X, pd.DataFrame):
        default_obs, default_var = list(X.index), list(X.columns)
        if not all(pd.api.types.is_numeric_dtype(dt) for dt in X.dtypes):
            raise ValueError("'X' must be numeric.")
        X = X.to_numpy(dtype=np.float64)
    else:
        X = np.asarray(X)
        if X.ndim == 1:
            X = X.reshape(-1, 1)
        if not np.issubdtype(X.dtype, np.number) or np.issubdtype(X.dtype, np.complexfloating):
            raise ValueError("'X' must be numeric.")
        X = X.astype(np.float64)
        default_obs = default_var = None

    if X.ndim != 2:
        raise ValueError(f"Expected a 2D data matrix, got shape {X.shape}")
    n, p = X.shape
    if n < 2:
        raise ValueError("CARP needs at least two observations.")
    if np.isnan(X).any():
        raise ValueError("CARP cannot handle missing data.")
    if not np.all(np.isfinite(X)):
        raise ValueError("All elements of 'X' must be finite.")

    if obs_labels is None:
        obs_labels = default_obs if default_obs is not None else list(range(1, n + 1))
    elif len(obs_labels) != n:
        raise ValueError(f"obs_labels should have length {n}")
    if var_labels is None:
        var_labels = default_var if default_var is not None else list(range(1, p + 1))
    elif len(var_labels) != p:
        raise ValueError(f"var_labels should have length {p}")

    return X, list(obs_labels), list(var_labels)


def center_scale(X, center=True, scale=False):
    """Column-wise centering and scaling (sample standard deviation)."""
    X = np.array(X, dtype=np.float64, copy=True)
    if center:
        X -= X.mean(axis=0)
    if scale:
        sd = X.std(axis=0, ddof=1) if center else np.sqrt((X ** 2).sum(axis=0) / (X.shape[0] - 1))
        sd[sd == 0] = 1.0
        X /= sd
    return X


def _pairwise_distances(X, method, p):
    if method not in SUPPORTED_DISTANCES:
        raise ValueError(f"Unsupported distance '{method}'; choose from {sorted(SUPPORTED_DISTANCES)}")
    metric = SUPPORTED_DISTANCES[method]
    if metric == 'minkowski':
        return pdist(X, metric=metric, p=p)
    return pdist(X, metric=metric)


def dense_weights(X, phi, method='euclidean', p=2):
    """
    Gaussian kernel weights exp(-phi * d_ij^2) for every pair i < j.

    Returns
    -------
    np.ndarray, shape (n*(n-1)/2,)
        In scipy's condensed (pdist) pair order.
    """
    if phi <= 0:
        raise ValueError("phi should be positive.")
    dist = _pairwise_distances(X, method, p)
    return np.exp(-phi * dist ** 2)


def choose_phi(X, method='euclidean', p=2):
    """Kernel scale on the grid 10^-10 ... 10^10 maximizing the variance of the weights."""
    dist_sq = _pairwise_distances(X, method, p) ** 2
    variances = [np.var(np.exp(-phi * dist_sq), ddof=1) if dist_sq.size > 1 else 0.0
                 for phi in PHI_GRID]
    phi = float(PHI_GRID[int(np.argmax(variances))])
    logger.debug(f"Selected kernel scale phi={phi:g}")
    return phi


def _knn_mask(X, k):
    """Condensed boolean mask: pair (i, j) kept if either is among the other's k nearest neighbours."""
    n = X.shape[0]
    dist = squareform(pdist(X))
    np.fill_diagonal(dist, np.inf)
    neighbours = np.argsort(dist, axis=1, kind='stable')[:, :k]
    adj = np.zeros((n, n), dtype=bool)
    adj[np.repeat(np.arange(n), k), neighbours.ravel()] = True
    adj |= adj.T
    i_idx, j_idx = np.triu_indices(n, k=1)
    return adj[i_idx, j_idx]


def sparse_weights(X, weights, k):
    """Zero out every weight outside the symmetrized k-nearest-neighbour graph."""
    n = X.shape[0]
    if k < 1:
        raise ValueError("k must be a positive integer.")
    k = min(int(k), n - 1)
    weights = np.asarray(weights, dtype=np.float64)
    return np.where(_knn_mask(X, k), weights, 0.0)


def is_connected(weights, n):
    """Whether the graph with an edge for every nonzero condensed weight is connected."""
    edges = weights_to_edges(weights, n)
    if n <= 1:
        return True
    adj = coo_matrix((np.ones(edges.shape[0]), (edges[:, 0], edges[:, 1])), shape=(n, n))
    n_comp, _ = connected_components(adj, directed=False)
    return n_comp == 1


def min_knn(X, weights):
    """Smallest k for which the k-nearest-neighbour weights give a connected graph."""
    n = X.shape[0]
    for k in range(1, n):
        if is_connected(sparse_weights(X, weights, k), n):
            logger.debug(f"Smallest connecting neighbourhood size k={k}")
            return k
    raise ValueError("Weights do not connect all observations for any k.")


def weights_to_edges(weights, n):
    """
    Pairs (i, j), i < j, with nonzero weight, in condensed order.

    Returns
    -------
    np.ndarray of int, shape (num_edges, 2)
    """
    weights = np.asarray(weights).ravel()
    if weights.size != n * (n - 1) // 2:
        raise ValueError(f"Incorrect weight length: expected {n * (n - 1) // 2}, got {weights.size}")
    i_idx, j_idx = np.triu_indices(n, k=1)
    keep = weights != 0
    return np.stack([i_idx[keep], j_idx[keep]], axis=1).astype(np.int64)


def precompute(X, weights, rho=1.0):
    """
    Edge set and fixed quantities for the CARP ADMM loop.

    Parameters
    ----------
    X : np.ndarray, shape (n, p)
        Preprocessed data matrix, observations in rows.
    weights : np.ndarray, shape (n*(n-1)/2,)
        Condensed pair weights; zero weights are dropped from the edge set.
    rho : float

    Returns
    -------
    dict
        'x', 'E', 'weights', 'ind_mat', 'e_one_ind_mat', 'e_two_ind_mat',
        'premat', 'u_init', 'v_init'.
    """
    n, p = X.shape
    weights = np.asarray(weights, dtype=np.float64).ravel()
    if np.any(weights < 0):
        raise ValueError("Weights must be non-negative.")
    edges = weights_to_edges(weights, n)
    logger.info(f"Pre-computing weight-based edge set: {edges.shape[0]} edges over {n} observations")

    edge_index = EdgeIndex.from_edges(edges, n, p)
    x = np.ascontiguousarray(X, dtype=np.float64).ravel()
    return {
        'x': x,
        'E': edges,
        'weights': weights[weights != 0],
        'ind_mat': edge_index.ind_mat,
        'e_one_ind_mat': edge_index.e_one_ind_mat,
        'e_two_ind_mat': edge_index.e_two_ind_mat,
        'premat': premat_generator(edges, n, p, rho),
        'u_init': x.copy(),
        'v_init': d_mat_op(x, edge_index),
    }
