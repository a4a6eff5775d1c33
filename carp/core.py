"""
This module provides the high-level CARP (Convex clustering via Algorithmic
Regularization Paths) workflow: configuration, preprocessing of the data
matrix, the annealed ADMM path and post-processing of that path into cluster
assignments, a long-format cluster path table and a dendrogram linkage.

Public API:
- `CARPConfig`: A dataclass for managing all algorithm parameters.
- `carp`: Runs the full workflow on a data matrix and returns a `CARPFit`.
- `cluster_assignments`: Cluster labels at every retained snapshot.
- `fusion_linkage`: A scipy linkage matrix built from the fusion sequence.
"""

import copy
import logging
import numbers
from dataclasses import dataclass, field, replace
from typing import Any, Callable, List, Optional

import numpy as np
import pandas as pd
from scipy.sparse import coo_matrix
from scipy.sparse.csgraph import connected_components

from .admm import CARPPath, carp_path
from .preprocess import (
    SUPPORTED_DISTANCES, validate_data, center_scale, dense_weights,
    choose_phi, sparse_weights, min_knn, precompute
)

logger = logging.getLogger(__name__)

ALG_TYPES = ('carp', 'carpl1')

# ===================================================================
# SECTION 1: CONFIGURATION CLASS
# ===================================================================

@dataclass
class CARPConfig:
    """A dataclass for managing all CARP parameters."""
    obs_labels: Optional[List[Any]] = None
    var_labels: Optional[List[Any]] = None
    X_center: bool = True
    X_scale: bool = False
    phi: Optional[float] = None
    rho: float = 1.0
    weights: Optional[np.ndarray] = None
    k: Optional[int] = None
    weight_dist: str = 'euclidean'
    weight_dist_p: float = 2
    max_iter: int = 10000
    burn_in: int = 50
    alg_type: str = 'carp'
    t: float = 1.05
    keep: int = 1
    gamma_init: float = 1e-8

    def validate(self):
        """Raise ValueError on the first invalid parameter."""
        for name in ('X_center', 'X_scale'):
            if not isinstance(getattr(self, name), (bool, np.bool_)):
                raise ValueError(f"'{name}' must be either True or False.")
        if not _is_positive_number(self.rho):
            raise ValueError("'rho' must be a positive scalar.")
        if self.weight_dist not in SUPPORTED_DISTANCES:
            raise ValueError(f"Unsupported choice of 'weight_dist'; choose from {sorted(SUPPORTED_DISTANCES)}.")
        if not _is_positive_number(self.weight_dist_p):
            raise ValueError("'weight_dist_p' must be a positive scalar.")
        if self.phi is not None and not _is_positive_number(self.phi):
            raise ValueError("'phi' should be positive.")
        if self.k is not None and not _is_positive_int(self.k):
            raise ValueError("If not None, 'k' must be a positive integer.")
        if not _is_positive_int(self.max_iter):
            raise ValueError("'max_iter' must be a positive integer.")
        if not _is_positive_int(self.burn_in) or self.burn_in >= self.max_iter:
            raise ValueError("'burn_in' must be a positive integer less than 'max_iter'.")
        if self.alg_type not in ALG_TYPES:
            raise ValueError(f"Unrecognized value of 'alg_type'; allowed values are {ALG_TYPES}.")
        if not isinstance(self.t, numbers.Real) or not self.t > 1:
            raise ValueError("'t' must be a scalar greater than 1.")
        if not _is_positive_int(self.keep):
            raise ValueError("'keep' must be a positive integer.")
        if not _is_positive_number(self.gamma_init):
            raise ValueError("'gamma_init' must be a positive scalar.")
        return self


def _is_positive_number(x):
    return isinstance(x, numbers.Real) and not isinstance(x, bool) and np.isfinite(x) and x > 0


def _is_positive_int(x):
    return isinstance(x, numbers.Integral) and not isinstance(x, bool) and x > 0

# ===================================================================
# SECTION 2: POST-PROCESSING
# ===================================================================

def _components(edges, fused, n):
    mask = np.asarray(fused, dtype=bool)
    adj = coo_matrix(
        (np.ones(int(mask.sum())), (edges[mask, 0], edges[mask, 1])), shape=(n, n)
    )
    _, labels = connected_components(adj, directed=False)
    # relabel in order of first appearance
    _, first_idx, inverse = np.unique(labels, return_index=True, return_inverse=True)
    order = np.argsort(np.argsort(first_idx))
    return order[inverse]


def cluster_assignments(edges, v_zero_inds, n):
    """
    Cluster labels at every snapshot: connected components of fused edges.

    Parameters
    ----------
    edges : np.ndarray of int, shape (num_edges, 2)
    v_zero_inds : np.ndarray, shape (num_edges, k)
    n : int

    Returns
    -------
    np.ndarray of int, shape (k, n)
    """
    edges = np.asarray(edges, dtype=np.int64).reshape(-1, 2)
    v_zero_inds = np.asarray(v_zero_inds)
    if v_zero_inds.shape[0] != edges.shape[0]:
        raise ValueError(f"Fusion path has {v_zero_inds.shape[0]} rows for {edges.shape[0]} edges.")
    return np.vstack([_components(edges, v_zero_inds[:, k], n)
                      for k in range(v_zero_inds.shape[1])])


def fusion_linkage(edges, v_zero_inds, gamma_path, n):
    """
    Build a scipy.cluster.hierarchy linkage matrix from the fusion sequence.

    Clusters merging at the same snapshot are joined pairwise at that
    snapshot's gamma. Fusions are accumulated along the path, so a fusion
    that is later undone still counts.

    Returns
    -------
    np.ndarray, shape (n-1, 4), or None if the path never reaches one cluster.
    """
    edges = np.asarray(edges, dtype=np.int64).reshape(-1, 2)
    cumulative = np.maximum.accumulate(np.asarray(v_zero_inds) > 0, axis=1)

    node_of = np.arange(n)          # linkage node currently holding each observation
    size = {i: 1 for i in range(n)}
    rows = []
    next_node = n
    for k in range(cumulative.shape[1]):
        labels = _components(edges, cumulative[:, k], n)
        for lbl in np.unique(labels):
            members = labels == lbl
            nodes = sorted(set(node_of[members].tolist()))
            if len(nodes) < 2:
                continue
            current = nodes[0]
            for other in nodes[1:]:
                merged_size = size[current] + size[other]
                rows.append([min(current, other), max(current, other),
                             float(gamma_path[k]), merged_size])
                size[next_node] = merged_size
                current = next_node
                next_node += 1
            node_of[members] = current

    if len(rows) != n - 1:
        return None
    return np.asarray(rows, dtype=np.float64)


def cluster_path_table(path, clust_path, obs_labels, var_labels):
    """
    Long-format table of the path: one row per (snapshot, observation).

    Columns: Iter, Iteration, Obs, ObsLabel, Cluster, NCluster, Gamma,
    GammaPercent and one column per variable holding the centroid estimate U.
    """
    k, n = clust_path.shape
    p = len(var_labels)
    u = path.u_path.T.reshape(k, n, p)
    n_cluster = np.array([len(np.unique(row)) for row in clust_path])
    gamma_max = path.gamma_path.max()

    df = pd.DataFrame({
        'Iter': np.repeat(np.arange(k), n),
        'Iteration': np.repeat(path.iterations, n),
        'Obs': np.tile(np.arange(n), k),
        'ObsLabel': np.tile(np.asarray(obs_labels, dtype=object), k),
        'Cluster': clust_path.ravel(),
        'NCluster': np.repeat(n_cluster, n),
        'Gamma': np.repeat(path.gamma_path, n),
        'GammaPercent': np.repeat(path.gamma_path / gamma_max, n),
    })
    u_df = pd.DataFrame(u.reshape(k * n, p), columns=[str(v) for v in var_labels])
    return pd.concat([df, u_df], axis=1)

# ===================================================================
# SECTION 3: FIT OBJECT
# ===================================================================

@dataclass
class CARPFit:
    """Result of `carp`: the raw path plus its post-processed forms."""
    X: np.ndarray
    X_processed: np.ndarray
    n_obs: int
    p_var: int
    obs_labels: List[Any]
    var_labels: List[Any]
    config: CARPConfig
    phi: Optional[float]
    k: Optional[int]
    weights: np.ndarray
    edges: np.ndarray
    path: CARPPath
    clust_path: np.ndarray
    cluster_path_vis: pd.DataFrame = field(repr=False)
    linkage: Optional[np.ndarray] = None

    @property
    def alg_type(self):
        return self.config.alg_type

    @property
    def card_e(self):
        return self.edges.shape[0]

    def clustering(self, n_clusters):
        """
        Labels at the first snapshot with at most `n_clusters` clusters.
        """
        if not _is_positive_int(n_clusters) or n_clusters > self.n_obs:
            raise ValueError(f"n_clusters must be an integer in [1, {self.n_obs}]")
        counts = np.array([len(np.unique(row)) for row in self.clust_path])
        hits = np.nonzero(counts <= n_clusters)[0]
        if hits.size == 0:
            raise ValueError(f"The path never reaches {n_clusters} clusters.")
        return self.clust_path[hits[0]]

    def __str__(self):
        if self.alg_type == 'carpl1':
            alg_string = f"CARP (t = {round(self.config.t, 3)}) [L1]"
        else:
            alg_string = f"CARP (t = {round(self.config.t, 3)})"
        phi = "user weights" if self.phi is None else round(self.phi, 3)
        raw = pd.DataFrame(
            self.X[:min(5, self.n_obs), :min(5, self.p_var)],
            index=self.obs_labels[:min(5, self.n_obs)],
            columns=self.var_labels[:min(5, self.p_var)],
        )
        return "\n".join([
            "CARP Fit Summary",
            "====================",
            "",
            f"Algorithm:  {alg_string}",
            "",
            f"Number of Observations:  {self.n_obs}",
            f"Number of Variables:     {self.p_var}",
            "",
            "Pre-processing options:",
            f" - Columnwise centering:  {self.config.X_center}",
            f" - Columnwise scaling:    {self.config.X_scale}",
            "",
            "RBF Kernel Weights:",
            f" - phi =  {phi}",
            f" - K   =  {self.k}",
            "",
            f"Path: {len(self.path)} snapshots, {self.path.n_iter} iterations "
            f"({self.path.termination.value})",
            "",
            "Raw Data:",
            raw.to_string(),
        ])

# ===================================================================
# SECTION 4: PUBLIC API
# ===================================================================

def carp(X, config: Optional[CARPConfig] = None,
         interrupt: Optional[Callable[[], bool]] = None, **kwargs) -> CARPFit:
    """
    Compute the CARP convex clustering solution path for a data matrix.

    Args:
        X: (n, p) data matrix, observations in rows. A DataFrame's index and
           columns are used as default observation / variable labels.
        config: Algorithm parameters; keyword arguments override its fields.
        interrupt: Optional callable polled during the ADMM loop; returning
           True stops the run and keeps the path computed so far.

    Returns:
        A CARPFit with the raw path, per-snapshot cluster labels, the
        long-format cluster path table and, when every observation ends up
        in one cluster, a scipy linkage matrix.
    """
    config = replace(config, **kwargs) if config is not None else CARPConfig(**kwargs)
    config.validate()

    X_arr, obs_labels, var_labels = validate_data(X, config.obs_labels, config.var_labels)
    n_obs, p_var = X_arr.shape
    X_proc = center_scale(X_arr, config.X_center, config.X_scale)

    phi, k = config.phi, config.k
    if config.weights is None:
        if phi is None:
            phi = choose_phi(X_proc, config.weight_dist, config.weight_dist_p)
        weights = dense_weights(X_proc, phi, config.weight_dist, config.weight_dist_p)
        if k is None:
            k = min_knn(X_proc, weights)
        weights = sparse_weights(X_proc, weights, k)
    else:
        weights = np.asarray(config.weights, dtype=np.float64).ravel()
        if weights.size != n_obs * (n_obs - 1) // 2:
            raise ValueError("Incorrect weight length")

    pre = precompute(X_proc, weights, config.rho)

    logger.info("Computing CARP Path")
    path = carp_path(
        x=pre['x'], n=n_obs, p=p_var,
        gamma_init=config.gamma_init, t=config.t,
        weights=pre['weights'],
        u_init=pre['u_init'], v_init=pre['v_init'],
        premat=pre['premat'],
        ind_mat=pre['ind_mat'],
        e_one_ind_mat=pre['e_one_ind_mat'],
        e_two_ind_mat=pre['e_two_ind_mat'],
        rho=config.rho,
        max_iter=config.max_iter,
        burn_in=config.burn_in,
        keep=config.keep,
        l1=(config.alg_type == 'carpl1'),
        interrupt=interrupt,
    )

    logger.info("Post-processing")
    clust_path = cluster_assignments(pre['E'], path.v_zero_inds, n_obs)
    vis = cluster_path_table(path, clust_path, obs_labels, var_labels)
    linkage = fusion_linkage(pre['E'], path.v_zero_inds, path.gamma_path, n_obs)
    if linkage is None:
        logger.warning("Path did not fuse all observations; no dendrogram available.")

    return CARPFit(
        X=X_arr, X_processed=X_proc,
        n_obs=n_obs, p_var=p_var,
        obs_labels=obs_labels, var_labels=var_labels,
        config=copy.deepcopy(config),
        phi=phi, k=k,
        weights=weights, edges=pre['E'],
        path=path, clust_path=clust_path,
        cluster_path_vis=vis, linkage=linkage,
    )
