"""
math_utils.py

Shrinkage operators applied to the ADMM split variable, and the fusion check
run on their output. Edge blocks are located through IndMat; when it is
omitted, edge l is taken to occupy coordinates l*p ... l*p+p-1.
"""

import numpy as np


def _block_index(size, p, ind_mat):
    if ind_mat is None:
        if size % p != 0:
            raise ValueError(f"Vector of length {size} is not a stack of {p}-dim blocks.")
        return np.arange(size).reshape(-1, p)
    ind_mat = np.asarray(ind_mat)
    if ind_mat.ndim != 2 or ind_mat.shape[1] != p or ind_mat.size != size:
        raise ValueError(f"IndMat of shape {ind_mat.shape} does not cover a vector of length {size}.")
    return ind_mat


def ST(x, lam):
    """
    Elementwise soft-thresholding, sign(x) * max(|x| - lam, 0).

    Parameters
    ----------
    x : np.ndarray
    lam : float or np.ndarray
        Threshold(s), broadcast against x.

    Returns
    -------
    np.ndarray
    """
    return np.sign(x) * np.maximum(np.abs(x) - lam, 0.0)


def prox_l1(a, threshold, weights, p, ind_mat=None):
    """
    Coordinate-wise (L1) proximal operator.

    Each coordinate of edge l is soft-thresholded by weights[l] * threshold,
    or by its own weight when `weights` has one entry per coordinate.

    Parameters
    ----------
    a : np.ndarray, shape (p*num_edges,)
        Pre-shrink argument.
    threshold : float
        gamma / rho.
    weights : np.ndarray, shape (num_edges,) or (p*num_edges,)
    p : int
    ind_mat : np.ndarray of int, shape (num_edges, p), optional

    Returns
    -------
    np.ndarray, shape (p*num_edges,)
    """
    a = np.asarray(a, dtype=np.float64)
    if a.ndim != 1:
        raise ValueError(f"Expected a 1D argument, got shape {a.shape}")
    blocks = _block_index(a.size, p, ind_mat)
    weights = np.asarray(weights, dtype=np.float64).ravel()

    if weights.size == blocks.shape[0]:
        lam = np.empty_like(a)
        lam[blocks] = (weights * threshold)[:, None]
    elif weights.size == a.size:
        lam = weights * threshold
    else:
        raise ValueError(
            f"Expected {blocks.shape[0]} edge weights or {a.size} coordinate weights, "
            f"got {weights.size}."
        )
    return ST(a, lam)


def prox_l2(a, thresholds, p, ind_mat=None):
    """
    Group (L2) proximal operator on each length-p edge block.

    A block is scaled by (1 - t_l / ||block||) when its norm exceeds t_l and
    is set to the exact zero block otherwise (zero-norm blocks included).

    Parameters
    ----------
    a : np.ndarray, shape (p*num_edges,)
    thresholds : np.ndarray, shape (num_edges,)
        Per-edge thresholds, weights * gamma / rho.
    p : int
    ind_mat : np.ndarray of int, shape (num_edges, p), optional

    Returns
    -------
    np.ndarray, shape (p*num_edges,)
    """
    a = np.asarray(a, dtype=np.float64)
    if a.ndim != 1:
        raise ValueError(f"Expected a 1D argument, got shape {a.shape}")
    index = _block_index(a.size, p, ind_mat)
    thresholds = np.asarray(thresholds, dtype=np.float64).ravel()
    if thresholds.size != index.shape[0]:
        raise ValueError(
            f"Expected {index.shape[0]} edge thresholds, got {thresholds.size}."
        )

    blocks = a[index]
    norms = np.linalg.norm(blocks, axis=1)
    keep = norms > thresholds
    shrink = np.zeros_like(norms)
    shrink[keep] = 1.0 - thresholds[keep] / norms[keep]

    out = np.zeros_like(a)
    out[index[keep]] = blocks[keep] * shrink[keep, None]
    return out


def fused_edges(v, p, ind_mat=None):
    """
    Boolean mask over edges whose split block is exactly zero.
    """
    v = np.asarray(v)
    return np.all(v[_block_index(v.size, p, ind_mat)] == 0, axis=1)
