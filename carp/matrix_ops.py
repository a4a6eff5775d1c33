"""
matrix_ops.py

Edge-difference operator for convex clustering:
- EdgeIndex: the three per-edge index matrices (split coordinates and the
  coordinates of both endpoints),
- d_mat_op / dt_mat_op: the forward difference operator and its adjoint,
  applied by gather/scatter with PyTorch instead of a matrix product,
- sparse builders for the difference matrix and the fixed ADMM system matrix,
  used once at setup.
"""

import numpy as np
import scipy.sparse as sp
import torch


class EdgeIndex:
    """
    Index structures describing an edge set over n points in p dimensions.

    Parameters
    ----------
    ind_mat : array-like of int, shape (num_edges, p)
        Row l holds the coordinates of edge l's block in the split vector.
    e_one_ind_mat, e_two_ind_mat : array-like of int, shape (num_edges, p)
        Row l holds the primal coordinates of the first / second endpoint.
    """

    def __init__(self, ind_mat, e_one_ind_mat, e_two_ind_mat):
        ind_mat = np.asarray(ind_mat, dtype=np.int64)
        e_one_ind_mat = np.asarray(e_one_ind_mat, dtype=np.int64)
        e_two_ind_mat = np.asarray(e_two_ind_mat, dtype=np.int64)
        if ind_mat.ndim != 2:
            raise ValueError(f"Expected a 2D IndMat, got shape {ind_mat.shape}")
        if e_one_ind_mat.shape != ind_mat.shape or e_two_ind_mat.shape != ind_mat.shape:
            raise ValueError(
                "Shape mismatch between index matrices: "
                f"{ind_mat.shape}, {e_one_ind_mat.shape}, {e_two_ind_mat.shape}"
            )

        self.ind_mat = ind_mat
        self.e_one_ind_mat = e_one_ind_mat
        self.e_two_ind_mat = e_two_ind_mat
        self.num_edges, self.p = ind_mat.shape
        self.max_point_coord = int(max(e_one_ind_mat.max(initial=-1),
                                       e_two_ind_mat.max(initial=-1)))

        # flattened once, reused by every operator call
        self._ind_t = torch.from_numpy(ind_mat.ravel())
        self._e1_t = torch.from_numpy(e_one_ind_mat.ravel())
        self._e2_t = torch.from_numpy(e_two_ind_mat.ravel())

    @classmethod
    def from_edges(cls, edges, n, p):
        """
        Build the index matrices for an (num_edges, 2) array of point pairs.

        Edge l's split block sits at l*p ... l*p+p-1; point i's coordinates
        sit at i*p ... i*p+p-1.
        """
        edges = np.asarray(edges, dtype=np.int64).reshape(-1, 2)
        if edges.size and (edges.min() < 0 or edges.max() >= n):
            raise ValueError(f"Edge endpoints must lie in [0, {n}).")
        offsets = np.arange(p, dtype=np.int64)
        ind_mat = np.arange(edges.shape[0], dtype=np.int64)[:, None] * p + offsets
        e_one = edges[:, 0][:, None] * p + offsets
        e_two = edges[:, 1][:, None] * p + offsets
        return cls(ind_mat, e_one, e_two)

    @property
    def v_size(self):
        return self.num_edges * self.p

    def __repr__(self):
        return f"EdgeIndex(num_edges={self.num_edges}, p={self.p})"


def d_mat_op(u, edge_index):
    """
    Forward difference operator: v_l = u[endpoint one] - u[endpoint two].

    Parameters
    ----------
    u : np.ndarray, shape (n*p,)
    edge_index : EdgeIndex

    Returns
    -------
    np.ndarray, shape (p*num_edges,)
    """
    u = np.ascontiguousarray(u, dtype=np.float64)
    if u.ndim != 1 or u.size % edge_index.p != 0 or u.size <= edge_index.max_point_coord:
        raise ValueError(
            f"Primal vector of length {u.size} does not match {edge_index!r}."
        )
    u_t = torch.from_numpy(u)
    diff_t = u_t.index_select(0, edge_index._e1_t) - u_t.index_select(0, edge_index._e2_t)
    out_t = torch.zeros(edge_index.v_size, dtype=u_t.dtype)
    out_t[edge_index._ind_t] = diff_t
    return out_t.numpy()


def dt_mat_op(v, edge_index, n):
    """
    Adjoint of d_mat_op: scatter-add each edge block to its first endpoint
    and subtract it from its second endpoint.

    Parameters
    ----------
    v : np.ndarray, shape (p*num_edges,)
    edge_index : EdgeIndex
    n : int
        Number of points.

    Returns
    -------
    np.ndarray, shape (n*p,)
    """
    v = np.ascontiguousarray(v, dtype=np.float64)
    if v.shape != (edge_index.v_size,):
        raise ValueError(
            f"Edge vector has shape {v.shape}, expected ({edge_index.v_size},)."
        )
    if n * edge_index.p <= edge_index.max_point_coord:
        raise ValueError(f"n={n} is too small for {edge_index!r}.")
    v_t = torch.from_numpy(v)
    blocks_t = v_t.index_select(0, edge_index._ind_t)
    out_t = torch.zeros(n * edge_index.p, dtype=v_t.dtype)
    out_t.index_add_(0, edge_index._e1_t, blocks_t)
    out_t.index_add_(0, edge_index._e2_t, -blocks_t)
    return out_t.numpy()


def difference_matrix(edges, n, p):
    """
    Sparse difference matrix D with D @ u == d_mat_op(u, EdgeIndex.from_edges(edges, n, p)).

    Returns
    -------
    scipy.sparse.csc_matrix, shape (p*num_edges, n*p)
    """
    edge_index = EdgeIndex.from_edges(edges, n, p)
    rows = np.concatenate([edge_index.ind_mat.ravel(), edge_index.ind_mat.ravel()])
    cols = np.concatenate([edge_index.e_one_ind_mat.ravel(), edge_index.e_two_ind_mat.ravel()])
    vals = np.concatenate([np.ones(edge_index.v_size), -np.ones(edge_index.v_size)])
    return sp.csc_matrix((vals, (rows, cols)), shape=(edge_index.v_size, n * p))


def premat_generator(edges, n, p, rho=1.0):
    """
    The fixed system matrix of the ADMM u-update, D^T D + I / rho.
    """
    if rho <= 0:
        raise ValueError("rho must be positive.")
    d_mat = difference_matrix(edges, n, p)
    return (d_mat.T @ d_mat + sp.identity(n * p, format="csc") / rho).tocsc()
