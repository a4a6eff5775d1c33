"""
admm.py

ADMM driver for the CARP regularization path:
- u-update through the cached factorization of D^T D + I/rho,
- v-update through the L1 or group-L2 proximal operator,
- scaled dual update for z,
- fusion detection, snapshot retention and annealing of gamma.
"""

import enum
import logging
from dataclasses import dataclass

import numpy as np

from .math_utils import prox_l1, prox_l2, fused_edges
from .matrix_ops import EdgeIndex, d_mat_op, dt_mat_op
from .path import PathStore
from .solver import PrematSolver

logger = logging.getLogger(__name__)

# iterations between polls of the interrupt callable
CHECK_INTERRUPT_RATE = 50


class Termination(enum.Enum):
    MAX_ITER_REACHED = "max_iter_reached"
    FULLY_FUSED = "fully_fused"
    INTERRUPTED = "interrupted"


@dataclass
class CARPPath:
    """Retained iterates of a CARP run; column k of each path is snapshot k."""
    u_path: np.ndarray
    v_path: np.ndarray
    v_zero_inds: np.ndarray
    gamma_path: np.ndarray
    iterations: np.ndarray
    n_iter: int
    termination: Termination

    def __len__(self):
        return self.gamma_path.shape[0]

    @property
    def n_fusions(self):
        """Number of fused edges at each snapshot."""
        return self.v_zero_inds.sum(axis=0).astype(np.int64)


def _check_length(name, vec, expected):
    vec = np.asarray(vec, dtype=np.float64).ravel()
    if vec.size != expected:
        raise ValueError(f"'{name}' has length {vec.size}, expected {expected}")
    return vec


def carp_path(
    x, n, p, gamma_init, t, weights, u_init, v_init, premat,
    ind_mat, e_one_ind_mat, e_two_ind_mat,
    rho=1.0,
    max_iter=10000,
    burn_in=50,
    keep=10,
    l1=False,
    interrupt=None,
    sticky_fusions=True,
    initial_capacity=None,
):
    """
    Compute the CARP path for convex clustering.

    Parameters
    ----------
    x : np.ndarray, shape (n*p,)
        Points stacked row by row.
    n, p : int
        Number of points and their dimension.
    gamma_init : float
        Initial regularization level.
    t : float
        Multiplicative annealing step for gamma (> 1).
    weights : np.ndarray, shape (num_edges,) or (p*num_edges,)
        Fusion weights; per coordinate weights are only meaningful with l1=True.
    u_init, v_init : np.ndarray
        Initial primal (n*p) and split (p*num_edges) vectors.
    premat : sparse matrix, shape (n*p, n*p)
        D^T D + I/rho, factorized once.
    ind_mat, e_one_ind_mat, e_two_ind_mat : np.ndarray of int, shape (num_edges, p)
        Edge index structures, see EdgeIndex.
    rho : float
        Augmented Lagrangian parameter.
    max_iter : int
        Cap on outer iterations.
    burn_in : int
        Iterations at fixed gamma before annealing starts.
    keep : int
        Stride at which non-fusion iterations are retained.
    l1 : bool
        Coordinate-wise shrinkage instead of group shrinkage.
    interrupt : callable, optional
        Polled every CHECK_INTERRUPT_RATE iterations; a truthy return stops
        the run and returns the path accumulated so far.
    sticky_fusions : bool
        Carry fusion flags forward once set; when False the indicator is
        recomputed from the split variable at every iteration.
    initial_capacity : int, optional
        Initial path buffer size; defaults to 1.5 * n.

    Returns
    -------
    CARPPath
    """
    if n < 1 or p < 1:
        raise ValueError(f"Invalid problem size n={n}, p={p}")
    if rho <= 0:
        raise ValueError("rho must be positive.")
    if keep < 1:
        raise ValueError("keep must be a positive integer.")

    edge_index = EdgeIndex(ind_mat, e_one_ind_mat, e_two_ind_mat)
    if edge_index.p != p:
        raise ValueError(f"Index matrices have {edge_index.p} columns, expected p={p}")
    num_edges = edge_index.num_edges

    x = _check_length('x', x, n * p)
    u_new = _check_length('u_init', u_init, n * p).copy()
    v_new = _check_length('v_init', v_init, p * num_edges).copy()
    weights = np.asarray(weights, dtype=np.float64).ravel()
    if weights.size not in (num_edges, p * num_edges) or (not l1 and weights.size != num_edges):
        raise ValueError(f"'weights' has length {weights.size}, expected {num_edges}")
    if premat.shape != (n * p, n * p):
        raise ValueError(f"System matrix has shape {premat.shape}, expected ({n * p}, {n * p})")

    # setup-fatal: raises before any iterate is produced
    premat_solver = PrematSolver(premat)

    z_new = v_new.copy()
    gamma = float(gamma_init)
    zero_inds_new = np.zeros(num_edges)

    if initial_capacity is None:
        store = PathStore.for_points(n, p, num_edges)
    else:
        store = PathStore(n * p, p * num_edges, num_edges, initial_capacity)
    store.append(u_new, v_new, zero_inds_new, gamma, 0)

    logger.info(f"Starting CARP path: n={n}, p={p}, edges={num_edges}, "
                f"{'L1' if l1 else 'L2'} penalty, t={t}, rho={rho}")

    it = 0
    nzeros_new = 0
    termination = None
    while it < max_iter and nzeros_new < num_edges:
        v_old = v_new
        z_old = z_new
        zero_inds_old = zero_inds_new
        nzeros_old = nzeros_new

        # U-update
        solver_input = dt_mat_op(rho * v_old - z_old, edge_index, n)
        solver_input += x
        solver_input /= rho
        u_new = premat_solver.solve(solver_input)

        # V-update
        d_u = d_mat_op(u_new, edge_index)
        prox_argument = d_u + z_old / rho
        if l1:
            v_new = prox_l1(prox_argument, gamma / rho, weights, p, edge_index.ind_mat)
        else:
            v_new = prox_l2(prox_argument, weights * gamma / rho, p, edge_index.ind_mat)

        # Z-update
        z_new = z_old + rho * (d_u - v_new)

        fused = fused_edges(v_new, p, edge_index.ind_mat)
        if sticky_fusions:
            zero_inds_new = np.maximum(zero_inds_old, fused)
        else:
            zero_inds_new = fused.astype(np.float64)
        nzeros_new = int(zero_inds_new.sum())

        # every fusion is kept, other iterations are subsampled
        if nzeros_new != nzeros_old or it % keep == 0:
            store.append(u_new, v_new, zero_inds_new, gamma, it + 1)

        it += 1
        if it >= burn_in:
            gamma *= t

        if it % CHECK_INTERRUPT_RATE == 0:
            logger.debug(f"Iter {it}: gamma={gamma:.4e}, fused edges {nzeros_new}/{num_edges}")
            if interrupt is not None and interrupt():
                termination = Termination.INTERRUPTED
                break

    if termination is None:
        termination = (Termination.FULLY_FUSED if nzeros_new >= num_edges
                       else Termination.MAX_ITER_REACHED)

    result = store.finalize()
    logger.info(f"CARP path finished after {it} iterations ({termination.value}); "
                f"{len(store)} snapshots retained")
    return CARPPath(n_iter=it, termination=termination, **result)
