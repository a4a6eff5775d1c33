"""
solver.py

Sparse LU factorization of the fixed ADMM system matrix. The matrix is
factorized once at setup and every u-update is a pair of triangular solves.
"""

import logging

import numpy as np
import scipy.sparse as sp
from scipy.sparse.linalg import splu

logger = logging.getLogger(__name__)


def _csc(mat):
    return mat if sp.issparse(mat) and mat.format == "csc" else sp.csc_matrix(mat)


class PrematSolver:
    """
    Owns the factorization of `premat`; read-only after construction.

    Raises
    ------
    ValueError
        If `premat` is not square.
    RuntimeError
        If the factorization fails or yields a zero / non-finite pivot.
    """

    def __init__(self, premat):
        premat = _csc(premat).astype(np.float64)
        if premat.shape[0] != premat.shape[1]:
            raise ValueError(f"System matrix must be square, got shape {premat.shape}")
        self.shape = premat.shape

        try:
            self._lu = splu(premat)
        except RuntimeError as e:
            raise RuntimeError(f"Failed to factorize the system matrix: {e}") from e

        pivots = self._lu.U.diagonal()
        if not np.all(np.isfinite(pivots)) or np.any(pivots == 0):
            raise RuntimeError("Failed to factorize the system matrix: matrix is singular.")
        logger.debug(f"Factorized {self.shape[0]}x{self.shape[1]} system matrix "
                     f"(nnz L={self._lu.L.nnz}, U={self._lu.U.nnz})")

    def solve(self, b):
        """Return x with premat @ x == b."""
        b = np.asarray(b, dtype=np.float64)
        if b.shape != (self.shape[0],):
            raise ValueError(f"Right-hand side has shape {b.shape}, expected ({self.shape[0]},)")
        return self._lu.solve(b)
