"""
path.py

Columnar storage for the retained iterates of a CARP run. Capacity doubles
when full and is trimmed to the logical length on finalize().
"""

import numpy as np


class PathStore:
    """
    Growable column buffers for (u, v, fusion indicator, gamma, iteration).

    Parameters
    ----------
    n_u : int
        Length of the primal vector (n*p).
    n_v : int
        Length of the split vector (p*num_edges).
    n_edges : int
    capacity : int
        Initial number of columns.
    """

    def __init__(self, n_u, n_v, n_edges, capacity):
        capacity = max(int(capacity), 1)
        self._u = np.empty((n_u, capacity))
        self._v = np.empty((n_v, capacity))
        self._zero_inds = np.empty((n_edges, capacity))
        self._gamma = np.empty(capacity)
        self._iteration = np.empty(capacity, dtype=np.int64)
        self._length = 0
        self._finalized = False

    @classmethod
    def for_points(cls, n, p, n_edges):
        """Pre-size for about 1.5n snapshots, one per expected fusion."""
        return cls(n * p, p * n_edges, n_edges, int(1.5 * n))

    def __len__(self):
        return self._length

    @property
    def capacity(self):
        return self._gamma.shape[0]

    def _grow(self):
        new_capacity = 2 * self.capacity

        def widen(buf):
            out = np.empty(buf.shape[:-1] + (new_capacity,), dtype=buf.dtype)
            out[..., :self._length] = buf[..., :self._length]
            return out

        self._u = widen(self._u)
        self._v = widen(self._v)
        self._zero_inds = widen(self._zero_inds)
        self._gamma = widen(self._gamma)
        self._iteration = widen(self._iteration)

    def append(self, u, v, zero_inds, gamma, iteration):
        if self._finalized:
            raise RuntimeError("Cannot append to a finalized path.")
        if self._length >= self.capacity:
            self._grow()
        k = self._length
        self._u[:, k] = u
        self._v[:, k] = v
        self._zero_inds[:, k] = zero_inds
        self._gamma[k] = gamma
        self._iteration[k] = iteration
        self._length += 1

    def finalize(self):
        """
        Trim every buffer to the number of appended snapshots.

        Returns
        -------
        dict
            'u_path', 'v_path', 'v_zero_inds', 'gamma_path', 'iterations'.
        """
        if self._finalized:
            raise RuntimeError("Path has already been finalized.")
        k = self._length
        self._u = self._u[:, :k].copy()
        self._v = self._v[:, :k].copy()
        self._zero_inds = self._zero_inds[:, :k].copy()
        self._gamma = self._gamma[:k].copy()
        self._iteration = self._iteration[:k].copy()
        self._finalized = True
        return {
            'u_path': self._u,
            'v_path': self._v,
            'v_zero_inds': self._zero_inds,
            'gamma_path': self._gamma,
            'iterations': self._iteration,
        }
