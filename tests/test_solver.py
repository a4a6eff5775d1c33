import numpy as np
import pytest
import scipy.sparse as sp

from carp.matrix_ops import premat_generator
from carp.solver import PrematSolver


def test_solve_reproduces_rhs():
    edges = np.array([[0, 1], [0, 2], [1, 2], [2, 3]])
    premat = premat_generator(edges, n=4, p=2, rho=1.0)
    solver = PrematSolver(premat)
    rng = np.random.default_rng(3)
    for _ in range(3):
        b = rng.normal(size=8)
        np.testing.assert_allclose(premat @ solver.solve(b), b, atol=1e-10)


def test_accepts_dense_input():
    solver = PrematSolver(np.array([[2.0, 1.0], [1.0, 3.0]]))
    np.testing.assert_allclose(solver.solve(np.array([3.0, 4.0])), [1.0, 1.0])


@pytest.mark.parametrize("mat", [
    sp.csc_matrix((3, 3)),
    sp.csc_matrix(np.array([[1.0, 1.0], [1.0, 1.0]])),
])
def test_singular_matrix_is_fatal(mat):
    with pytest.raises(RuntimeError):
        PrematSolver(mat)


def test_shape_errors():
    with pytest.raises(ValueError):
        PrematSolver(sp.identity(3, format="csc")[:, :2])
    solver = PrematSolver(sp.identity(3, format="csc"))
    with pytest.raises(ValueError):
        solver.solve(np.ones(2))
