import numpy as np
import pytest

from carp.matrix_ops import (
    EdgeIndex, d_mat_op, dt_mat_op, difference_matrix, premat_generator
)


def random_edges(n, num_edges, seed=0):
    rng = np.random.default_rng(seed)
    i_idx, j_idx = np.triu_indices(n, k=1)
    pick = rng.choice(i_idx.size, size=num_edges, replace=False)
    return np.stack([i_idx[pick], j_idx[pick]], axis=1)


@pytest.fixture
def setup_operator():
    n, p = 7, 3
    edges = random_edges(n, 12)
    rng = np.random.default_rng(1)
    return {
        "n": n,
        "p": p,
        "edges": edges,
        "edge_index": EdgeIndex.from_edges(edges, n, p),
        "D": difference_matrix(edges, n, p),
        "u": rng.normal(size=n * p),
        "v": rng.normal(size=edges.shape[0] * p),
    }


def test_index_layout():
    edge_index = EdgeIndex.from_edges([[0, 2], [1, 2]], n=3, p=2)
    np.testing.assert_array_equal(edge_index.ind_mat, [[0, 1], [2, 3]])
    np.testing.assert_array_equal(edge_index.e_one_ind_mat, [[0, 1], [2, 3]])
    np.testing.assert_array_equal(edge_index.e_two_ind_mat, [[4, 5], [4, 5]])
    assert edge_index.num_edges == 2 and edge_index.v_size == 4


def test_forward_differences():
    edge_index = EdgeIndex.from_edges([[0, 1], [0, 2]], n=3, p=2)
    u = np.array([0.0, 0.0, 0.0, 1.0, 10.0, 10.0])
    np.testing.assert_array_equal(d_mat_op(u, edge_index), [0.0, -1.0, -10.0, -10.0])


def test_forward_matches_sparse_matrix(setup_operator):
    s = setup_operator
    np.testing.assert_allclose(d_mat_op(s["u"], s["edge_index"]), s["D"] @ s["u"])


def test_adjoint_matches_sparse_transpose(setup_operator):
    s = setup_operator
    np.testing.assert_allclose(
        dt_mat_op(s["v"], s["edge_index"], s["n"]), s["D"].T @ s["v"]
    )


def test_adjoint_identity(setup_operator):
    s = setup_operator
    lhs = np.dot(d_mat_op(s["u"], s["edge_index"]), s["v"])
    rhs = np.dot(s["u"], dt_mat_op(s["v"], s["edge_index"], s["n"]))
    assert np.isclose(lhs, rhs), "<Du, v> should equal <u, D^T v>"


def test_non_contiguous_ind_mat():
    # edge blocks stored in reverse order in the split vector
    edges = np.array([[0, 1], [1, 2]])
    base = EdgeIndex.from_edges(edges, 3, 2)
    edge_index = EdgeIndex(base.ind_mat[::-1], base.e_one_ind_mat, base.e_two_ind_mat)
    u = np.arange(6, dtype=float)
    v = d_mat_op(u, edge_index)
    np.testing.assert_array_equal(v, [-2.0, -2.0, -2.0, -2.0])
    np.testing.assert_allclose(
        dt_mat_op(np.array([1.0, 2.0, 3.0, 4.0]), edge_index, 3),
        [3.0, 4.0, -2.0, -2.0, -1.0, -2.0],
    )


def test_length_mismatch_rejected(setup_operator):
    s = setup_operator
    with pytest.raises(ValueError):
        d_mat_op(s["u"][:-1], s["edge_index"])
    with pytest.raises(ValueError):
        d_mat_op(np.zeros(s["p"]), s["edge_index"])
    with pytest.raises(ValueError):
        dt_mat_op(s["v"][:-1], s["edge_index"], s["n"])


def test_index_shape_mismatch_rejected():
    with pytest.raises(ValueError):
        EdgeIndex(np.zeros((2, 2)), np.zeros((2, 2)), np.zeros((3, 2)))
    with pytest.raises(ValueError):
        EdgeIndex.from_edges([[0, 3]], n=3, p=1)


def test_premat_structure():
    edges = np.array([[0, 1], [0, 2], [1, 2]])
    premat = premat_generator(edges, n=3, p=1, rho=2.0).toarray()
    laplacian = np.array([[2, -1, -1], [-1, 2, -1], [-1, -1, 2]], dtype=float)
    np.testing.assert_allclose(premat, laplacian + 0.5 * np.eye(3))
