import sys, os
src_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), "..", "..")
sys.path.append(src_path)
import numpy as np
import pytest
from mlpca.model.svd import truncated_svd, svd_flip
from mlpca.metrics import is_orthonormal, subspace_angles


class TestTruncatedSVD:

    def test_dense(self):
        rng = np.random.default_rng(1)
        X = rng.standard_normal(size=(15, 6))
        U, s, V = truncated_svd(X, 3)
        assert U.shape == (15, 3)
        assert s.shape == (3,)
        assert V.shape == (6, 3)
        assert np.all(np.diff(s) <= 0.0)
        assert is_orthonormal(U)
        assert is_orthonormal(V)
        s_full = np.linalg.svd(X, compute_uv=False)
        assert np.allclose(s, s_full[:3])

    def test_full_rank_reconstruction(self):
        rng = np.random.default_rng(2)
        X = rng.standard_normal(size=(6, 10))
        U, s, V = truncated_svd(X, 6)
        assert np.allclose(np.matmul(U * s, V.T), X)

    def test_arpack_matches_dense(self):
        rng = np.random.default_rng(5)
        scores = rng.standard_normal(size=(300, 3))
        loadings = rng.standard_normal(size=(3, 250))
        X = 10.0 * np.matmul(scores, loadings) + rng.standard_normal(size=(300, 250))
        U_d, s_d, V_d = truncated_svd(X, 3, solver="dense")
        U_a, s_a, V_a = truncated_svd(X, 3, solver="arpack")
        assert np.allclose(s_a, s_d, rtol=1e-6)
        assert np.all(np.diff(s_a) <= 0.0)
        assert np.max(subspace_angles(U_a, U_d)) < 1e-6
        assert np.max(subspace_angles(V_a, V_d)) < 1e-6

    def test_arpack_full_rank_fallback(self):
        rng = np.random.default_rng(6)
        X = rng.standard_normal(size=(10, 4))
        U, s, V = truncated_svd(X, 4, solver="arpack")
        assert U.shape == (10, 4)
        assert np.allclose(np.matmul(U * s, V.T), X)

    def test_deterministic(self):
        rng = np.random.default_rng(9)
        X = rng.standard_normal(size=(12, 7))
        U1, s1, V1 = truncated_svd(X, 2)
        U2, s2, V2 = truncated_svd(X, 2)
        assert np.array_equal(U1, U2)
        assert np.array_equal(V1, V2)

    def test_invalid_solver(self):
        with pytest.raises(ValueError):
            truncated_svd(np.ones(shape=(5, 5)), 2, solver="randomized")

    def test_svd_flip(self):
        U = np.array([[0.6, -0.8], [-0.8, -0.6]])
        V = np.array([[1.0, 0.0], [0.0, 1.0]])
        U_f, V_f = svd_flip(U, V)
        assert np.all(U_f[np.argmax(np.abs(U_f), axis=0), [0, 1]] > 0.0)
        assert np.allclose(np.matmul(U_f, V_f.T), np.matmul(U, V.T))
