import sys, os
src_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), "..")
sys.path.append(src_path)
import numpy as np
import pytest
from mlpca.metrics import (weighted_ssq, scaled_residuals, weighted_norm, reconstruct, is_orthonormal,
                           subspace_angles, projector_distance)
from mlpca.utils import np_encoder, memory_estimate


def test_weighted_ssq():
    X = np.array([[1.0, 2.0], [3.0, 4.0]])
    estimate = np.array([[0.0, 2.0], [3.0, 2.0]])
    variance = np.array([[1.0, 1.0], [1.0, 4.0]])
    assert weighted_ssq(X, estimate, variance) == pytest.approx(2.0)


def test_scaled_residuals():
    X = np.array([2.0, 4.0])
    estimate = np.array([1.0, 1.0])
    sd = np.array([0.5, 3.0])
    assert np.allclose(scaled_residuals(X, estimate, sd), [2.0, 1.0])


def test_weighted_norm():
    X = np.array([[2.0, 0.0], [1.0, 3.0]])
    variance = np.array([[4.0, 1.0], [1.0, 9.0]])
    assert weighted_norm(X, variance) == pytest.approx(3.0)


def test_reconstruct():
    U = np.eye(3)[:, :2]
    S = np.diag([2.0, 1.0])
    V = np.eye(2)
    expected = np.array([[2.0, 0.0], [0.0, 1.0], [0.0, 0.0]])
    assert np.allclose(reconstruct(U, S, V), expected)


def test_is_orthonormal():
    Q, _ = np.linalg.qr(np.random.default_rng(0).standard_normal(size=(6, 3)))
    assert is_orthonormal(Q)
    assert not is_orthonormal(2.0 * Q)


def test_subspace_comparisons():
    A = np.eye(4)[:, :2]
    B = np.matmul(A, np.array([[0.0, -1.0], [1.0, 0.0]]))
    assert np.max(subspace_angles(A, B)) < 1e-10
    assert projector_distance(A, B) < 1e-10
    C = np.eye(4)[:, 2:]
    assert np.max(subspace_angles(A, C)) == pytest.approx(np.pi / 2)
    assert projector_distance(A, C) == pytest.approx(1.0)


def test_np_encoder():
    assert np_encoder(np.float64(1.5)) == 1.5
    assert isinstance(np_encoder(np.int64(3)), int)
    assert np_encoder(np.array([1, 2])) == [1, 2]


def test_memory_estimate():
    estimate = memory_estimate(n_features=10, n_samples=50, rank=3, cores=4)
    assert estimate["max_bytes"] > 0
    assert 1 <= estimate["max_cores"] <= 4
    assert "estimate" in estimate
