"""
Collection of metric functions which are used throughout the code base.
"""
import numpy as np
from scipy import linalg

EPSILON = np.finfo(float).eps


def weighted_ssq(X, estimate, variance):
    """
    Sum of squared residuals weighted by the inverse of the error variance, the MLPCA objective function.
    """
    residuals = np.subtract(X, estimate)
    return float(np.sum(np.divide(np.square(residuals), variance)))


def scaled_residuals(X, estimate, sd):
    """
    Residuals divided by the measurement error standard deviations.
    """
    residuals = np.subtract(X, estimate)
    return np.divide(residuals, sd)


def weighted_norm(X, variance):
    return float(np.sum(np.divide(np.square(X), variance)))


def reconstruct(U, S, V):
    return np.matmul(np.matmul(U, S), V.T)


def is_orthonormal(A, atol: float = 1e-8):
    """
    Check that the columns of A are orthonormal, A^{T}A = I.
    """
    gram = np.matmul(A.T, A)
    return bool(np.allclose(gram, np.eye(A.shape[1]), atol=atol))


def subspace_angles(A, B):
    """
    The principal angles, in radians, between the column spaces of A and B. Sign flips and rotations within the
    subspace do not change the angles, which makes them the right comparison for singular vectors.
    """
    return linalg.subspace_angles(A, B)


def projector_distance(A, B):
    """
    Spectral norm of the difference between the orthogonal projectors onto the column spaces of A and B.
    """
    qa, _ = np.linalg.qr(A)
    qb, _ = np.linalg.qr(B)
    return float(np.linalg.norm(np.matmul(qa, qa.T) - np.matmul(qb, qb.T), ord=2))
