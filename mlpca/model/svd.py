import logging
import numpy as np
from scipy import linalg
from scipy.sparse.linalg import svds

logger = logging.getLogger(__name__)

# Matrices with a smaller dimension under this size are always decomposed with the dense LAPACK routine.
DENSE_LIMIT = 200


def svd_flip(U, V):
    """
    Normalize the signs of the singular vectors so the largest magnitude entry of each left singular vector is
    positive. The decomposition U S V^{T} is unchanged.
    """
    max_abs_rows = np.argmax(np.abs(U), axis=0)
    signs = np.sign(U[max_abs_rows, range(U.shape[1])])
    signs[signs == 0] = 1.0
    return U * signs, V * signs


def truncated_svd(X: np.ndarray, p: int, solver: str = "auto"):
    """
    Compute the top-p singular triplets of X.

    The dense solver computes the thin SVD with LAPACK and keeps the first p triplets. The 'arpack' solver uses the
    iterative scipy.sparse.linalg.svds routine, which requires p < min(M, N) and is only faster when p is small
    compared to the matrix dimensions. For matrices with repeated singular values the choice of singular vectors within
    the repeated block is implementation dependent.

    Parameters
    ----------
    X : np.ndarray
        The matrix to decompose, of shape M x N.
    p : int
        The number of singular triplets to return, 1 <= p <= min(M, N).
    solver : str
        One of 'auto', 'dense' or 'arpack'. Default: 'auto', which selects 'arpack' only for large matrices and
        small p.

    Returns
    -------
    np.ndarray, np.ndarray, np.ndarray
        The left singular vectors (M x p), the singular values in descending order (p,) and the right singular
        vectors (N x p).
    """
    min_dim = min(X.shape)
    if solver == "auto":
        solver = "arpack" if (min_dim > DENSE_LIMIT and p < min_dim // 2) else "dense"
    if solver == "arpack" and p >= min_dim:
        logger.debug(f"ARPACK requires p < min(M, N), using the dense solver for p={p}.")
        solver = "dense"

    if solver == "arpack":
        v0 = np.ones(min_dim) / np.sqrt(min_dim)
        U, s, Vt = svds(X, k=p, v0=v0, solver="arpack")
        order = np.argsort(s)[::-1]
        U = U[:, order]
        s = s[order]
        V = Vt[order].T
    elif solver == "dense":
        U, s, Vt = linalg.svd(X, full_matrices=False, lapack_driver="gesdd")
        U = U[:, :p]
        s = s[:p]
        V = Vt[:p].T
    else:
        raise ValueError(f"Unknown SVD solver: {solver}. Options are 'auto', 'dense' and 'arpack'.")
    U, V = svd_flip(U, V)
    return U, s, V
