import numpy as np
from numpy import linalg as npl


class MLProjection:

    @staticmethod
    def update(
            X: np.ndarray,
            VarX: np.ndarray,
            U: np.ndarray
    ):
        """
        Maximum likelihood projection of each column of X onto the column space of U.

        For column i the inverse error covariance matrix is Q = diag(1/VarX[:, i]) and the estimate is the weighted
        least-squares solution U(U^{T}QU)^{-1}U^{T}QX[:, i], described in 'Maximum likelihood principal component
        analysis' (https://doi.org/10.1002/(SICI)1099-128X(199707)11:4<339::AID-CEM476>3.0.CO;2-L). The columns are
        independent of each other, every column has its own weighting of the rows.

        Parameters
        ----------
        X : np.ndarray
           The measurement matrix in the current orientation.
        VarX : np.ndarray
           The error variances of X, same shape as X.
        U : np.ndarray
           The orthonormal basis of the current subspace estimate, shape (X.shape[0], p).

        Returns
        -------
        np.ndarray, float
           The maximum likelihood estimate MLX and the weighted sum of squared residuals.
        """
        MLX = np.zeros(shape=X.shape)
        s_obj = 0.0
        for i in range(X.shape[1]):
            Q = np.diagflat(1.0 / VarX[:, i])
            x_i = X[:, i]

            uq = np.matmul(U.T, Q)
            _f = np.matmul(uq, U)
            _b = np.matmul(uq, x_i)
            try:
                alpha = npl.solve(_f, _b)
            except npl.LinAlgError:
                alpha = np.matmul(npl.pinv(_f), _b)
            MLX[:, i] = np.matmul(U, alpha)

            dx = x_i - MLX[:, i]
            s_obj += float(np.matmul(np.matmul(dx.T, Q), dx))
        return MLX, s_obj

    @staticmethod
    def update_batched(
            X: np.ndarray,
            VarX: np.ndarray,
            U: np.ndarray
    ):
        """
        Vectorized version of MLProjection.update, all of the p x p normal equation systems are built and solved as
        a single stack. Produces the same estimate as the column loop.

        Parameters
        ----------
        X : np.ndarray
           The measurement matrix in the current orientation.
        VarX : np.ndarray
           The error variances of X, same shape as X.
        U : np.ndarray
           The orthonormal basis of the current subspace estimate, shape (X.shape[0], p).

        Returns
        -------
        np.ndarray, float
           The maximum likelihood estimate MLX and the weighted sum of squared residuals.
        """
        We = np.divide(1.0, VarX)
        # (n, p, p) stack of U^{T} Q_i U and (n, p) stack of U^{T} Q_i x_i
        _F = np.einsum("ri,rk,rl->ikl", We, U, U)
        _B = np.einsum("rk,ri->ik", U, np.multiply(We, X))
        try:
            alpha = npl.solve(_F, _B[..., np.newaxis])[..., 0]
        except npl.LinAlgError:
            alpha = np.matmul(npl.pinv(_F), _B[..., np.newaxis])[..., 0]
        MLX = np.matmul(U, alpha.T)
        s_obj = float(np.sum(np.multiply(We, np.square(X - MLX))))
        return MLX, s_obj
