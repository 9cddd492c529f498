from mlpca.model.projection import MLProjection
from mlpca.model.svd import truncated_svd
from mlpca.metrics import EPSILON, weighted_norm
from mlpca.errors import (InvalidRankError, DimensionMismatchError, NonPositiveStdDevError, ZeroStdDevError,
                          InvalidDataError, MaxIterationsExceededError)
from mlpca.utils import np_encoder
from tqdm import tqdm
from datetime import datetime
from pathlib import Path
import numpy as np
import logging
import pickle
import json
import os

logging.basicConfig(format='%(asctime)s - %(message)s', datefmt='%d-%b-%y %H:%M:%S', level=logging.INFO)
logger = logging.getLogger(__name__)

CONV_LIMIT = 1e-10
MAX_ITER = 20000
VAR_MULT = 1000


class MLPCAResult:
    """
    The output of a completed MLPCA run, the SVD of the maximum likelihood estimate of the data.

    The U, S and V matrices are analogs to the truncated SVD solution, but represent the MLPCA subspace. Solutions
    for different ranks are not necessarily nested and the components do not necessarily account for decreasing
    amounts of variance, MLPCA is a subspace modeling technique and not a variance modeling technique.

    Parameters
    ----------
    U : np.ndarray
        Orthonormal left basis of shape (M, p).
    S : np.ndarray
        Diagonal matrix of singular values of shape (p, p), in descending order.
    V : np.ndarray
        Orthonormal right basis of shape (N, p).
    Ssq : float
        The sum of squares of the weighted residuals.
    ErrFlag : int
        The convergence condition, 0 indicates normal termination.
    iterations : int
        The number of ALS iterations run.
    ssq_list : list
        The objective function value at each iteration.
    """
    _keys = ("U", "S", "V", "Ssq", "ErrFlag")

    def __init__(self, U, S, V, Ssq, ErrFlag: int = 0, iterations: int = None, ssq_list: list = None):
        self.U = U
        self.S = S
        self.V = V
        self.Ssq = Ssq
        self.ErrFlag = ErrFlag
        self.iterations = iterations
        self.ssq_list = ssq_list if ssq_list is not None else []

    def __getitem__(self, key):
        if key not in self._keys:
            raise KeyError(key)
        return getattr(self, key)

    def keys(self):
        return list(self._keys)

    def reconstruct(self):
        """
        The rank p estimate of the measurement matrix, U S V^{T}.
        """
        return np.matmul(np.matmul(self.U, self.S), self.V.T)

    def __repr__(self):
        return (f"MLPCAResult(rank={self.S.shape[0]}, U={self.U.shape}, V={self.V.shape}, Ssq={self.Ssq:.6g}, "
                f"ErrFlag={self.ErrFlag}, iterations={self.iterations})")


class MLPCA:
    """
    Maximum likelihood principal component analysis for mode C error conditions, independent errors with a general
    heteroscedastic structure, fitted with an alternating least squares (ALS) algorithm.

    The MLPCA class holds the data, error variances and configuration of a single model and contains the logic for
    every step of the MLPCA workflow:

    1) Validation of the rank and of the data and standard deviation matrices, performed on construction, before any
    numeric work.

    2) Conversion of the standard deviations to variances, where missing values are given a variance of var_mult times
    the largest observed variance so that they carry almost no weight.

    3) Initialization of the subspace from the unweighted truncated SVD of the data.

    4) The ALS iterations, alternating between the row and column space of the problem by transposing the data and
    variances after every maximum likelihood projection, until the relative change of the objective function falls
    below the convergence limit.

    Details are described in Wentzell, P. D. 'Other topics in soft-modeling: maximum likelihood-based soft-modeling
    methods' (2009): 507-558.

    Parameters
    ----------
    X : np.ndarray
        The measurement matrix of shape M x N. Missing measurements are NaN.
    Xsd : np.ndarray
        The measurement error standard deviations, of shape M x N. Missing values are NaN, zero is not a valid value.
    p : int
        The rank of the model subspace, 1 <= p <= min(M, N).
    var_mult : float
        The multiplier of the maximum observed variance given to missing values. Default: 1000
    optimized : bool
        Use the vectorized maximum likelihood projection, otherwise the column-by-column python loop. Default: True
    svd_solver : str
        The truncated SVD solver, 'auto', 'dense' or 'arpack'. Default: 'auto'
    verbose : bool
        Allows for increased verbosity of the initialization and model training steps.
    """

    def __init__(self,
                 X: np.ndarray,
                 Xsd: np.ndarray,
                 p: int,
                 var_mult: float = VAR_MULT,
                 optimized: bool = True,
                 svd_solver: str = "auto",
                 verbose: bool = False
                 ):
        """
        Constructor method.
        """
        self.p = p
        self.var_mult = float(var_mult)
        self.optimized = optimized
        self.svd_solver = svd_solver
        self.verbose = verbose

        self.X = np.array(X, dtype=np.float64)
        self.Xsd = np.array(Xsd, dtype=np.float64)

        self.__validate()
        self.p = int(p)
        self.m, self.n = self.X.shape

        self.VarX, self.missing = self.__preprocess()
        self.X[np.isnan(self.X)] = 0.0

        self.U = None
        self.S = None
        self.V = None
        self.MLX = None
        self.Ssq = None
        self.ErrFlag = -1
        self.result = None

        self.converged = False
        self.iterations = 0
        self.ssq_list = []
        self.__initialized = False

        self.metadata = {
            "creation_date": datetime.now().strftime("%m/%d/%Y, %H:%M:%S %Z"),
            "samples": int(self.m),
            "features": int(self.n),
            "rank": self.p,
            "missing": int(np.sum(self.missing)),
            "var_mult": self.var_mult,
            "optimized": bool(self.optimized)
        }
        self.update_step = MLProjection.update_batched if self.optimized else MLProjection.update

    def __validate(self):
        """
        Validates the rank, the data and the standard deviation matrices.

        Validation Criteria:
        X - Must be a 2-D numeric array, missing values are NaN, no infinite values.
        Xsd - Must have the same shape as X, containing positive finite values or NaN for missing values, no zeros.
        p - Must be an integer, 1 <= p <= min(M, N).
        """
        if self.X.ndim != 2:
            logger.error(f"Input dataset X must be a 2-D matrix. Current dimensions: {self.X.shape}")
            raise DimensionMismatchError(f"Input dataset X must be a 2-D matrix. Current dimensions: {self.X.shape}")
        m, n = self.X.shape
        if isinstance(self.p, bool) or not float(self.p).is_integer() or not (1 <= int(self.p) <= min(m, n)):
            logger.error(f"Invalid rank for MLPCA decomposition, p must be in [1, {min(m, n)}]. Current p: {self.p}")
            raise InvalidRankError(f"Invalid rank for MLPCA decomposition, p must be in [1, {min(m, n)}]. "
                                   f"Current p: {self.p}")
        if self.X.shape != self.Xsd.shape:
            logger.error(f"The data and standard deviation matrices must have the same dimensions. "
                         f"Current X: {self.X.shape}, Xsd: {self.Xsd.shape}.")
            raise DimensionMismatchError(f"Dimensions of data and standard deviations do not match. "
                                         f"Current X: {self.X.shape}, Xsd: {self.Xsd.shape}.")
        observed = ~np.isnan(self.Xsd)
        if np.any(self.Xsd[observed] == 0.0):
            logger.error("Standard deviation matrix Xsd contains zero values.")
            raise ZeroStdDevError("Zero value(s) for standard deviations")
        if np.any(self.Xsd[observed] < 0.0) or np.any(np.isinf(self.Xsd)):
            logger.error("Standard deviation matrix Xsd contains negative or infinite values.")
            raise NonPositiveStdDevError("Standard deviations must be positive and finite")
        if np.any(np.isinf(self.X)):
            logger.error("Input dataset X contains infinite values.")
            raise InvalidDataError("Input dataset X contains infinite values")
        if not np.any(observed & ~np.isnan(self.X)):
            logger.error("No observed values, every entry of X or Xsd is missing.")
            raise InvalidDataError("No observed values, every entry of X or Xsd is missing")

    def __preprocess(self):
        """
        Convert the standard deviations to variances, replacing missing values with a large variance.

        Returns
        -------
        np.ndarray, np.ndarray
            The variance matrix and the boolean mask of the missing values.
        """
        var_x = np.square(self.Xsd)
        missing = np.isnan(var_x) | np.isnan(self.X)
        var_max = np.max(var_x[~missing])
        var_x[missing] = var_max * self.var_mult
        if np.any(missing):
            logger.debug(f"{int(np.sum(missing))} missing values given variance {var_max * self.var_mult}")
        return var_x, missing

    def initialize(self):
        """
        Initialize the subspace estimate with the truncated SVD of the data, assuming homoscedastic errors.
        """
        self.U, s, self.V = truncated_svd(self.X, self.p, solver=self.svd_solver)
        self.S = np.diag(s)
        self.__initialized = True
        if self.verbose:
            logger.debug("Completed initializing the subspace from the unweighted SVD.")

    def summary(self):
        """
        Provides a summary of the model configuration and results if completed.
        """
        logger.info("------------\t\tModel Details\t\t-----------")
        logger.info(f"\tRank: {self.p}\t\t\t\tMissing Values: {self.metadata['missing']}")
        logger.info(f"\tNumber of Features: {self.n}\t\tNumber of Samples: {self.m}")
        if self.result is not None:
            logger.info("---------------\t\tModel Results\t\t--------------")
            logger.info(f"\tSsq: {round(self.Ssq, 4)}\t\t\tErrFlag: {self.ErrFlag}")
            logger.info(f"\tConverged: {self.converged}\t\t\t\tIterations: {self.iterations}")
        logger.info("------------------------------------------------------")

    def train(self,
              max_iter: int = MAX_ITER,
              conv_limit: float = CONV_LIMIT,
              ):
        """
        Train the MLPCA model by alternating least squares until convergence.

        Each iteration computes the maximum likelihood projection of every column of the data onto the current
        subspace, evaluates the objective function, and then flips the problem: the SVD of the maximum likelihood
        estimate provides the next subspace, and the data and variances are transposed so the same column projection
        fits the other dimension on the next iteration. Convergence is only checked on odd iterations, comparing the
        objective function across a full row and column round trip.

        Parameters
        ----------
        max_iter : int
           The maximum number of iterations. Default: 20000
        conv_limit : float
           The relative change in the objective function where the model is considered converged. Default: 1e-10

        Returns
        -------
        MLPCAResult
           The SVD of the final maximum likelihood estimate, the weighted residual sum of squares and ErrFlag = 0.

        Raises
        ------
        MaxIterationsExceededError
           The iterations exceeded max_iter without meeting the convergence limit. No result is produced.
        """
        if not self.__initialized:
            self.initialize()

        X = self.X
        VarX = self.VarX
        U = self.U
        # A perfect fit leaves a zero objective, where the relative change is undefined.
        s_floor = EPSILON * weighted_norm(X, VarX)

        count = 0
        s_old = 0.0
        err_flag = -1
        ssq_list = []
        MLX = None
        s_obj = None

        p_bar = tqdm(total=max_iter, desc=f"Rank: {self.p}, Ssq: NA, dSsq: NA", position=0, leave=True,
                     disable=not self.verbose)
        while err_flag < 0:
            count += 1
            MLX, s_obj = self.update_step(X=X, VarX=VarX, U=U)
            ssq_list.append(s_obj)

            if count % 2 == 1:
                conv_calc = abs(s_old - s_obj) / s_obj if s_obj > s_floor else 0.0
                if conv_calc < conv_limit:
                    err_flag = 0
                p_bar.set_description(f"Rank: {self.p}, Ssq: {s_obj:.4f}, dSsq: {conv_calc:.4e}")
                if count > max_iter:
                    p_bar.close()
                    self.ssq_list = ssq_list
                    self.iterations = count
                    logger.error(f"Maximum iterations exceeded. Iterations: {count}, max_iter: {max_iter}")
                    raise MaxIterationsExceededError(f"Maximum iterations exceeded. Iterations: {count}, "
                                                     f"max_iter: {max_iter}", iterations=count)

            if err_flag < 0:
                s_old = s_obj
                _, _, V = truncated_svd(MLX, self.p, solver=self.svd_solver)
                X = X.T
                VarX = VarX.T
                U = V
            p_bar.update(1)
        p_bar.close()

        U, s, V = truncated_svd(MLX, self.p, solver=self.svd_solver)
        self.U = U
        self.S = np.diag(s)
        self.V = V
        self.MLX = MLX
        self.Ssq = s_obj
        self.ErrFlag = err_flag
        self.converged = True
        self.iterations = count
        self.ssq_list = ssq_list
        self.result = MLPCAResult(U=self.U, S=self.S, V=self.V, Ssq=self.Ssq, ErrFlag=self.ErrFlag,
                                  iterations=count, ssq_list=ssq_list)

        self.metadata["completion_date"] = datetime.now().strftime("%m/%d/%Y, %H:%M:%S %Z")
        self.metadata["max_iterations"] = int(max_iter)
        self.metadata["conv_limit"] = float(conv_limit)
        self.metadata["iterations"] = int(count)
        self.metadata["Ssq"] = float(s_obj)
        if self.verbose:
            logger.info(f"MLPCA rank {self.p} converged in {count} iterations, Ssq: {s_obj:.4f}")
        return self.result

    def save(self,
             model_name: str,
             output_directory: str,
             pickle_model: bool = False,
             header: list = None):
        """
        Save the MLPCA model to file.

        Two options are provided for saving the output of MLPCA to file, 1) saving the model to separate files (csv and
        json) and 2) saving the model to a binary pickle object. The files are written to the provided output_directory
        path, if it exists, using the model_name for the file names.

        Parameters
        ----------
        model_name : str
           The name for the model save files.
        output_directory : str
           The path to save the files to, path must exist.
        pickle_model : bool
           Saving the model to a pickle file, default = False.
        header : list
           A list of headers, feature names, to add to the top of the csv files. Default: None

        Returns
        -------
        str
           The path to the output directory, if pickle=False or the path to the pickle file. If save fails returns None

        """
        component_header = ",".join([f"Component {i + 1}" for i in range(self.p)])
        header = ",".join(header) if header is not None else ""
        output_directory = Path(output_directory)
        if not output_directory.is_absolute():
            logger.error("Provided output directory is not an absolute path. Must provide an absolute path.")
            return None
        if os.path.exists(output_directory):
            if pickle_model:
                file_path = os.path.join(output_directory, f"{model_name}.pkl")
                with open(file_path, "wb") as save_file:
                    pickle.dump(self, save_file)
                    logger.info(f"MLPCA model saved to pickle file: {file_path}")
            else:
                if self.result is None:
                    logger.error("MLPCA model has not been trained, no results to save.")
                    return None
                file_path = output_directory
                meta_file = os.path.join(output_directory, f"{model_name}-metadata.json")
                with open(meta_file, "w") as mfile:
                    json.dump(self.metadata, mfile, default=np_encoder)
                    logger.info(f"MLPCA model metadata saved to file: {meta_file}")
                outputs = (
                    ("U", "Left Basis (U) Matrix", self.U, component_header),
                    ("S", "Singular Value (S) Matrix", self.S, component_header),
                    ("V", "Right Basis (V) Matrix", self.V, component_header),
                    ("estimate", "Estimated Data (USV'=X') Matrix", self.MLX, header),
                    ("residuals", "Residual Matrix (X-X')", self.X - self.MLX, header),
                )
                for suffix, title, matrix, i_header in outputs:
                    o_file = os.path.join(output_directory, f"{model_name}-{suffix}.csv")
                    with open(o_file, "w") as ofile:
                        comment = f"{title}\nMetadata File: {meta_file}\n\n"
                        np.savetxt(ofile, matrix, delimiter=',', header=i_header, comments=comment)
                    logger.info(f"MLPCA model {suffix} saved to file: {o_file}")
            return file_path
        else:
            logger.error(f"Output directory does not exist. Specified directory: {output_directory}")
            return None

    @staticmethod
    def load(file_path: str):
        """
        Load a previously saved MLPCA pickle file.

        Parameters
        ----------
        file_path : str
           File path to a previously saved MLPCA pickle file

        Returns
        -------
        MLPCA
           On successful load, will return a previously saved MLPCA object. Will return None on load fail.
        """
        file_path = Path(file_path)
        if not file_path.is_absolute():
            logger.error("Provided path is not an absolute path. Must provide an absolute path.")
            return None
        if os.path.exists(file_path):
            try:
                with open(file_path, "rb") as pfile:
                    model = pickle.load(pfile)
                    return model
            except pickle.PickleError as p_error:
                logger.error(f"Failed to load MLPCA pickle file {file_path}. \nError: {p_error}")
                return None
        else:
            logger.error(f"MLPCA load file failed, specified pickle file does not exist. File Path: {file_path}")
            return None


def mlpca_c(X: np.ndarray, Xsd: np.ndarray, p: int, max_iter: int = MAX_ITER):
    """
    Maximum likelihood principal component analysis for mode C error conditions (independent errors, general
    heteroscedastic case).

    Parameters
    ----------
    X : np.ndarray
        M x N matrix of measurements.
    Xsd : np.ndarray
        M x N matrix of measurement error standard deviations, NaN for missing values.
    p : int
        Rank of the model's subspace, p must be at most the minimum of M and N.
    max_iter : int
        Maximum number of iterations. Default: 20000

    Returns
    -------
    MLPCAResult
        U, S and V from the SVD of the estimated subspace, Ssq the sum of squares of weighted residuals and ErrFlag,
        0 indicating normal termination.
    """
    model = MLPCA(X=X, Xsd=Xsd, p=p)
    return model.train(max_iter=max_iter)
