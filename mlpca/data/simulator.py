import logging
import os
import pickle
from pathlib import Path
import numpy as np
import pandas as pd
from mlpca.model.mlpca import MLPCA, MLPCAResult
from mlpca.model.svd import truncated_svd
from mlpca.metrics import weighted_ssq, subspace_angles, reconstruct

logger = logging.getLogger(__name__)


class Simulator:
    """
    The MLPCA Simulator generates synthetic datasets with a known low-rank structure and known, independent,
    heteroscedastic measurement errors. These synthetic datasets can be passed to MLPCA or BatchMLPCA instances and the
    results evaluated against the known clean matrix with the compare function.

    The clean matrix C is the product of a (samples_n, rank) score matrix and a (rank, features_n) loading matrix,
    both sampled from a standard normal distribution and scaled by signal_scale.
    The standard deviation of every entry is sampled from a uniform distribution [sd_min, sd_max).
    The synthetic dataset is C + noise, where each noise value is sampled from a normal distribution with mean 0 and
    the standard deviation of that entry.
    Missing values are added at random, for the decimal percentage missing_p of entries, by removing the standard
    deviation of the entry (NaN). The measured value is kept.

    Parameters
    ----------
    seed : int
        The seed for the random number generator.
    rank : int
        The rank of the clean synthetic matrix.
    features_n : int
        The number of synthetic features (columns) in the dataset.
    samples_n : int
        The number of synthetic samples (rows) in the dataset.
    signal_scale : float
        The scale of the clean matrix factors.
    sd_min : float
        The minimum value of the per-entry error standard deviations.
    sd_max : float
        The maximum value of the per-entry error standard deviations.
    missing_p : float
        The decimal percentage of entries with a missing standard deviation.
    verbose: bool
        Turn on verbosity for added logging.
    """
    def __init__(self,
                 seed: int,
                 rank: int,
                 features_n: int,
                 samples_n: int,
                 signal_scale: float = 10.0,
                 sd_min: float = 0.1,
                 sd_max: float = 1.0,
                 missing_p: float = 0.0,
                 verbose: bool = True,
                 ):
        self.seed = int(seed)
        self.rng = np.random.default_rng(self.seed)
        self.verbose = verbose if isinstance(verbose, bool) else str(verbose).lower() == "true"
        self.rank = int(rank)
        self.features_n = int(features_n)
        self.samples_n = int(samples_n)
        self.syn_columns = [f"Feature {i}" for i in range(1, self.features_n + 1)]
        self.syn_index = [f"Sample {i}" for i in range(1, self.samples_n + 1)]

        self.signal_scale = float(signal_scale)
        self.sd_min = float(sd_min)
        self.sd_max = float(sd_max)
        if self.sd_min > self.sd_max:
            self.sd_min, self.sd_max = self.sd_max, self.sd_min
        self.missing_p = float(missing_p)

        self.syn_clean = None
        self.syn_data = None
        self.syn_sd = None
        self.syn_data_df = None
        self.syn_sd_df = None
        self.syn_clean_df = None
        self.comparison = None

        self.generate_clean()

    def generate_clean(self, clean: np.ndarray = None):
        """
        Generate the clean low-rank matrix. Run on Simulator initialization, a custom clean matrix can be used in
        place of the random matrix by passing it in, it must have shape (samples_n, features_n).

        Parameters
        ----------
        clean : np.ndarray
            A custom clean matrix to be used in place of the random synthetic matrix.
        """
        if clean is not None:
            if clean.shape != (self.samples_n, self.features_n):
                logger.error(f"Custom clean matrix must have shape ({self.samples_n}, {self.features_n}). "
                             f"Current shape: {clean.shape}")
                return
            self.syn_clean = np.array(clean, dtype=np.float64)
            self.rank = int(np.linalg.matrix_rank(self.syn_clean))
        else:
            scores = self.rng.standard_normal(size=(self.samples_n, self.rank))
            loadings = self.rng.standard_normal(size=(self.rank, self.features_n))
            self.syn_clean = self.signal_scale * np.matmul(scores, loadings)
        self.syn_data = None
        if self.verbose:
            logger.info(f"Synthetic clean matrix of rank {self.rank} generated")

    def _generate_data(self):
        """
        Generate the noisy synthetic dataset and the standard deviations from the clean matrix.
        """
        syn_sd = self.rng.uniform(low=self.sd_min, high=self.sd_max, size=self.syn_clean.shape)
        noise = self.rng.normal(loc=0.0, scale=syn_sd)
        self.syn_data = self.syn_clean + noise
        if self.missing_p > 0.0:
            missing_mask = self.rng.uniform(size=syn_sd.shape) < self.missing_p
            syn_sd[missing_mask] = np.nan
        self.syn_sd = syn_sd
        if self.verbose:
            logger.info("Synthetic data and standard deviations generated")

    def _generate_dfs(self):
        """
        Create data, standard deviation and clean dataframes with column labels and index.
        """
        self.syn_data_df = pd.DataFrame(self.syn_data, columns=self.syn_columns, index=self.syn_index)
        self.syn_data_df.index.name = "Sample"
        self.syn_sd_df = pd.DataFrame(self.syn_sd, columns=self.syn_columns, index=self.syn_index)
        self.syn_sd_df.index.name = "Sample"
        self.syn_clean_df = pd.DataFrame(self.syn_clean, columns=self.syn_columns, index=self.syn_index)
        self.syn_clean_df.index.name = "Sample"

    def get_data(self):
        """
        Get the synthetic data and standard deviation dataframes to use with the DataHandler. The noise is sampled on
        the first call, later calls return the same dataset.

        Returns
        -------
            pd.DataFrame, pd.DataFrame
        """
        if self.syn_data is None:
            self._generate_data()
            self._generate_dfs()
        return self.syn_data_df, self.syn_sd_df

    def compare(self, model):
        """
        Compare a fitted MLPCA model to the clean matrix, and to the unweighted truncated SVD of the same noisy data.

        The comparison uses the weighted residual sum of squares to the clean matrix, weighted by the inverse of the
        true error variances, and the largest principal angle between the model subspaces and the clean subspaces.

        Parameters
        ----------
        model : MLPCA | MLPCAResult
            A trained MLPCA model, or the result of one, fitted to the simulator data.

        Returns
        -------
        dict
            The comparison metrics, also stored in simulator.comparison.
        """
        result = model.result if isinstance(model, MLPCA) else model
        if not isinstance(result, MLPCAResult):
            logger.error("Simulator comparison requires a trained MLPCA model.")
            return None
        if self.syn_data is None:
            self.get_data()
        p = result.S.shape[0]
        variance = np.square(self.syn_sd)
        observed = ~np.isnan(variance)

        mlpca_estimate = result.reconstruct()
        U, s, V = truncated_svd(self.syn_data, p)
        svd_estimate = reconstruct(U, np.diag(s), V)

        clean_U, _, clean_V = truncated_svd(self.syn_clean, self.rank)
        self.comparison = {
            "rank": p,
            "mlpca_wssq": weighted_ssq(self.syn_clean[observed], mlpca_estimate[observed], variance[observed]),
            "svd_wssq": weighted_ssq(self.syn_clean[observed], svd_estimate[observed], variance[observed]),
            "mlpca_row_angle": float(np.max(subspace_angles(result.U, clean_U))),
            "svd_row_angle": float(np.max(subspace_angles(U, clean_U))),
            "mlpca_column_angle": float(np.max(subspace_angles(result.V, clean_V))),
            "svd_column_angle": float(np.max(subspace_angles(V, clean_V))),
        }
        if self.verbose:
            logger.info(f"Weighted residual to clean data - MLPCA: {self.comparison['mlpca_wssq']:.4f}, "
                        f"SVD: {self.comparison['svd_wssq']:.4f}")
        return self.comparison

    def save(self, sim_name: str = "synthetic", output_directory: str = "."):
        """
        Save the generated synthetic data, standard deviation and clean datasets, and the simulator instance binary.

        Parameters
        ----------
        sim_name : str
            The name for the data and standard deviation dataset files.
        output_directory : str
            The path to the directory where the files will be saved.

        Returns
        -------
        bool
            True if save is successful, otherwise False.
        """
        output_directory = Path(output_directory)
        if not output_directory.is_absolute():
            logger.error("Provided output directory is not an absolute path. Must provide an absolute path.")
            return False
        if os.path.exists(output_directory):
            if self.syn_data is None:
                self.get_data()
            file_path = os.path.join(output_directory, "mlpca_simulator.pkl")
            with open(file_path, "wb") as save_file:
                pickle.dump(self, save_file)
                logger.info(f"MLPCA Simulator instance saved to pickle file: {file_path}")

            data_file_path = os.path.join(output_directory, f"{sim_name}_data.csv")
            self.syn_data_df.to_csv(data_file_path)
            logger.info(f"MLPCA synthetic data saved to file: {data_file_path}")

            sd_file_path = os.path.join(output_directory, f"{sim_name}_sd.csv")
            self.syn_sd_df.to_csv(sd_file_path)
            logger.info(f"MLPCA synthetic standard deviations saved to file: {sd_file_path}")

            clean_file_path = os.path.join(output_directory, f"{sim_name}_clean.csv")
            self.syn_clean_df.to_csv(clean_file_path)
            logger.info(f"MLPCA synthetic clean data saved to file: {clean_file_path}")
            return True
        logger.error(f"Output directory does not exist. Specified directory: {output_directory}")
        return False

    @staticmethod
    def load(file_path: str):
        """
        Load a previously saved MLPCA Simulator pickle file.

        Parameters
        ----------
        file_path : str
           File path to a previously saved MLPCA Simulator pickle file

        Returns
        -------
        Simulator
           On successful load, will return a previously saved Simulator object. Will return None on load fail.
        """
        file_path = Path(file_path)
        if not file_path.is_absolute():
            logger.error("Provided path is not an absolute path. Must provide an absolute path.")
            return None
        if os.path.exists(file_path):
            try:
                with open(file_path, "rb") as pfile:
                    sim = pickle.load(pfile)
                    return sim
            except pickle.PickleError as p_error:
                logger.error(f"Failed to load Simulator pickle file {file_path}. \nError: {p_error}")
                return None
        else:
            logger.error(f"Simulator load file failed, specified pickle file does not exist. File Path: {file_path}")
            return None
