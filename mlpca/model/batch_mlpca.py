import datetime
import os
import logging
import time
import pickle
import numpy as np
from pathlib import Path
import multiprocessing as mp
from logging.handlers import QueueHandler, QueueListener
from mlpca.model.mlpca import MLPCA, MAX_ITER, CONV_LIMIT, VAR_MULT
from mlpca.errors import MLPCAError
from mlpca.utils import memory_estimate

logging.basicConfig(format='%(asctime)s - %(message)s', datefmt='%d-%b-%y %H:%M:%S', level=logging.INFO)
logger = logging.getLogger(__name__)


class BatchMLPCA:
    """
    The batch MLPCA class fits one independent MLPCA model for each rank in a list of ranks, using the same data,
    standard deviations and run configuration.

    MLPCA solutions for different ranks are not nested, the rank 1 subspace is not necessarily contained in the rank 2
    subspace, so each rank is a complete model run starting from its own unweighted SVD. The batch does not select a
    rank, it collects the fitted models and their weighted residual sum of squares for comparison.

    Parameters
    ----------
    X : np.ndarray
        The measurement matrix containing M samples (rows) by N features (columns).
    Xsd : np.ndarray
        The measurement error standard deviations of X, of shape M x N.
    ranks : list
        The ranks to fit, each must be in [1, min(M, N)].
    max_iter : int
       The maximum number of ALS iterations of each model. Default: 20000
    conv_limit : float
       The relative change in the objective function where a model is considered converged. Default: 1e-10
    var_mult : float
        The multiplier of the maximum observed variance given to missing values. Default: 1000
    optimized : bool
        Use the vectorized maximum likelihood projection. Default: True
    parallel : bool
        Run the individual models in parallel processes. Default = True.
    cores : int
        The number of cores to use for parallel processing. Default is 75% of the cores that fit in memory.
    verbose : bool
        Allows for increased verbosity of the model training steps.
    """
    def __init__(self,
                 X: np.ndarray,
                 Xsd: np.ndarray,
                 ranks: list,
                 max_iter: int = MAX_ITER,
                 conv_limit: float = CONV_LIMIT,
                 var_mult: float = VAR_MULT,
                 optimized: bool = True,
                 parallel: bool = True,
                 cores: int = None,
                 verbose: bool = True
                 ):
        """
        Constructor method.
        """
        self.X = X
        self.Xsd = Xsd
        self.ranks = [int(p) for p in ranks]

        self.max_iter = int(max_iter)
        self.conv_limit = float(conv_limit)
        self.var_mult = float(var_mult)
        self.optimized = optimized if isinstance(optimized, bool) else str(optimized).lower() == "true"

        system_options = memory_estimate(self.X.shape[1], self.X.shape[0], max(self.ranks), cores=cores)
        cores = -1 if cores is None else int(cores)

        self.runtime = None
        self.parallel = parallel if isinstance(parallel, bool) else str(parallel).lower() == "true"
        self.cores = cores if cores > 0 else max(int(system_options["max_cores"] * 0.75), 1)
        self.verbose = verbose if isinstance(verbose, bool) else str(verbose).lower() == "true"
        self.results = []
        self.errors = {}

        if self.verbose:
            self.details()
            logger.info(f"Estimated memory available: {np.round(system_options['available_memory_bytes'], 4)} Gb")
            logger.info(f"Estimated memory per model: {system_options['estimate']}")
            logger.info(f"Using {self.cores} cores for parallel processing.")
            logger.info("-------------------------------------------------")

    def details(self):
        logger.info(f"Batch MLPCA Instance Configuration")
        logger.info("-------------------------------------------------")
        logger.info(f"Ranks: {self.ranks}, Samples: {self.X.shape[0]}, Features: {self.X.shape[1]}")
        logger.info(f"Max Iterations: {self.max_iter}, Convergence Limit: {self.conv_limit}")
        logger.info(f"Parallel: {self.parallel}, Verbose: {self.verbose}")
        if len(self.results) > 0:
            logger.info("---------------------------- Batch Results ----------------------------")
            for p, result in zip(self.ranks, self.results):
                if result is None:
                    logger.info(f"Rank: {p}, Failed: {self.errors.get(p)}")
                    continue
                logger.info(f"Rank: {p}, Ssq: {result.Ssq:.4f}, Ssq/N: {float(result.Ssq / self.X.size):.4f}, "
                            f"Iterations: {result.iterations}/{self.max_iter}")

    def train(self):
        """
        Execute the training sequence for the batch of MLPCA models.

        A rank that fails, because its parameters are invalid or the ALS iterations exceed max_iter, has no model in
        the results, None is stored in its place and the error message is kept in the errors dictionary.

        Returns
        -------
        bool
            True if every rank produced a model, otherwise False.
        """
        t0 = time.time()
        self.errors = {}
        task_parameters = [
            (self.X, self.Xsd, p, self.max_iter, self.conv_limit, self.var_mult, self.optimized)
            for p in self.ranks
        ]
        if self.parallel:
            with mp.Manager() as manager:
                log_queue = manager.Queue()
                listener = logging_listener(log_queue)
                try:
                    logger.info(f"Running batch MLPCA models in parallel using {self.cores} cores.")
                    with mp.Pool(processes=self.cores) as pool:
                        results = pool.starmap(_train_task, [(*t, log_queue) for t in task_parameters])
                finally:
                    listener.stop()
        else:
            logger.info("Running models sequentially.")
            results = []
            for t in task_parameters:
                t3 = time.time()
                results.append(_train_task(*t))
                t_delta = datetime.timedelta(seconds=time.time() - t3)
                logger.info(f"Rank {t[2]} training completed in {t_delta}.")

        self.results = []
        for p, model, error in results:
            if error is not None:
                self.errors[p] = error
            self.results.append(model)

        self.runtime = round(time.time() - t0, 2)
        logger.info(f"Batch training completed in {self.runtime} seconds.")
        if self.verbose:
            self.details()
        return len(self.errors) == 0

    def get_model(self, p: int):
        """
        The fitted model for rank p, None if the rank failed or was not part of the batch.
        """
        if p not in self.ranks or len(self.results) == 0:
            return None
        return self.results[self.ranks.index(p)]

    def ssq(self):
        """
        The weighted residual sum of squares of each rank, NaN for failed ranks.
        """
        return {p: (model.Ssq if model is not None else np.nan) for p, model in zip(self.ranks, self.results)}

    def save(self, batch_name: str,
             output_directory: str,
             pickle_model: bool = False,
             pickle_batch: bool = True,
             header: list = None):
        """
        Save the collection of MLPCA models. They can be saved as individual files (csv and json files),
        as individual pickle models (each MLPCA model), or as a single pickle of the batch object.

        Parameters
        ----------
        batch_name : str
            The name to use for the batch save files.
        output_directory :
            The output directory to save the batch files to.
        pickle_model : bool
            Pickle the individual models, creating a separate pickle file for each rank. Default = False.
        pickle_batch : bool
            Pickle the batch object, which will contain all the MLPCA objects. Default = True.
        header : list
           A list of headers, feature names, to add to the top of the csv files. Default: None

        Returns
        -------
        str
           The path to the output directory, if pickle=False or the path to the pickle file. If save fails returns None

        """
        output_directory = Path(output_directory)
        if not output_directory.is_absolute():
            logger.error("Provided output directory is not an absolute path. Must provide an absolute path.")
            return None
        if os.path.exists(output_directory):
            if pickle_batch:
                file_path = os.path.join(output_directory, f"{batch_name}.pkl")
                with open(file_path, "wb") as save_file:
                    pickle.dump(self, save_file)
                    logger.info(f"Batch MLPCA models saved to pickle file: {file_path}")
            else:
                file_path = output_directory
                for p, model in zip(self.ranks, self.results):
                    if model is not None:
                        model.save(model_name=f"{batch_name}-rank-{p}", output_directory=output_directory,
                                   pickle_model=pickle_model, header=header)
            logger.info(f"All batch MLPCA models saved. Name: {batch_name}, Directory: {output_directory}")
            return file_path
        else:
            logger.error(f"Output directory does not exist. Specified directory: {output_directory}")
            return None

    @staticmethod
    def load(file_path: str):
        """
        Load a previously saved Batch MLPCA pickle file.

        Parameters
        ----------
        file_path : str
           File path to a previously saved Batch MLPCA pickle file

        Returns
        -------
        BatchMLPCA
           On successful load, will return a previously saved BatchMLPCA object. Will return None on load fail.
        """
        file_path = Path(file_path)
        if not file_path.is_absolute():
            logger.error("Provided path is not an absolute path. Must provide an absolute path.")
            return None
        if os.path.exists(file_path):
            try:
                with open(file_path, "rb") as pfile:
                    batch = pickle.load(pfile)
                    return batch
            except pickle.PickleError as p_error:
                logger.error(f"Failed to load BatchMLPCA pickle file {file_path}. \nError: {p_error}")
                return None
        else:
            logger.error(f"BatchMLPCA load file failed, specified pickle file does not exist. File Path: {file_path}")
            return None


def _train_task(X, Xsd, p, max_iter, conv_limit, var_mult, optimized, log_queue=None):
    if log_queue is not None:
        configure_logging(log_queue)
    task_logger = logging.getLogger(__name__)
    task_logger.info(f"Starting MLPCA model rank {p}")
    try:
        model = MLPCA(X=X, Xsd=Xsd, p=p, var_mult=var_mult, optimized=optimized)
        model.train(max_iter=max_iter, conv_limit=conv_limit)
    except MLPCAError as ex:
        task_logger.error(f"MLPCA model rank {p} failed. {ex.kind}: {ex}")
        return p, None, f"{ex.kind}: {ex}"
    return p, model, None


def configure_logging(log_queue):
    """
    Configures logging for a child process to send log messages to the log queue.

    Parameters
    ----------
    log_queue : multiprocessing.Queue
        The queue to send log messages to.
    """
    queue_handler = QueueHandler(log_queue)
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)
    root_logger.handlers = []
    root_logger.addHandler(queue_handler)


def logging_listener(log_queue):
    """
    Sets up a logging listener to handle log messages from a multiprocessing.Queue.

    Parameters
    ----------
    log_queue : multiprocessing.Queue
        The queue to receive log messages from child processes.

    Returns
    -------
    QueueListener
        The logging listener that listens for log messages.
    """
    handler = logging.StreamHandler()
    formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(message)s', datefmt='%d-%b-%y %H:%M:%S')
    handler.setFormatter(formatter)

    listener = QueueListener(log_queue, handler)
    listener.start()
    return listener
