import os
import logging
import copy
import pandas as pd
import numpy as np


logging.basicConfig(format='%(asctime)s - %(message)s', datefmt='%d-%b-%y %H:%M:%S', level=logging.INFO)
logger = logging.getLogger(__name__)


class DataHandler:
    """
    The class for cleaning and preparing input datasets for use in MLPCA.

    The DataHandler class is intended to provide a standardized way of preparing a measurement dataset and the
    matching dataset of measurement error standard deviations, from file or from dataframes, for MLPCA models.

    Input files can be .csv or tab separated text files, or Excel workbooks. Missing values in either dataset are
    kept as NaN, MLPCA gives those entries a very large variance instead of dropping them. Additional missing value
    markers, such as -999, can be provided and are converted to NaN.

    Parameters
    ----------
    input_path : str
        The file path to the input (measurement) dataset.
    sd_path : str
        The file path to the measurement error standard deviation dataset.
    index_col : str
        The name of the index column if it is not the first column in the dataset. Default = None, which will use
        the 1st column.
    drop_col : list
        A list of columns to drop from the dataset. Default = None.
    missing_values : list
        Values in either dataset which mark a missing entry. Default = None.
    load: bool
        Load the input and standard deviation data files, used internally for load_dataframe.
    """
    def __init__(self,
                 input_path: str,
                 sd_path: str,
                 index_col: str = None,
                 drop_col: list = None,
                 missing_values: list = None,
                 load: bool = True,
                 ):
        """
        Constructor method.
        """
        self.input_path = input_path
        self.sd_path = sd_path
        self.error = False
        self.error_list = []

        self.input_data = None
        self.sd_data = None

        self.metrics = None

        # Processed data that is passed to a model, dataframes are used for analysis
        self.input_data_df = None
        self.sd_data_df = None
        self.input_data_processed = None
        self.sd_data_processed = None

        self.index_col = index_col
        self.drop_col = drop_col
        self.missing_values = list(missing_values) if missing_values is not None else []

        self.features = None
        self.metadata = {}

        if load:
            self._check_paths()
            self._load_data()

    def get_data(self):
        """
        Get the processed input and standard deviation datasets ready for use in MLPCA.

        Returns
        -------
        np.ndarray, np.ndarray
            The processed input dataset and the processed standard deviation dataset as numpy arrays.
        """
        self._set_dataset()
        return self.input_data_processed, self.sd_data_processed

    def _check_paths(self):
        """
        Check all file paths to make sure they exist.
        """
        if not os.path.isabs(self.input_path):
            logger.warning(f"Input file path is not absolute: {self.input_path}")
        if not os.path.isabs(self.sd_path):
            logger.warning(f"Standard deviation file path is not absolute: {self.sd_path}")

        if not os.path.exists(self.input_path):
            self.error = True
            self.error_list.append(f"Input file not found at {self.input_path}")
        if not os.path.exists(self.sd_path):
            self.error = True
            self.error_list.append(f"Standard deviation file not found at {self.sd_path}")
        if self.error:
            logger.error("File Errors: " + ", ".join(self.error_list))
            raise FileNotFoundError(", ".join(self.error_list))
        else:
            logger.info("Input and standard deviation files configured successfully")

    def _set_dataset(self):
        """
        Sets the processed input and standard deviation datasets.
        """
        if self.drop_col is not None:
            _input_data = copy.copy(self.input_data.drop(labels=self.drop_col, axis=1))
            _sd_data = copy.copy(self.sd_data.drop(labels=self.drop_col, axis=1))
        else:
            _input_data = copy.copy(self.input_data)
            _sd_data = copy.copy(self.sd_data)

        self.features = list(_input_data.columns)

        # Ensure data and standard deviation values are numeric, anything else is missing
        for f in self.features:
            _input_data[f] = pd.to_numeric(_input_data[f], errors="coerce")
            _sd_data[f] = pd.to_numeric(_sd_data[f], errors="coerce")

        if len(self.missing_values) > 0:
            _input_data = _input_data.mask(_input_data.isin(self.missing_values))
            _sd_data = _sd_data.mask(_sd_data.isin(self.missing_values))

        self.input_data_df = _input_data
        self.sd_data_df = _sd_data

        self.input_data_processed = _input_data.to_numpy(dtype=np.float64)
        self.sd_data_processed = _sd_data.to_numpy(dtype=np.float64)

    def _read_data(self, filepath, index_col=None):
        """
        Read in a data file into a pandas dataframe.

        Parameters
        ----------
        filepath : str
            The path to the data file.
        index_col : str
            The index column of the dataset.

        Returns
        -------
        pd.DataFrame
            If the file successfully loads the function returns a pd.DataFrame otherwise None.

        """
        ext = filepath.split(".")[-1]
        if ext in ["csv", "txt"]:
            if index_col is not None:
                data = pd.read_csv(filepath, index_col=index_col, sep=None, engine="python")
            else:
                data = pd.read_csv(filepath, sep=None, engine="python")
        elif ext in ["xls", "xlsx"]:
            if index_col is not None:
                data = pd.read_excel(filepath, index_col=index_col)
            else:
                data = pd.read_excel(filepath)
        else:
            logger.warning(f"Unknown file type provided. Ext: {ext}, file: {filepath}")
            return None
        return data

    def _load_data(self, existing_data: bool = False):
        """
        Loads the input and standard deviation data from files, and calculates the feature metrics.
        """
        if not existing_data:
            self.input_data = self._read_data(filepath=self.input_path, index_col=self.index_col)
            self.sd_data = self._read_data(filepath=self.sd_path, index_col=self.index_col)
            if self.input_data is None or self.sd_data is None:
                logger.error("Unable to load the input and standard deviation files.")
                return
            self.features = list(self.input_data.columns)

        if self.input_data.shape != self.sd_data.shape:
            logger.warning(f"The input and standard deviation datasets have different dimensions. "
                           f"Input: {self.input_data.shape}, Standard deviation: {self.sd_data.shape}")
            return

        c_df = self.input_data.apply(pd.to_numeric, errors="coerce")
        u_df = self.sd_data.apply(pd.to_numeric, errors="coerce")
        if len(self.missing_values) > 0:
            c_df = c_df.mask(c_df.isin(self.missing_values))
            u_df = u_df.mask(u_df.isin(self.missing_values))

        # Mean absolute signal to noise ratio of the observed values
        sn = (c_df.abs() / u_df).mean(axis=0)
        missing = (c_df.isna() | u_df.isna()).sum(axis=0)

        self.metrics = pd.DataFrame(
            data={"S/N": sn, "Missing": missing, "Min": c_df.min(), "25th": c_df.quantile(q=0.25),
                  "50th": c_df.median(), "75th": c_df.quantile(q=0.75), "Max": c_df.max(),
                  "Mean SD": u_df.mean()})

    @staticmethod
    def load_dataframe(input_df: pd.DataFrame, sd_df: pd.DataFrame, missing_values: list = None):
        """
        Pass in pandas dataframes for the input and standard deviation datasets, instead of using files.

        Parameters
        ----------
        input_df : pd.DataFrame
            The measurement dataset.
        sd_df : pd.DataFrame
            The measurement error standard deviation dataset.
        missing_values : list
            Values in either dataset which mark a missing entry. Default = None.

        Returns
        -------
        DataHandler
            Instance of DataHandler using dataframes as input.
        """
        dh = DataHandler(input_path="", sd_path="", missing_values=missing_values, load=False)
        dh.input_data = input_df
        dh.sd_data = sd_df
        dh.features = list(input_df.columns)
        dh._load_data(existing_data=True)
        return dh
