"""
Collection of utility functions used throughout the code base.
"""

import numpy as np
import logging
import psutil
import os

logger = logging.getLogger(__name__)


def np_encoder(object):
    """
    Convert any numpy type to a generic type for json serialization.

    Parameters
    ----------
    object
       Object to be converted.
    Returns
    -------
    object
        Generic object or an unchanged object if not a numpy type
    """
    if isinstance(object, np.generic):
        return object.item()
    if isinstance(object, np.ndarray):
        return object.tolist()


def memory_estimate(n_features, n_samples, rank, cores: int = None):
    """
    Estimate the memory usage of a single MLPCA model and the number of models that can run in parallel.

    The vectorized projection holds the data, variances, estimate and residuals plus the stacked (n, p, p) normal
    equation systems, in float64.

    Parameters
    ----------
    n_features
        Number of features.
    n_samples
        Number of samples.
    rank
        The rank of the model.
    cores
        The number of available cores, default is os.cpu_count().

    Returns
    -------
    dict
        Estimated memory usage in bytes, and the maximum number of cores that fit in the available memory.
    """
    vm = psutil.virtual_memory()
    available_memory_bytes = np.round(vm.available, 4)
    cores = os.cpu_count() if cores is None else cores

    max_dim = max(n_features, n_samples)
    max_bytes = 8 * ((n_features * n_samples) * 5 + max_dim * rank * (rank + 3)) * 2

    if max_bytes > available_memory_bytes:
        logger.warning(f"Estimated memory usage ({max_bytes:4f} bytes) exceeds available memory "
                       f"({available_memory_bytes:4f} bytes).")

    max_parallel = max(int(available_memory_bytes // max_bytes), 1)
    max_cores = min(max_parallel, cores)

    if max_bytes / (1024 ** 3) > 1.0:
        byte_string = f"{max_bytes / (1024 ** 3)} GB"
    elif max_bytes / (1024 ** 2) > 1.0:
        byte_string = f"{max_bytes / (1024 ** 2)} MB"
    elif max_bytes / 1024 > 1.0:
        byte_string = f"{max_bytes / 1024} KB"
    else:
        byte_string = f"{max_bytes} Bytes"

    return {
        "max_cores": max_cores,
        "max_bytes": max_bytes,
        "available_memory_bytes": available_memory_bytes / (1024 ** 3),
        "estimate": byte_string
    }
