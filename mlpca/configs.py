import configparser


# ------- SIMULATOR Configuration -------- #
sim_config = configparser.ConfigParser()
sim_config['project'] = {
    "directory": "."
}
sim_config['data'] = {
    'input_path': 'synthetic_data.csv',
    'sd_path': 'synthetic_sd.csv'
}
sim_config['parameters'] = {
    'seed': 42,
    'rank': 3,                       # Rank of the clean synthetic matrix
    'features_n': 20,                # Number of features in the synthetic dataset
    'samples_n': 100,                # Number of samples in the synthetic dataset
    'signal_scale': 10.0,            # Scale of the clean low-rank matrix factors
    'sd_min': 0.1,                   # Minimum of the per-entry error standard deviations (Uniformly sampled)
    'sd_max': 1.0,                   # Maximum of the per-entry error standard deviations (Uniformly sampled)
    'missing_p': 0.0                 # Decimal percent of entries with a missing standard deviation
}

# ------- RUN Configuration --------- #
run_config = configparser.ConfigParser()
run_config['project'] = {
    "name": "",
    "directory": ".",
}
run_config['data'] = {
    "input_path": "",
    "sd_path": "",
    "index_col": 0
}
run_config['parameters'] = {
    'p': 2,
    'max_iter': 20000,
    'conv_limit': 1e-10,
    'var_mult': 1000,
    'optimized': True,
    'svd_solver': 'auto',
    'verbose': False
}
run_config['batch'] = {
    'ranks': '[1, 2, 3]',
    'parallel': True,
    'cores': -1
}
