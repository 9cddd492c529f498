import importlib.metadata
import os
import json
import click
import configparser
import logging
from importlib import metadata
from mlpca.data.datahandler import DataHandler
from mlpca.data.simulator import Simulator
from mlpca.data.analysis import ModelAnalysis
from mlpca.model.mlpca import MLPCA
from mlpca.model.batch_mlpca import BatchMLPCA
from mlpca.errors import MLPCAError
from mlpca.configs import run_config, sim_config


logging.basicConfig(format='%(asctime)s - %(message)s', datefmt='%d-%b-%y %H:%M:%S', level=logging.INFO)
logger = logging.getLogger(__name__)

try:
    VERSION = metadata.version("mlpca")
except importlib.metadata.PackageNotFoundError as ex:
    logger.warning("MLPCA package must be installed to determine version number")
    VERSION = "NA"


def get_sim(sim_path, sim_parameters):
    if "mlpca_simulator.pkl" in os.listdir(sim_path):
        sim = Simulator.load(os.path.abspath(os.path.join(sim_path, "mlpca_simulator.pkl")))
    else:
        sim = Simulator(**sim_parameters)
        sim.get_data()
        sim.save(output_directory=os.path.abspath(sim_path))
    return sim


def get_config(project_directory, sim=False):
    if sim:
        config_file = os.path.join(project_directory, "sim_config.toml")
    else:
        config_file = os.path.join(project_directory, "run_config.toml")
    config = configparser.ConfigParser()
    config.read(config_file)
    return config


def get_dh(project_directory):
    """
    The DataHandler for the project, using the simulator data if the project has a simulator configuration.
    """
    config = get_config(project_directory=project_directory)
    if "sim_config.toml" in os.listdir(project_directory):
        _sim_config = get_config(project_directory=project_directory, sim=True)
        sim = get_sim(sim_path=project_directory, sim_parameters=dict(_sim_config['parameters']))
        data_df, sd_df = sim.get_data()
        logger.info("Using MLPCA simulator data")
        return DataHandler.load_dataframe(input_df=data_df, sd_df=sd_df)
    index_col = config["data"].get("index_col", "")
    index_col = int(index_col) if index_col.isdigit() else (index_col if index_col != "" else None)
    return DataHandler(input_path=config["data"]["input_path"], sd_path=config["data"]["sd_path"],
                       index_col=index_col)


def get_parameters(config):
    parameters = config["parameters"]
    return {
        "p": parameters.getint("p"),
        "max_iter": parameters.getint("max_iter"),
        "conv_limit": parameters.getfloat("conv_limit"),
        "var_mult": parameters.getfloat("var_mult"),
        "optimized": parameters.getboolean("optimized"),
        "svd_solver": parameters.get("svd_solver", "auto"),
        "verbose": parameters.getboolean("verbose"),
    }


def get_output_path(config, project_directory):
    directory = config["project"].get("directory", project_directory)
    output_path = os.path.abspath(os.path.join(directory, "output"))
    if not os.path.exists(output_path):
        os.mkdir(output_path)
    return output_path


@click.group()
@click.version_option(version=VERSION)
def mlpca_cli():
    """
    \b
    The MLPCA CLI fits maximum likelihood principal component analysis models for data with independent,
    heteroscedastic measurement errors. The workflow sequence is as follows:
    \b
    1) setup : specify where you want your project directory for all solution outputs.
    2) analysis-input : (optional) review your input/standard deviation data metrics.
    3) run : fit a MLPCA model of the configured rank using the values in the setup configuration file.
    4) run-batch : (optional) fit one MLPCA model for each rank in the batch configuration.
    5) analysis-solution : (optional) review the residual statistics of the run solution.

    The MLPCA simulator and synthetic datasets can be used by running 'simulator setup' in place of 'setup'. The
    'run' command will use the generated synthetic data as it would real data.
    """
    pass


@mlpca_cli.command()
@click.argument("project_directory", type=click.Path())
def setup(project_directory):
    """
    Create the configuration file for a MLPCA run in the provided directory.

    Parameters

    project_directory : The project directory where all configuration output files are saved.

    """
    try:
        if not os.path.exists(project_directory):
            os.mkdir(project_directory)
    except FileNotFoundError:
        logger.error("Unable to create workflow directory, make sure the path is correct.")
        return
    logger.info(f"Creating new MLPCA project")
    new_config = run_config
    new_config['project']['directory'] = project_directory
    new_config_file = os.path.join(project_directory, "run_config.toml")
    with open(new_config_file, 'w') as configfile:
        new_config.write(configfile)
    logger.info(f"New run configuration file created. File path: {new_config_file}")


@mlpca_cli.group()
def simulator():
    """
    The collection of commands for managing MLPCA simulator instances.
    """
    pass


@simulator.command(name='setup')
@click.argument("project_directory", type=click.Path())
def setup_sim(project_directory):
    """
    Create the configuration files for a simulated MLPCA run in the provided directory.

    Parameters

    project_directory : The project directory where all configuration output files are saved.

    """
    try:
        if not os.path.exists(project_directory):
            os.mkdir(project_directory)
    except FileNotFoundError:
        logger.error("Unable to create workflow directory, make sure the path is correct.")
        return
    logger.info(f"Creating new MLPCA simulator project")
    new_sim_config = sim_config
    new_sim_config['project']['directory'] = project_directory
    new_sim_config_file = os.path.join(project_directory, "sim_config.toml")
    with open(new_sim_config_file, 'w') as configfile:
        new_sim_config.write(configfile)
    logger.info(f"New simulator configuration file created. File path: {new_sim_config_file}")
    new_config = run_config
    new_config['project']['directory'] = project_directory
    new_config['data']['input_path'] = new_sim_config['data']['input_path']
    new_config['data']['sd_path'] = new_sim_config['data']['sd_path']
    new_config['parameters']['p'] = new_sim_config['parameters']['rank']
    new_config_file = os.path.join(project_directory, "run_config.toml")
    with open(new_config_file, 'w') as configfile:
        new_config.write(configfile)
    logger.info(f"New run configuration file created. File path: {new_config_file}")


@simulator.command(name="generate")
@click.argument("project_directory", type=click.Path())
def generate_sim(project_directory):
    """
    Generate the synthetic data and standard deviation datasets as defined in the sim_config.toml. The run command
    generates the datasets if this command has not been executed.

    Parameters

    project_directory : The project directory where all configuration output files are saved.
    """
    try:
        if not os.path.exists(project_directory):
            os.mkdir(project_directory)
    except FileNotFoundError:
        logger.error("Unable to create workflow directory, make sure the path is correct.")
        return
    config = get_config(project_directory=project_directory, sim=True)
    logger.info("Generating synthetic data")
    get_sim(sim_path=project_directory, sim_parameters=dict(config['parameters']))
    logger.info("MLPCA Simulator setup complete")


@mlpca_cli.group()
def analysis_input():
    """
    The collection of commands for analyzing the input/standard deviation datasets.
    """
    pass


@analysis_input.command(name="metrics")
@click.argument("project_directory", type=click.Path(exists=True))
def metrics(project_directory):
    """
    Display the input metrics for the input/standard deviation data specified in the configuration file.

    Parameters

    project_directory : The project directory containing .toml configuration files.

    """
    logger.info("Input Dataset Metrics")
    dh = get_dh(project_directory=project_directory)
    logger.info(f"\n{dh.metrics}")


@mlpca_cli.command()
@click.argument("project_directory", type=click.Path(exists=True))
def run(project_directory):
    """
    Fit a MLPCA model using the provided configuration file.

    Parameters

    project_directory : The project directory containing .toml configuration files.

    """
    config = get_config(project_directory=project_directory)
    dh = get_dh(project_directory=project_directory)
    X, Xsd = dh.get_data()
    parameters = get_parameters(config)
    try:
        model = MLPCA(X=X, Xsd=Xsd, p=parameters["p"], var_mult=parameters["var_mult"],
                      optimized=parameters["optimized"], svd_solver=parameters["svd_solver"],
                      verbose=parameters["verbose"])
        model.train(max_iter=parameters["max_iter"], conv_limit=parameters["conv_limit"])
    except MLPCAError as ex:
        logger.error(f"MLPCA run failed. {ex.kind}: {ex}")
        raise click.ClickException(f"{ex.kind}: {ex}")
    model.summary()
    output_path = get_output_path(config, project_directory)
    model.save(model_name=config["project"]["name"], output_directory=output_path, pickle_model=True)
    model.save(model_name=config["project"]["name"], output_directory=output_path, pickle_model=False,
               header=dh.features)


@mlpca_cli.command()
@click.argument("project_directory", type=click.Path(exists=True))
def run_batch(project_directory):
    """
    Fit one MLPCA model for each rank listed in the batch section of the configuration file.

    Parameters

    project_directory : The project directory containing .toml configuration files.

    """
    config = get_config(project_directory=project_directory)
    dh = get_dh(project_directory=project_directory)
    X, Xsd = dh.get_data()
    parameters = get_parameters(config)
    batch = BatchMLPCA(X=X, Xsd=Xsd, ranks=json.loads(config["batch"]["ranks"]),
                       max_iter=parameters["max_iter"], conv_limit=parameters["conv_limit"],
                       var_mult=parameters["var_mult"], optimized=parameters["optimized"],
                       parallel=config["batch"].getboolean("parallel"), cores=config["batch"].getint("cores"),
                       verbose=parameters["verbose"])
    batch.train()
    batch.details()
    output_path = get_output_path(config, project_directory)
    batch.save(batch_name=f"{config['project']['name']}-batch", output_directory=output_path, pickle_batch=True)


@mlpca_cli.group()
def analysis_solution():
    """
    The collection of commands for analyzing the solution of a MLPCA run.
    """
    pass


@analysis_solution.command(name="statistics")
@click.argument("project_directory", type=click.Path(exists=True))
def solution_statistics(project_directory):
    """
    Display the scaled residual statistics of each feature for the run solution.

    Parameters

    project_directory : The project directory containing .toml configuration files.

    """
    config = get_config(project_directory=project_directory)
    dh = get_dh(project_directory=project_directory)
    dh.get_data()
    model_file = os.path.join(get_output_path(config, project_directory), f"{config['project']['name']}.pkl")
    model = MLPCA.load(file_path=model_file)
    if model is None:
        raise click.ClickException(f"Unable to load the MLPCA solution from {model_file}, execute run first.")
    ma = ModelAnalysis(datahandler=dh, model=model)
    ma.calculate_statistics()
    logger.info(f"\n{ma.statistics}")


if __name__ == "__main__":
    mlpca_cli()
