"""Full factorial simulation runner driven by a JSON configuration."""

import json
import logging
import os
from itertools import product
from multiprocessing import Pool
from pathlib import Path

import pandas as pd
from numpy.random import default_rng
from tqdm import tqdm

from imputation_study.imputation_methods import METHOD_REGISTRY
from imputation_study.missingness_patterns import PATTERN_REGISTRY
from imputation_study.simulator import SimulationStudy, summarize_results

logger = logging.getLogger(__name__)

DEFAULT_PATTERNS = ['mcar', 'mar', 'mnar']
DEFAULT_METHODS = [
    'listwise_deletion', 'mean', 'median', 'regression', 'regression_normal_noise',
    'hot_deck_pmm', 'em', 'multiple_imputation', 'gam', 'random_forest',
]
REQUIRED_KEYS = ['n_samples', 'n_covariates', 'num_runs', 'seed', 'patterns', 'methods']
LIST_PARAMS = ['n_samples', 'n_covariates', 'correlation', 'target_type', 'prop_missing']
FACTOR_KEYS = ['n_samples', 'n_covariates', 'correlation', 'target_type', 'prop_missing']


def load_config(config_path):
    """
    Load simulation configuration from a JSON file.

    Parameters:
    -----------
    config_path : str or Path
        Path to the JSON configuration file

    Returns:
    --------
    dict : Configuration dictionary with simulation parameters

    Example JSON structure:
    {
        "n_samples": [200, 500],
        "n_covariates": [5],
        "correlation": ["linear"],
        "target_type": ["linear"],
        "prop_missing": [0.1, 0.3],
        "num_runs": 5,
        "patterns": ["mcar", "mar", "mnar"],
        "methods": ["mean", "regression", "em"],
        "seed": 123
    }
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        config = json.load(f)

    missing_keys = [key for key in REQUIRED_KEYS if key not in config]
    if missing_keys:
        raise ValueError(f"Missing required configuration keys: {missing_keys}")

    for param in LIST_PARAMS:
        if param in config and not isinstance(config[param], list):
            config[param] = [config[param]]

    validate_names(config['patterns'], config['methods'])
    logger.info(f"Loaded configuration from {config_path}")
    return config


def validate_names(patterns, methods):
    unknown_patterns = [name for name in patterns if name not in PATTERN_REGISTRY]
    if unknown_patterns:
        raise ValueError(f"Unknown missingness patterns: {unknown_patterns}. Available: {sorted(PATTERN_REGISTRY)}")
    unknown_methods = [name for name in methods if name not in METHOD_REGISTRY]
    if unknown_methods:
        raise ValueError(f"Unknown imputation methods: {unknown_methods}. Available: {sorted(METHOD_REGISTRY)}")


def build_pattern(name, prop_missing):
    if name == 'mixed':
        return PATTERN_REGISTRY[name](prop_missing_total=prop_missing)
    return PATTERN_REGISTRY[name](prop_missing=prop_missing)


def run_single_run(args):
    """Run a single replicate for one parameter combination. Used for parallelization across runs."""
    params, study_options, pattern_names, method_names, run_idx, run_rng = args

    # Patterns and methods are built inside the worker so only names cross process boundaries
    patterns = [build_pattern(name, params['prop_missing']) for name in pattern_names]
    methods = [METHOD_REGISTRY[name]() for name in method_names]

    study = SimulationStudy(
        n_samples=params['n_samples'], n_covariates=params['n_covariates'],
        correlation=params['correlation'], target_type=params['target_type'],
        num_runs=1, rng=run_rng, **study_options
    )
    logger.info(f"Running simulation for {params}, run {run_idx}")
    results = study.run_once(patterns, methods, run_rng)
    results.insert(0, 'run_idx', run_idx)
    for key, value in params.items():
        results[key] = value
    return results


def run_simulation(
    config_file=None,
    n_samples=[200],
    n_covariates=[5],
    correlation=['linear'],
    target_type=['linear'],
    prop_missing=[0.2],
    num_runs=1,
    patterns=DEFAULT_PATTERNS,
    methods=DEFAULT_METHODS,
    seed=123,
    n_categories=3,
    noise_level=1.0,
    test_size=0.3,
    num_processes=1,
    output_dir='results/report'
):
    """
    Run simulation with full factorial design over the data and missingness parameters.

    Parameters can be provided either via a JSON config file or directly as function arguments.
    If config_file is provided, its values take precedence over direct arguments.

    Returns:
    --------
    results_all : DataFrame
        One row per (parameter combination, run, pattern, method)
    results_averaged : DataFrame
        Metrics averaged across runs, with their across-run spread

    Example:
    --------
    results_all, results_avg = run_simulation(config_file='config.json')
    results_all, results_avg = run_simulation(n_samples=[100, 300], prop_missing=[0.1, 0.3], num_runs=2)
    """
    if config_file is not None:
        config = load_config(config_file)
        n_samples = config['n_samples']
        n_covariates = config['n_covariates']
        correlation = config.get('correlation', correlation)
        target_type = config.get('target_type', target_type)
        prop_missing = config.get('prop_missing', prop_missing)
        num_runs = config['num_runs']
        patterns = config['patterns']
        methods = config['methods']
        seed = config['seed']
        n_categories = config.get('n_categories', n_categories)
        noise_level = config.get('noise_level', noise_level)
        test_size = config.get('test_size', test_size)
        num_processes = config.get('num_processes', num_processes)
        output_dir = config.get('output_dir', output_dir)

    validate_names(patterns, methods)
    for prop in prop_missing:
        if not 0 <= prop <= 1:
            raise ValueError(f"prop_missing must be between 0 and 1. Got {prop}.")
    if num_runs < 1:
        raise ValueError(f"num_runs must be at least 1. Got {num_runs}.")

    logger.info(f"Starting full factorial simulation with seed={seed}")
    param_combinations = [dict(zip(FACTOR_KEYS, values)) for values in
                          product(n_samples, n_covariates, correlation, target_type, prop_missing)]

    study_options = {'n_categories': n_categories, 'noise_level': noise_level, 'test_size': test_size}
    parent_rng = default_rng(seed)
    args_list = []
    for params, combo_rng in zip(param_combinations, parent_rng.spawn(len(param_combinations))):
        for run_idx, run_rng in enumerate(combo_rng.spawn(num_runs)):
            args_list.append((params, study_options, list(patterns), list(methods), run_idx, run_rng))

    if num_processes > 1:
        logger.info(f"Using {num_processes} parallel processes for {len(args_list)} runs")
        with Pool(processes=num_processes) as pool:
            run_results = list(tqdm(pool.imap(run_single_run, args_list), total=len(args_list), desc="Runs"))
    else:
        run_results = [run_single_run(args) for args in tqdm(args_list, desc="Runs")]

    results_all = pd.concat(run_results, ignore_index=True)

    param_base = (f'n_{min(n_samples)}_{max(n_samples)}_p_{min(n_covariates)}_{max(n_covariates)}_'
                  f'miss_{min(prop_missing)}_{max(prop_missing)}_runs_{num_runs}_seed_{seed}')
    report_dir = os.path.join(output_dir, param_base)
    os.makedirs(report_dir, exist_ok=True)

    results_all.to_csv(os.path.join(report_dir, 'results_all_runs.csv'), index=False)
    logger.info(f"Saved all runs results to {os.path.join(report_dir, 'results_all_runs.csv')}")

    groupby_keys = FACTOR_KEYS + ['missingness', 'method']
    results_averaged = summarize_results(results_all, groupby_keys=groupby_keys)
    results_averaged.to_csv(os.path.join(report_dir, 'results_averaged.csv'), index=False)
    logger.info(f"Saved averaged results to {os.path.join(report_dir, 'results_averaged.csv')}")

    logger.info(f"Full factorial simulation complete. Results saved in {report_dir}")
    return results_all, results_averaged


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler('simulation.log.txt'),
            logging.StreamHandler()
        ]
    )
    run_simulation(num_runs=2, n_samples=[200], n_covariates=[5], prop_missing=[0.1, 0.3])
