"""Simulation study orchestration: generate, corrupt, impute, score."""

import logging

import numpy as np
import pandas as pd
from numpy.random import default_rng
from tqdm import tqdm

from imputation_study.data_generators import (
    CORRELATION_TYPES, TARGET_TYPES, synthetic_dataset_gen, train_test_split_data
)
from imputation_study.evaluator import evaluate_model_performance
from imputation_study.metrics import compare_distributions, compare_imputed_to_original
from imputation_study.missingness_patterns import summarize_missing

logger = logging.getLogger(__name__)

TARGET = 'target'

FIDELITY_METRICS = ['missing_rate', 'n_rows_used', 'wasserstein_mean', 'js_divergence_mean', 'cell_mae', 'cell_rmse']
REGRESSION_METRICS = ['rmse_mean', 'rmse_std', 'mae_mean', 'mae_std']
CLASSIFICATION_METRICS = ['accuracy_mean', 'accuracy_std', 'log_loss_mean', 'log_loss_std']


class SimulationStudy:
    def __init__(self, n_samples=200, n_covariates=5, correlation='linear', target_type='linear',
                 n_categories=3, noise_level=1.0, test_size=0.3, num_runs=1, rng=None, seed=None):
        if rng is not None:
            self.rng = rng
        else:
            self.rng = default_rng(seed)
        self.n_samples = n_samples
        self.n_covariates = n_covariates
        self.correlation = correlation
        self.target_type = target_type
        self.n_categories = n_categories
        self.noise_level = noise_level
        self.test_size = test_size
        self.num_runs = num_runs
        self.seed = seed

        if n_samples <= 0 or n_covariates <= 0:
            raise ValueError(f"n_samples and n_covariates must be positive. Got {n_samples} and {n_covariates}.")
        if correlation not in CORRELATION_TYPES:
            raise ValueError(f"Invalid correlation type: {correlation!r}. Expected one of {CORRELATION_TYPES}.")
        if target_type not in TARGET_TYPES:
            raise ValueError(f"Invalid target type: {target_type!r}. Expected one of {TARGET_TYPES}.")
        if not 0 < test_size < 1:
            raise ValueError(f"test_size must be between 0 and 1 (exclusive). Got {test_size}.")
        if num_runs < 1:
            raise ValueError(f"num_runs must be at least 1. Got {num_runs}.")

    @property
    def task(self):
        return 'classification' if self.target_type == 'categorical' else 'regression'

    def generate(self, rng):
        """Generate complete ground truth and split it into (train, test)."""
        data_rng, split_rng = rng.spawn(2)
        data = synthetic_dataset_gen(
            self.n_samples, self.n_covariates, correlation=self.correlation, target_type=self.target_type,
            n_categories=self.n_categories, noise_level=self.noise_level, rng=data_rng
        )
        return train_test_split_data(data, test_size=self.test_size, rng=split_rng)

    def corrupt(self, train_true, missingness_pattern, rng):
        """Apply missingness to the covariates; the target stays complete."""
        covariates = train_true.drop(columns=[TARGET])
        dat_miss = missingness_pattern.apply(covariates, rng=rng)
        dat_miss[TARGET] = train_true[TARGET]
        return dat_miss

    def score(self, train_true, test_true, dat_miss, imputed_list):
        """Distributional fidelity on the training covariates plus downstream utility on the test set."""
        covariates = [col for col in train_true.columns if col != TARGET]
        corrupted = [col for col in covariates if dat_miss[col].isna().any()]
        results = {col: np.nan for col in FIDELITY_METRICS}
        results['missing_rate'] = summarize_missing(dat_miss[covariates])['overall_proportion']
        results['n_rows_used'] = float(np.mean([len(imp) for imp in imputed_list])) if imputed_list else np.nan

        usable = [imp for imp in imputed_list if len(imp) > 0]
        if corrupted and usable:
            distances = pd.concat([compare_distributions(train_true, imp, columns=corrupted) for imp in usable])
            results['wasserstein_mean'] = distances['wasserstein'].mean()
            results['js_divergence_mean'] = distances['js_divergence'].mean()

            # Cell-level errors only make sense when rows were imputed, not dropped
            same_rows = [imp for imp in usable if imp.index.equals(train_true.index)]
            if same_rows:
                mask = dat_miss[corrupted].isna()
                cell = [compare_imputed_to_original(train_true[corrupted], imp[corrupted],
                                                    metrics=('mae', 'rmse'), mask=mask)
                        for imp in same_rows]
                results['cell_mae'] = float(np.nanmean([c['mae'] for c in cell]))
                results['cell_rmse'] = float(np.nanmean([c['rmse'] for c in cell]))

        results.update(evaluate_model_performance(imputed_list, test_true, target=TARGET, task=self.task))
        return results

    def run_scenario(self, missingness_pattern, imputation_method, rng=None):
        """
        Runs one scenario: generates train/test data, applies missingness to train,
        imputes, and evaluates fidelity and utility.
        """
        if rng is None:
            rng = self.rng.spawn(1)[0]
        data_rng, miss_rng, impute_rng = rng.spawn(3)
        train_true, test_true = self.generate(data_rng)
        dat_miss = self.corrupt(train_true, missingness_pattern, miss_rng)
        imputed_list = imputation_method.impute(dat_miss, rng=impute_rng)
        return self.score(train_true, test_true, dat_miss, imputed_list)

    def run_once(self, missingness_patterns, imputation_methods, rng):
        """
        One replicate: every pattern corrupts the same ground truth and every
        method imputes the same corrupted data.
        """
        data_rng, scenario_rng = rng.spawn(2)
        train_true, test_true = self.generate(data_rng)
        rows = []
        for pattern, pattern_rng in zip(missingness_patterns, scenario_rng.spawn(len(missingness_patterns))):
            miss_rng, method_rng = pattern_rng.spawn(2)
            dat_miss = self.corrupt(train_true, pattern, miss_rng)
            for method, impute_rng in zip(imputation_methods, method_rng.spawn(len(imputation_methods))):
                logger.debug(f"Scoring {pattern.name} {method.name}")
                imputed_list = method.impute(dat_miss, rng=impute_rng)
                metrics = self.score(train_true, test_true, dat_miss, imputed_list)
                rows.append({'missingness': pattern.name, 'method': method.name, **metrics})
        return pd.DataFrame(rows)

    def run_all(self, missingness_patterns, imputation_methods):
        """Run num_runs replicates and return one row per (run, pattern, method)."""
        run_rngs = self.rng.spawn(self.num_runs)
        frames = []
        for run_idx in tqdm(range(self.num_runs), desc="Simulation runs", leave=False):
            frame = self.run_once(missingness_patterns, imputation_methods, run_rngs[run_idx])
            frame.insert(0, 'run_idx', run_idx)
            frames.append(frame)
        return pd.concat(frames, ignore_index=True)


def metric_columns(results):
    candidates = FIDELITY_METRICS + REGRESSION_METRICS + CLASSIFICATION_METRICS
    return [col for col in candidates if col in results.columns]


def summarize_results(results, groupby_keys=('missingness', 'method')):
    """
    Average metrics across runs.

    Returns the mean of every metric plus `<metric>_std_runs`, the spread of
    that metric across runs (simulation uncertainty).
    """
    groupby_keys = list(groupby_keys)
    metric_cols = metric_columns(results)
    grouped = results.groupby(groupby_keys, sort=False)[metric_cols]
    results_mean = grouped.mean().reset_index()
    results_std_runs = grouped.std().reset_index()
    results_std_runs = results_std_runs.rename(columns={col: f'{col}_std_runs' for col in metric_cols})
    return pd.merge(results_mean, results_std_runs, on=groupby_keys, how='left')
