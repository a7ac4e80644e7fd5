"""Synthetic data generation for missing-data studies."""

import numpy as np
import pandas as pd
from scipy.interpolate import BSpline
from numpy.random import default_rng

CORRELATION_TYPES = ('linear', 'polynomial', 'complex')
TARGET_TYPES = ('linear', 'polynomial', 'categorical', 'spline')


def _spline_basis(x, degree=3, df=4):
    """Cubic B-spline basis without intercept column, interior knots at quantiles."""
    n_interior = df - degree
    inner = np.quantile(x, np.linspace(0, 1, n_interior + 2)[1:-1]) if n_interior > 0 else []
    knots = np.concatenate([[x.min()] * (degree + 1), inner, [x.max()] * (degree + 1)])
    n_basis = len(knots) - degree - 1
    columns = []
    for j in range(n_basis):
        coeffs = np.zeros(n_basis)
        coeffs[j] = 1
        columns.append(BSpline(knots, coeffs, degree)(x))
    # Drop the first basis function; the remaining df columns match a no-intercept basis
    return np.column_stack(columns[1:])


def synthetic_dataset_gen(n_samples, n_covariates, correlation='linear', target_type='linear',
                          n_categories=3, noise_level=1.0, rng=None):
    """
    Generate a synthetic dataset with correlated covariates and a target.

    Parameters:
    - n_samples: Number of rows
    - n_covariates: Number of covariates (columns X1..Xp)
    - correlation: 'linear', 'polynomial' or 'complex' dependence between covariates
    - target_type: 'linear', 'polynomial', 'categorical' or 'spline'
    - n_categories: Number of classes when target_type is 'categorical'
    - noise_level: Standard deviation of the additive target noise
    - rng: numpy Generator

    Returns:
    - DataFrame with covariates X1..Xp and a 'target' column
    """
    if n_samples <= 0 or n_covariates <= 0:
        raise ValueError(f"n_samples and n_covariates must be positive integers. "
                         f"Got n_samples={n_samples}, n_covariates={n_covariates}.")
    if correlation not in CORRELATION_TYPES:
        raise ValueError(f"Invalid correlation type: {correlation!r}. Expected one of {CORRELATION_TYPES}.")
    if target_type not in TARGET_TYPES:
        raise ValueError(f"Invalid target type: {target_type!r}. Expected one of {TARGET_TYPES}.")
    if noise_level < 0:
        raise ValueError(f"noise_level must be non-negative. Got {noise_level}.")
    if target_type == 'categorical' and n_categories < 2:
        raise ValueError(f"n_categories must be at least 2. Got {n_categories}.")
    if rng is None:
        rng = default_rng(123)

    covariates = rng.normal(0, 1, size=(n_samples, n_covariates))

    if correlation == 'linear':
        mixing = rng.normal(0, 0.5, size=(n_covariates, n_covariates))
        covariates = covariates @ mixing
    elif correlation == 'polynomial':
        covariates = covariates ** 2 + covariates ** 3
    elif correlation == 'complex':
        covariates = np.sin(covariates) + np.cos(covariates ** 2)

    if target_type == 'linear':
        beta = rng.uniform(-1, 1, n_covariates)
        target = covariates @ beta + rng.normal(0, noise_level, n_samples)
    elif target_type == 'polynomial':
        beta = rng.uniform(-1, 1, n_covariates)
        linear_part = covariates @ beta
        target = linear_part + linear_part ** 2 + rng.normal(0, noise_level, n_samples)
    elif target_type == 'categorical':
        weights = rng.uniform(-1, 1, size=(n_covariates, n_categories))
        logits = covariates @ weights
        # Softmax, shifted by the row max for numerical stability
        logits = logits - logits.max(axis=1, keepdims=True)
        probabilities = np.exp(logits)
        probabilities = probabilities / probabilities.sum(axis=1, keepdims=True)
        draws = rng.uniform(size=(n_samples, 1))
        target = (draws > np.cumsum(probabilities, axis=1)).sum(axis=1) + 1
        target = np.minimum(target, n_categories)
    else:
        x = np.linspace(-3, 3, n_samples)
        basis = _spline_basis(x, degree=3, df=4)
        target = basis @ rng.normal(0, 1, basis.shape[1]) + rng.normal(0, noise_level, n_samples)

    data = pd.DataFrame(covariates, columns=[f'X{i+1}' for i in range(n_covariates)])
    data['target'] = target
    return data


def generate_random_data(n_samples=100, n_continuous=3, n_categorical=2, n_categories=3, rng=None):
    """Independent standard-normal continuous columns and uniform categorical columns."""
    if n_samples <= 0:
        raise ValueError(f"n_samples must be positive. Got {n_samples}.")
    if rng is None:
        rng = default_rng(123)
    if np.isscalar(n_categories):
        n_categories = [int(n_categories)] * n_categorical
    if len(n_categories) != n_categorical:
        raise ValueError(f"n_categories has {len(n_categories)} entries but n_categorical={n_categorical}.")

    data = {}
    for i in range(n_continuous):
        data[f'cont_{i+1}'] = rng.normal(0, 1, n_samples)
    for i, k in enumerate(n_categories):
        if k < 1:
            raise ValueError(f"Each categorical column needs at least one level. Got {k}.")
        levels = np.array([chr(ord('A') + j) for j in range(k)])
        data[f'cat_{i+1}'] = pd.Categorical(rng.choice(levels, n_samples), categories=levels)
    return pd.DataFrame(data)


def generate_linear_data(n_samples=200, coefficients=(2.0, -1.0, 0.5), intercept=0.0,
                         noise_level=1.0, rng=None):
    """Data following y = intercept + X @ coefficients + noise."""
    coefficients = np.asarray(coefficients, dtype=float)
    if coefficients.size == 0:
        raise ValueError("coefficients must contain at least one value.")
    if n_samples <= 0:
        raise ValueError(f"n_samples must be positive. Got {n_samples}.")
    if rng is None:
        rng = default_rng(123)
    X = rng.normal(0, 1, size=(n_samples, coefficients.size))
    y = intercept + X @ coefficients + rng.normal(0, noise_level, n_samples)
    data = pd.DataFrame(X, columns=[f'x{i+1}' for i in range(coefficients.size)])
    data['y'] = y
    return data


def generate_cluster_data(n_clusters=4, n_per_cluster=50, n_features=2, cluster_std=1.0,
                          spread=5.0, rng=None):
    """Gaussian blobs with an integer 'cluster' label."""
    if n_clusters <= 0 or n_per_cluster <= 0 or n_features <= 0:
        raise ValueError("n_clusters, n_per_cluster and n_features must be positive.")
    if rng is None:
        rng = default_rng(123)
    centers = rng.uniform(-spread, spread, size=(n_clusters, n_features))
    blocks = [center + rng.normal(0, cluster_std, size=(n_per_cluster, n_features)) for center in centers]
    data = pd.DataFrame(np.vstack(blocks), columns=[f'x{i+1}' for i in range(n_features)])
    data['cluster'] = np.repeat(np.arange(1, n_clusters + 1), n_per_cluster)
    return data


def train_test_split_data(data, test_size=0.3, rng=None):
    """Randomly split rows into (train, test)."""
    if not 0 < test_size < 1:
        raise ValueError(f"test_size must be between 0 and 1 (exclusive). Got {test_size}.")
    if rng is None:
        rng = default_rng(123)
    n_test = int(round(len(data) * test_size))
    permutation = rng.permutation(len(data))
    test_idx, train_idx = permutation[:n_test], permutation[n_test:]
    train = data.iloc[np.sort(train_idx)].reset_index(drop=True)
    test = data.iloc[np.sort(test_idx)].reset_index(drop=True)
    return train, test
