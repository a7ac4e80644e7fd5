"""Distributional and cell-level metrics comparing imputed data with ground truth."""

import logging

import numpy as np
import pandas as pd
from scipy.spatial.distance import jensenshannon
from scipy.stats import gaussian_kde, wasserstein_distance

logger = logging.getLogger(__name__)

AVAILABLE_METRICS = ('mae', 'rmse', 'correlation')


def _finite(values):
    values = np.asarray(values, dtype=np.float64).ravel()
    return values[np.isfinite(values)]


def _check_lengths(y_true, y_pred):
    y_true = np.asarray(y_true, dtype=np.float64).ravel()
    y_pred = np.asarray(y_pred, dtype=np.float64).ravel()
    if len(y_true) != len(y_pred):
        raise ValueError(f"Vectors must have the same length. Got {len(y_true)} and {len(y_pred)}.")
    return y_true, y_pred


def rmse(y_true, y_pred):
    y_true, y_pred = _check_lengths(y_true, y_pred)
    return float(np.sqrt(np.mean((y_true - y_pred) ** 2)))


def mae(y_true, y_pred):
    y_true, y_pred = _check_lengths(y_true, y_pred)
    return float(np.mean(np.abs(y_true - y_pred)))


def wasserstein(original, imputed):
    """
    First Wasserstein (earth mover's) distance between two 1-D samples.

    NaNs are dropped before comparison.
    """
    u, v = _finite(original), _finite(imputed)
    if len(u) == 0 or len(v) == 0:
        raise ValueError("Both samples must contain at least one finite value.")
    return float(wasserstein_distance(u, v))


def jensen_shannon_divergence(original, imputed, n_points=512):
    """
    Jensen-Shannon divergence between Gaussian kernel density estimates.

    Both densities are evaluated on a shared grid spanning the two samples and
    normalised before comparison. The base-2 divergence lies in [0, 1].

    Parameters:
    -----------
    original : array-like
        Ground truth sample
    imputed : array-like
        Sample after imputation
    n_points : int
        Number of grid points for density evaluation

    Returns:
    --------
    float : JS divergence (squared Jensen-Shannon distance)
    """
    u, v = _finite(original), _finite(imputed)
    if len(u) < 2 or len(v) < 2:
        raise ValueError("Both samples need at least two finite values for density estimation.")
    if np.ptp(u) == 0 or np.ptp(v) == 0:
        raise ValueError("Density estimation requires samples with non-zero variance.")

    kde_u, kde_v = gaussian_kde(u), gaussian_kde(v)
    pad = 3 * max(kde_u.factor * u.std(ddof=1), kde_v.factor * v.std(ddof=1))
    grid = np.linspace(min(u.min(), v.min()) - pad, max(u.max(), v.max()) + pad, n_points)
    p, q = kde_u(grid), kde_v(grid)
    distance = jensenshannon(p / p.sum(), q / q.sum(), base=2)
    return float(distance ** 2)


def compare_distributions(original, imputed, columns=None):
    """
    Per-column Wasserstein distance and JS divergence.

    Returns:
    --------
    pd.DataFrame indexed by column with 'wasserstein' and 'js_divergence'
    """
    if columns is None:
        columns = [col for col in original.columns
                   if pd.api.types.is_numeric_dtype(original[col]) and col in imputed.columns]
    rows = {}
    for col in columns:
        try:
            js = jensen_shannon_divergence(original[col], imputed[col])
        except ValueError as e:
            logger.warning(f"JS divergence undefined for {col}: {e}")
            js = np.nan
        rows[col] = {'wasserstein': wasserstein(original[col], imputed[col]), 'js_divergence': js}
    return pd.DataFrame.from_dict(rows, orient='index', columns=['wasserstein', 'js_divergence'])


def compare_imputed_to_original(original_data, imputed_data, metrics=AVAILABLE_METRICS, mask=None):
    """
    Compare original data with imputed data by averaging per-column difference metrics.

    Args:
        original_data (pd.DataFrame or pd.Series): Ground truth values.
        imputed_data (pd.DataFrame or pd.Series): Imputed values, same shape.
        metrics (iterable): Any of 'mae', 'rmse', 'correlation'.
        mask (pd.DataFrame, optional): Boolean frame restricting the comparison,
            typically the missingness mask of the corrupted data.

    Returns:
        dict: Metric name -> mean across numeric columns (NaN-ignoring).
    """
    if original_data.shape != imputed_data.shape:
        raise ValueError(f"Original and imputed data must have the same dimensions. "
                         f"Got {original_data.shape} and {imputed_data.shape}.")
    unknown = [m for m in metrics if m not in AVAILABLE_METRICS]
    if unknown:
        raise ValueError(f"Unknown metrics: {unknown}. Available: {AVAILABLE_METRICS}.")

    if isinstance(original_data, pd.Series):
        original_data = original_data.to_frame(name='x')
        imputed_data = pd.Series(np.asarray(imputed_data), index=original_data.index).to_frame(name='x')
        if mask is not None:
            mask = pd.Series(np.asarray(mask), index=original_data.index).to_frame(name='x')

    per_column = {metric: [] for metric in metrics}
    for col in original_data.columns:
        if not pd.api.types.is_numeric_dtype(original_data[col]):
            continue
        orig_values = original_data[col].to_numpy(dtype=np.float64)
        imp_values = imputed_data[col].to_numpy(dtype=np.float64)
        valid = ~np.isnan(orig_values)
        if mask is not None:
            valid &= mask[col].to_numpy(dtype=bool)
        if valid.sum() == 0:
            continue
        for metric in metrics:
            if metric == 'mae':
                per_column[metric].append(mae(orig_values[valid], imp_values[valid]))
            elif metric == 'rmse':
                per_column[metric].append(rmse(orig_values[valid], imp_values[valid]))
            elif valid.sum() > 1 and np.std(orig_values[valid]) > 0 and np.std(imp_values[valid]) > 0:
                per_column[metric].append(float(np.corrcoef(orig_values[valid], imp_values[valid])[0, 1]))
            else:
                per_column[metric].append(np.nan)

    overall_metrics = {}
    for metric, values in per_column.items():
        values = np.asarray(values, dtype=np.float64)
        overall_metrics[metric] = float(np.nanmean(values)) if np.isfinite(values).any() else np.nan
    return overall_metrics
