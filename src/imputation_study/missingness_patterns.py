"""Missingness pattern classes for simulation studies."""

import logging
from abc import ABC, abstractmethod

import numpy as np
import pandas as pd
import statsmodels.api as sm
from numpy.random import default_rng

logger = logging.getLogger(__name__)


def _check_proportion(value, label):
    if not 0 <= value <= 1:
        raise ValueError(f"{label} must be between 0 and 1. Got {value}.")


def _numeric_columns(data):
    return [col for col in data.columns if pd.api.types.is_numeric_dtype(data[col])]


class MissingnessPattern(ABC):
    """Abstract base class for missingness patterns.

    All missingness patterns must implement:
    - apply(data, rng=None): Return a copy of data with missing values introduced
    - name: Property for descriptive name
    """

    @abstractmethod
    def apply(self, data, rng=None):
        """Apply missingness to the data.

        Parameters:
        - data: Input DataFrame (left untouched)
        - rng: numpy Generator

        Returns:
        - dat_miss: DataFrame with missing values
        """
        pass

    @property
    @abstractmethod
    def name(self):
        """Return descriptive name of the pattern."""
        pass


class MCARPattern(MissingnessPattern):
    """Blank a fixed share of cells chosen uniformly at random."""

    def __init__(self, prop_missing=0.2, exclude_cols=None):
        _check_proportion(prop_missing, 'prop_missing')
        self.prop_missing = prop_missing
        self.exclude_cols = list(exclude_cols) if exclude_cols is not None else []

    def apply(self, data, rng=None):
        if rng is None:
            rng = default_rng(123)
        unknown = [col for col in self.exclude_cols if col not in data.columns]
        if unknown:
            raise KeyError(f"Columns to exclude not found in data: {unknown}")
        dat_miss = data.copy()
        cols = [col for col in data.columns if col not in self.exclude_cols]
        n_cells = len(data) * len(cols)
        n_missing = int(round(n_cells * self.prop_missing))
        if n_missing == 0:
            return dat_miss

        flat = rng.choice(n_cells, size=n_missing, replace=False)
        rows, col_pos = np.divmod(flat, len(cols))
        for j, col in enumerate(cols):
            hit = np.zeros(len(data), dtype=bool)
            hit[rows[col_pos == j]] = True
            if hit.any():
                dat_miss[col] = dat_miss[col].mask(hit)
        return dat_miss

    @property
    def name(self):
        return 'mcar'


class MARPattern(MissingnessPattern):
    """Blank target columns on rows selected by the values of observed predictors."""

    def __init__(self, prop_missing=0.2, predictor_cols=None, target_cols=None, threshold_quantile=0.7):
        _check_proportion(prop_missing, 'prop_missing')
        _check_proportion(threshold_quantile, 'threshold_quantile')
        if isinstance(predictor_cols, str):
            predictor_cols = [predictor_cols]
        if isinstance(target_cols, str):
            target_cols = [target_cols]
        self.prop_missing = prop_missing
        self.predictor_cols = predictor_cols
        self.target_cols = target_cols
        self.threshold_quantile = threshold_quantile

    def _trigger_rows(self, values, rng):
        if pd.api.types.is_numeric_dtype(values):
            threshold = values.quantile(self.threshold_quantile)
            return (values > threshold).to_numpy()
        cats = np.asarray(values.dropna().unique(), dtype=object)
        selected = rng.choice(cats, size=len(cats) // 2, replace=False)
        return values.isin(selected).to_numpy()

    def apply(self, data, rng=None):
        if rng is None:
            rng = default_rng(123)
        predictor_cols = self.predictor_cols
        if predictor_cols is None:
            numeric = _numeric_columns(data)
            if not numeric:
                raise ValueError("MAR pattern needs a numeric predictor column when predictor_cols is not given.")
            predictor_cols = numeric[:1]
        target_cols = self.target_cols
        if target_cols is None:
            target_cols = [col for col in data.columns if col not in predictor_cols]
        missing = [col for col in list(predictor_cols) + list(target_cols) if col not in data.columns]
        if missing:
            raise KeyError(f"Columns not found in data: {missing}")

        dat_miss = data.copy()
        n_targets = min(len(target_cols), int(round(len(target_cols) * self.prop_missing)))
        if n_targets == 0:
            return dat_miss
        for pred_col in predictor_cols:
            missing_rows = self._trigger_rows(data[pred_col], rng)
            chosen = rng.choice(np.asarray(target_cols, dtype=object), size=n_targets, replace=False)
            for target_col in chosen:
                if target_col == pred_col:
                    continue
                dat_miss[target_col] = dat_miss[target_col].mask(missing_rows)
        return dat_miss

    @property
    def name(self):
        return 'mar'


class MNARPattern(MissingnessPattern):
    """Blank the largest values of a column based on the column itself."""

    def __init__(self, prop_missing=0.2, threshold_quantile=0.7):
        _check_proportion(prop_missing, 'prop_missing')
        _check_proportion(threshold_quantile, 'threshold_quantile')
        self.prop_missing = prop_missing
        self.threshold_quantile = threshold_quantile

    def apply(self, data, rng=None):
        if rng is None:
            rng = default_rng(123)
        dat_miss = data.copy()
        numeric_cols = _numeric_columns(data)
        if not numeric_cols:
            logger.warning("No numeric columns available for MNAR missingness; data returned unchanged.")
            return dat_miss
        n_cols = max(1, int(round(len(numeric_cols) * self.prop_missing)))
        cols_to_affect = rng.choice(np.asarray(numeric_cols, dtype=object), size=n_cols, replace=False)
        for col in cols_to_affect:
            threshold = data[col].quantile(self.threshold_quantile)
            dat_miss[col] = dat_miss[col].mask((data[col] > threshold).to_numpy())
        return dat_miss

    @property
    def name(self):
        return 'mnar'


class MixedPattern(MissingnessPattern):
    """MCAR, MAR and MNAR applied in sequence with weighted shares of the total proportion."""

    def __init__(self, prop_missing_total=0.2, pattern_weights=None):
        _check_proportion(prop_missing_total, 'prop_missing_total')
        if pattern_weights is None:
            pattern_weights = {'MCAR': 0.4, 'MAR': 0.3, 'MNAR': 0.3}
        unknown = set(pattern_weights) - {'MCAR', 'MAR', 'MNAR'}
        if unknown:
            raise ValueError(f"Unknown pattern weights: {sorted(unknown)}")
        if any(w < 0 for w in pattern_weights.values()):
            raise ValueError(f"pattern_weights must be non-negative. Got {pattern_weights}.")
        total = sum(pattern_weights.values())
        if total <= 0:
            raise ValueError("pattern_weights must sum to a positive value.")
        self.prop_missing_total = prop_missing_total
        self.pattern_weights = {key: w / total for key, w in pattern_weights.items()}

    def apply(self, data, rng=None):
        if rng is None:
            rng = default_rng(123)
        props = {key: self.prop_missing_total * w for key, w in self.pattern_weights.items()}
        dat_miss = data.copy()
        if props.get('MCAR', 0) > 0:
            dat_miss = MCARPattern(prop_missing=props['MCAR']).apply(dat_miss, rng=rng)
        if props.get('MAR', 0) > 0:
            dat_miss = MARPattern(prop_missing=props['MAR']).apply(dat_miss, rng=rng)
        if props.get('MNAR', 0) > 0:
            dat_miss = MNARPattern(prop_missing=props['MNAR']).apply(dat_miss, rng=rng)
        return dat_miss

    @property
    def name(self):
        return 'mixed'


def summarize_missing(data):
    """
    Summarize the missing data in a DataFrame.

    Returns:
    - dict with overall_proportion, total_missing, complete_cases,
      incomplete_cases and column_proportions
    """
    is_missing = data.isna()
    total_cells = data.shape[0] * data.shape[1]
    total_missing = int(is_missing.to_numpy().sum())
    complete = int((~is_missing.any(axis=1)).sum())
    return {
        'overall_proportion': total_missing / total_cells if total_cells else 0.0,
        'total_missing': total_missing,
        'complete_cases': complete,
        'incomplete_cases': len(data) - complete,
        'column_proportions': is_missing.mean(),
    }


def missingness_indicator_test(data, column, predictors, alpha=0.05):
    """
    Logistic regression of the missingness indicator of `column` on observed predictors.

    A small likelihood-ratio p-value rejects MCAR in favour of MAR with respect
    to the given predictors.

    Returns:
    - dict with llr_pvalue, pseudo_r2 and significant_predictors
    """
    if column not in data.columns:
        raise KeyError(f"Column {column!r} not found in data.")
    indicator = data[column].isna().astype(int)
    if indicator.sum() == 0 or indicator.sum() == len(indicator):
        raise ValueError(f"Column {column!r} must be partially missing to test its missingness mechanism.")

    X = data[list(predictors)]
    observed = X.notna().all(axis=1)
    X = sm.add_constant(X.loc[observed].astype(float))
    y = indicator.loc[observed]
    model = sm.Logit(y, X).fit(disp=0)
    pvalues = model.pvalues.drop('const', errors='ignore')
    significant = [name for name, p in pvalues.items() if p < alpha]
    logger.info(f"Missingness test for {column}: LLR p-value={model.llr_pvalue:.4g}, pseudo R2={model.prsquared:.4f}")
    return {
        'llr_pvalue': float(model.llr_pvalue),
        'pseudo_r2': float(model.prsquared),
        'significant_predictors': significant,
    }


PATTERN_REGISTRY = {
    'mcar': MCARPattern,
    'mar': MARPattern,
    'mnar': MNARPattern,
    'mixed': MixedPattern,
}
