"""Deletion and imputation method classes for simulation studies."""

import logging
import warnings
from abc import ABC, abstractmethod
from functools import partial

import numpy as np
import pandas as pd
from numpy.random import default_rng
from sklearn.ensemble import RandomForestRegressor
from sklearn.experimental import enable_iterative_imputer  # noqa: F401
from sklearn.impute import IterativeImputer, KNNImputer
from sklearn.linear_model import LinearRegression
from statsmodels.gam.api import BSplines, GLMGam
from tqdm import tqdm

logger = logging.getLogger(__name__)


def numeric_columns(data):
    return [col for col in data.columns if pd.api.types.is_numeric_dtype(data[col])]


def _mean_filled(frame):
    """Fill NaNs with column means, and with 0 where a column has no observed value."""
    return frame.fillna(frame.mean()).fillna(0)


def _columns_to_impute(data):
    return [col for col in numeric_columns(data) if data[col].isna().any()]


def _child_seed(rng, high=2**32):
    return int(rng.integers(0, high))


class ImputationMethod(ABC):
    """Abstract base class for imputation methods.

    All imputation methods must implement:
    - impute(data, rng=None): Return list of imputed DataFrames
    - name: Property for descriptive name
    """

    @abstractmethod
    def impute(self, data, rng=None):
        pass

    @property
    @abstractmethod
    def name(self):
        pass


class ListwiseDeletion(ImputationMethod):
    def impute(self, data, rng=None):
        dat_complete = data.dropna()
        if len(dat_complete) == 0:
            logger.warning("No complete cases remain after listwise deletion. Returning an empty DataFrame.")
        return [dat_complete]

    @property
    def name(self):
        return 'listwise_deletion'


def pairwise_deletion(data):
    """
    Covariance matrix of the numeric columns under pairwise deletion.

    Each entry uses the rows where both variables are observed.
    """
    return data[numeric_columns(data)].cov()


class SimpleImputation(ImputationMethod):
    def __init__(self, method='mean'):
        if method not in ('mean', 'median'):
            raise ValueError(f"Unknown simple imputation method: {method!r}. Use 'mean' or 'median'.")
        self.method = method

    def impute(self, data, rng=None):
        dat_imputed = data.copy()
        for col in _columns_to_impute(data):
            if dat_imputed[col].isna().all():
                logger.warning(f"All values in {col} are NaN, filling with 0")
                dat_imputed[col] = dat_imputed[col].fillna(0)
            elif self.method == 'mean':
                dat_imputed[col] = dat_imputed[col].fillna(dat_imputed[col].mean())
            else:
                dat_imputed[col] = dat_imputed[col].fillna(dat_imputed[col].median())
        return [dat_imputed]

    @property
    def name(self):
        return self.method


class RegressionImputation(ImputationMethod):
    """Linear regression on complete cases, optionally with stochastic noise.

    noise=None returns the conditional mean, 'normal' adds Gaussian noise scaled
    by the residual standard deviation and 'empirical' adds resampled residuals.
    """

    def __init__(self, noise=None):
        if noise not in (None, 'normal', 'empirical'):
            raise ValueError(f"Unknown noise type: {noise!r}. Use None, 'normal' or 'empirical'.")
        self.noise = noise

    def impute(self, data, rng=None):
        if rng is None:
            rng = default_rng(123)
        dat_imputed = data.copy()
        numeric = numeric_columns(data)
        for col in _columns_to_impute(data):
            mask_missing = data[col].isna()
            predictors = [c for c in numeric if c != col]
            complete_data = dat_imputed[numeric].dropna()
            if not predictors or len(complete_data) < 2:
                logger.warning(f"Not enough complete cases to regress {col}; falling back to mean imputation.")
                dat_imputed[col] = dat_imputed[col].fillna(dat_imputed[col].mean()).fillna(0)
                continue
            model = LinearRegression().fit(complete_data[predictors], complete_data[col])
            X_missing = dat_imputed.loc[mask_missing, predictors]
            if X_missing.isna().any().any():
                X_missing = X_missing.fillna(dat_imputed[predictors].mean()).fillna(0)
            predictions = model.predict(X_missing)

            if self.noise is not None:
                residuals = complete_data[col].to_numpy() - model.predict(complete_data[predictors])
                if self.noise == 'normal':
                    predictions = predictions + rng.normal(0, np.std(residuals, ddof=1), len(predictions))
                else:
                    predictions = predictions + rng.choice(residuals, size=len(predictions), replace=True)

            dat_imputed.loc[mask_missing, col] = predictions
        return [dat_imputed]

    @property
    def name(self):
        if self.noise is None:
            return 'regression'
        return f'regression_{self.noise}_noise'


class HotDeckImputation(ImputationMethod):
    """Hot-deck imputation: every fill is an observed value of the same column.

    method='random' draws donors uniformly; method='pmm' uses predictive mean
    matching, drawing from the n_donors observed rows whose linear-model
    predictions are closest to the recipient's.
    """

    def __init__(self, method='pmm', n_donors=5):
        if method not in ('pmm', 'random'):
            raise ValueError(f"Unknown hot-deck method: {method!r}. Use 'pmm' or 'random'.")
        if n_donors < 1:
            raise ValueError(f"n_donors must be at least 1. Got {n_donors}.")
        self.method = method
        self.n_donors = n_donors

    def _pmm(self, data, col, predictors, rng):
        mask_obs = data[col].notna().to_numpy()
        X = _mean_filled(data[predictors])
        y_obs = data.loc[mask_obs, col].to_numpy()
        model = LinearRegression().fit(X[mask_obs], y_obs)
        yhat_obs = model.predict(X[mask_obs])
        yhat_mis = model.predict(X[~mask_obs])

        k = min(self.n_donors, len(y_obs))
        distances = np.abs(yhat_mis[:, None] - yhat_obs[None, :])
        donors = np.argpartition(distances, k - 1, axis=1)[:, :k]
        picks = donors[np.arange(len(yhat_mis)), rng.integers(0, k, len(yhat_mis))]
        return y_obs[picks]

    def impute(self, data, rng=None):
        if rng is None:
            rng = default_rng(123)
        dat_imputed = data.copy()
        numeric = numeric_columns(data)
        for col in _columns_to_impute(data):
            mask_missing = data[col].isna()
            observed = data.loc[~mask_missing, col].to_numpy()
            if len(observed) == 0:
                logger.warning(f"All values in {col} are NaN, no donors available; filling with 0")
                dat_imputed[col] = dat_imputed[col].fillna(0)
                continue
            predictors = [c for c in numeric if c != col]
            if self.method == 'pmm' and predictors and len(observed) >= 2:
                fills = self._pmm(data, col, predictors, rng)
            else:
                fills = rng.choice(observed, size=int(mask_missing.sum()), replace=True)
            dat_imputed.loc[mask_missing, col] = fills
        return [dat_imputed]

    @property
    def name(self):
        return f'hot_deck_{self.method}'


class EMImputation(ImputationMethod):
    """Expectation-maximisation under a multivariate normal model.

    Missing entries are replaced by their conditional expectation given the
    observed entries of the same row, using the converged mean and covariance.
    """

    def __init__(self, max_iter=100, tol=1e-6):
        if max_iter < 1:
            raise ValueError(f"max_iter must be at least 1. Got {max_iter}.")
        self.max_iter = max_iter
        self.tol = tol

    @staticmethod
    def _e_step(X, miss, mu, sigma):
        n, p = X.shape
        X_hat = X.copy()
        correction = np.zeros((p, p))
        patterns, inverse = np.unique(miss, axis=0, return_inverse=True)
        inverse = inverse.reshape(-1)
        for k, pattern in enumerate(patterns):
            if not pattern.any():
                continue
            rows = np.flatnonzero(inverse == k)
            m = pattern
            o = ~pattern
            sigma_mm = sigma[np.ix_(m, m)]
            if o.any():
                sigma_mo = sigma[np.ix_(m, o)]
                gain = sigma_mo @ np.linalg.pinv(sigma[np.ix_(o, o)])
                X_hat[np.ix_(rows, m)] = mu[m] + (X[np.ix_(rows, o)] - mu[o]) @ gain.T
                cond_cov = sigma_mm - gain @ sigma_mo.T
            else:
                X_hat[np.ix_(rows, m)] = mu[m]
                cond_cov = sigma_mm
            correction[np.ix_(m, m)] += len(rows) * cond_cov
        return X_hat, correction

    def estimate(self, data):
        """
        Run EM on the numeric columns.

        Returns:
        - mu: Estimated mean vector (Series)
        - sigma: Estimated covariance matrix (DataFrame)
        - X_hat: Array of conditional expectations
        - n_iter: Number of iterations performed
        """
        cols = numeric_columns(data)
        X = data[cols].to_numpy(dtype=float)
        miss = np.isnan(X)
        n = X.shape[0]

        mu = np.nanmean(X, axis=0)
        X_hat = np.where(miss, mu, X)
        sigma = np.cov(X_hat, rowvar=False, bias=True).reshape(len(cols), len(cols))

        n_iter = 0
        for n_iter in range(1, self.max_iter + 1):
            X_hat, correction = self._e_step(X, miss, mu, sigma)
            mu_new = X_hat.mean(axis=0)
            centered = X_hat - mu_new
            sigma_new = (centered.T @ centered + correction) / n
            delta = max(np.max(np.abs(mu_new - mu)), np.max(np.abs(sigma_new - sigma)))
            mu, sigma = mu_new, sigma_new
            if delta < self.tol:
                break
        else:
            logger.warning(f"EM did not converge within {self.max_iter} iterations (last change {delta:.3g}).")

        return (pd.Series(mu, index=cols), pd.DataFrame(sigma, index=cols, columns=cols), X_hat, n_iter)

    def impute(self, data, rng=None):
        dat_imputed = data.copy()
        to_impute = _columns_to_impute(data)
        if not to_impute:
            return [dat_imputed]

        cols = numeric_columns(data)
        empty = [col for col in cols if data[col].isna().all()]
        if empty:
            logger.warning(f"All values in {empty} are NaN, filling with 0 before EM")
            for col in empty:
                dat_imputed[col] = dat_imputed[col].fillna(0)

        _, _, X_hat, n_iter = self.estimate(dat_imputed)
        logger.debug(f"EM finished after {n_iter} iterations")
        filled = pd.DataFrame(X_hat, columns=cols, index=data.index)
        for col in to_impute:
            mask_missing = dat_imputed[col].isna()
            dat_imputed.loc[mask_missing, col] = filled.loc[mask_missing, col]
        return [dat_imputed]

    @property
    def name(self):
        return 'em'


class MultipleImputation(ImputationMethod):
    """Multiple imputation by chained equations with posterior sampling."""

    def __init__(self, m=5, max_iter=10):
        if m < 1:
            raise ValueError(f"m must be at least 1. Got {m}.")
        self.m = m
        self.max_iter = max_iter

    def impute(self, data, rng=None):
        if rng is None:
            rng = default_rng(123)
        cols = numeric_columns(data)
        dat_imputed_list = []
        imputation_rngs = rng.spawn(self.m)
        for i in tqdm(range(self.m), desc="Multiple Imputations", leave=False):
            imp = IterativeImputer(max_iter=self.max_iter, random_state=_child_seed(imputation_rngs[i]),
                                   sample_posterior=True, keep_empty_features=True)
            dat_imputed = data.copy()
            with warnings.catch_warnings():
                # Early-stopping notices are expected with few iterations
                warnings.filterwarnings('ignore', message='.*[Ee]arly stopping criterion not reached.*')
                X_imputed = imp.fit_transform(data[cols])
            dat_imputed[cols] = pd.DataFrame(X_imputed, columns=cols, index=data.index)
            dat_imputed_list.append(dat_imputed)
        return dat_imputed_list

    @property
    def name(self):
        return 'multiple_imputation'


def pool_estimates(estimates, variances):
    """
    Pool per-imputation estimates with Rubin's rules.

    Parameters:
    - estimates: Sequence of m estimates (scalars or arrays of equal shape)
    - variances: Sequence of m squared standard errors

    Returns:
    - dict with estimate, within_variance, between_variance, total_variance,
      fmi (fraction of missing information) and df (Rubin's degrees of freedom)
    """
    estimates = np.asarray(estimates, dtype=float)
    variances = np.asarray(variances, dtype=float)
    if estimates.shape != variances.shape:
        raise ValueError(f"estimates and variances must have the same shape. "
                         f"Got {estimates.shape} and {variances.shape}.")
    m = estimates.shape[0] if estimates.ndim else 0
    if m == 0:
        raise ValueError("At least one imputation is required to pool estimates.")

    pooled = estimates.mean(axis=0)
    within = variances.mean(axis=0)
    between = estimates.var(axis=0, ddof=1) if m > 1 else np.zeros_like(pooled)
    total = within + (1 + 1 / m) * between
    with np.errstate(divide='ignore', invalid='ignore'):
        fmi = np.where(total > 0, (1 + 1 / m) * between / total, 0.0)
        r = np.where(between > 0, within / ((1 + 1 / m) * between), np.inf)
        df = (m - 1) * (1 + r) ** 2
    return {
        'estimate': pooled,
        'within_variance': within,
        'between_variance': between,
        'total_variance': total,
        'fmi': fmi,
        'df': df,
    }


class GAMImputation(ImputationMethod):
    """Generalized additive model imputation with penalised cubic B-spline smooths.

    Each incomplete column is modelled on its max_predictors most correlated
    numeric columns.
    """

    def __init__(self, noise=False, max_predictors=3, min_observed=10, n_splines=6, alpha=1.0):
        if max_predictors < 1:
            raise ValueError(f"max_predictors must be at least 1. Got {max_predictors}.")
        self.noise = noise
        self.max_predictors = max_predictors
        self.min_observed = min_observed
        self.n_splines = n_splines
        self.alpha = alpha

    def find_predictors(self, data, target_col):
        """Numeric columns ranked by absolute pairwise-complete correlation with target_col."""
        candidates = [col for col in numeric_columns(data) if col != target_col]
        if not candidates:
            return []
        correlations = data[candidates].corrwith(data[target_col]).abs().dropna()
        return correlations.sort_values(ascending=False).index[:self.max_predictors].tolist()

    def _fit_predict(self, train, target_col, predictors, X_new):
        k = len(predictors)
        X_train = train[predictors].to_numpy(dtype=float)
        smoother = BSplines(X_train, df=[self.n_splines] * k, degree=[3] * k)
        model = GLMGam(train[target_col].to_numpy(dtype=float), exog=np.ones((len(train), 1)),
                       smoother=smoother, alpha=[self.alpha] * k)
        result = model.fit()
        # The spline basis is only defined inside the training range
        X_new = np.clip(X_new, X_train.min(axis=0), X_train.max(axis=0))
        predictions = np.asarray(result.predict(exog=np.ones((len(X_new), 1)), exog_smooth=X_new))
        return predictions, np.asarray(result.resid_response)

    def impute(self, data, rng=None):
        if rng is None:
            rng = default_rng(123)
        dat_imputed = data.copy()
        for col in _columns_to_impute(data):
            mask_missing = dat_imputed[col].isna()
            if (~mask_missing).sum() < self.min_observed:
                logger.warning(f"Skipping {col}: fewer than {self.min_observed} observed values for GAM.")
                continue
            predictors = self.find_predictors(dat_imputed, col)
            if not predictors:
                logger.warning(f"Skipping {col}: no numeric predictors available for GAM.")
                continue
            train = dat_imputed.loc[~mask_missing, [col] + predictors].dropna()
            X_new = dat_imputed.loc[mask_missing, predictors]
            X_new = X_new.fillna(dat_imputed[predictors].mean()).to_numpy(dtype=float)
            try:
                predictions, residuals = self._fit_predict(train, col, predictors, X_new)
            except Exception as e:
                logger.warning(f"Failed to impute {col}: {e}")
                continue

            if self.noise:
                predictions = predictions + rng.normal(0, np.std(residuals, ddof=1), len(predictions))
            dat_imputed.loc[mask_missing, col] = predictions
        return [dat_imputed]

    @property
    def name(self):
        return 'gam_noise' if self.noise else 'gam'


class RandomForestImputation(ImputationMethod):
    def __init__(self, noise=False, n_estimators=100):
        self.noise = noise
        self.n_estimators = n_estimators

    def impute(self, data, rng=None):
        if rng is None:
            rng = default_rng(123)
        dat_imputed = data.copy()
        numeric = numeric_columns(data)
        for col in _columns_to_impute(data):
            mask_missing = data[col].isna()
            predictors = [c for c in numeric if c != col]
            if not predictors or (~mask_missing).sum() == 0:
                logger.warning(f"Cannot fit a random forest for {col}; falling back to mean imputation.")
                dat_imputed[col] = dat_imputed[col].fillna(dat_imputed[col].mean()).fillna(0)
                continue
            X = _mean_filled(dat_imputed[predictors])
            X_train = X.loc[~mask_missing]
            y_train = data.loc[~mask_missing, col]
            model = RandomForestRegressor(n_estimators=self.n_estimators, random_state=_child_seed(rng, 10000))
            model.fit(X_train, y_train)
            imputed_values = model.predict(X.loc[mask_missing])

            if self.noise:
                residuals = y_train.to_numpy() - model.predict(X_train)
                imputed_values = imputed_values + rng.choice(residuals, size=len(imputed_values), replace=True)

            dat_imputed.loc[mask_missing, col] = imputed_values
        return [dat_imputed]

    @property
    def name(self):
        return 'random_forest_noise' if self.noise else 'random_forest'


class KNNImputation(ImputationMethod):
    def __init__(self, n_neighbors=5):
        self.n_neighbors = n_neighbors

    def impute(self, data, rng=None):
        dat_imputed = data.copy()
        cols = numeric_columns(data)
        if not _columns_to_impute(data):
            return [dat_imputed]
        imp = KNNImputer(n_neighbors=self.n_neighbors, keep_empty_features=True)
        dat_imputed[cols] = pd.DataFrame(imp.fit_transform(data[cols]), columns=cols, index=data.index)
        return [dat_imputed]

    @property
    def name(self):
        return 'knn'


METHOD_REGISTRY = {
    'listwise_deletion': ListwiseDeletion,
    'mean': partial(SimpleImputation, 'mean'),
    'median': partial(SimpleImputation, 'median'),
    'regression': RegressionImputation,
    'regression_normal_noise': partial(RegressionImputation, noise='normal'),
    'regression_empirical_noise': partial(RegressionImputation, noise='empirical'),
    'hot_deck_pmm': HotDeckImputation,
    'hot_deck_random': partial(HotDeckImputation, method='random'),
    'em': EMImputation,
    'multiple_imputation': MultipleImputation,
    'gam': GAMImputation,
    'gam_noise': partial(GAMImputation, noise=True),
    'random_forest': RandomForestImputation,
    'random_forest_noise': partial(RandomForestImputation, noise=True),
    'knn': KNNImputation,
}
