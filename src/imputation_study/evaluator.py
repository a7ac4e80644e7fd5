"""Evaluation of imputation quality.

This module provides functions to evaluate the utility of imputed datasets
by training downstream prediction models on imputed training data and
evaluating them on complete test data.
"""

import numpy as np
import pandas as pd
from sklearn.linear_model import LinearRegression, LogisticRegression
import logging

logger = logging.getLogger(__name__)

# ============================================================================
# NUMERICAL STABILITY FUNCTIONS
# ============================================================================

def stable_log_loss(y_true, y_pred_proba, eps=1e-15, labels=None):
    """
    Compute log loss with numerical stability.

    Uses clipping to prevent log(0) and log(1) issues. A 1-D probability
    vector is treated as P(y=1) for binary labels; a 2-D array holds one
    column per class in the order given by `labels`.

    Parameters:
    -----------
    y_true : array-like
        True labels
    y_pred_proba : array-like
        Predicted probabilities
    eps : float
        Small value for clipping probabilities
    labels : array-like, optional
        Class labels matching the columns of a 2-D y_pred_proba

    Returns:
    --------
    float : Log loss value
    """
    y_true = np.asarray(y_true)
    y_pred_proba = np.clip(np.asarray(y_pred_proba, dtype=np.float64), eps, 1 - eps)
    if y_pred_proba.ndim == 1:
        return -np.mean(y_true * np.log(y_pred_proba) + (1 - y_true) * np.log(1 - y_pred_proba))

    if labels is None:
        labels = np.arange(y_pred_proba.shape[1])
    y_pred_proba = y_pred_proba / y_pred_proba.sum(axis=1, keepdims=True)
    label_index = {label: i for i, label in enumerate(labels)}
    picked = np.array([
        y_pred_proba[row, label_index[label]] if label in label_index else eps
        for row, label in enumerate(y_true)
    ])
    return -np.mean(np.log(picked))

def stable_variance(values, ddof=0):
    """
    Compute variance with numerical stability using two-pass algorithm.

    Parameters:
    -----------
    values : array-like
        Array of values
    ddof : int
        Delta degrees of freedom (0 for population variance, 1 for sample)

    Returns:
    --------
    float : Variance value
    """
    if len(values) <= 1:
        return 0.0

    values = np.asarray(values, dtype=np.float64)
    mean_val = np.mean(values)
    # Two-pass algorithm for numerical stability
    variance = np.mean((values - mean_val) ** 2)

    if ddof > 0 and len(values) > ddof:
        variance = variance * len(values) / (len(values) - ddof)

    return float(variance)

def stable_std(values, ddof=0):
    """Standard deviation built on stable_variance."""
    variance = stable_variance(values, ddof=ddof)
    return np.sqrt(max(0.0, variance))

def _summarize(metrics, name, values, n_imputations):
    if values:
        metrics[f'{name}_mean'] = float(np.mean(values))
        metrics[f'{name}_std'] = stable_std(values, ddof=0) if n_imputations > 1 else 0.0

def evaluate_model_performance(imputed_list, test_data, target='target', task='regression'):
    """
    Evaluate the utility of imputed data using a downstream prediction model
    (LinearRegression for regression, LogisticRegression for classification)
    evaluated on complete test data.

    Args:
        imputed_list (list): List of imputed TRAINING DataFrames.
        test_data (pd.DataFrame): Complete TEST Data (Ground Truth).
        target (str): Column name of the outcome.
        task (str): 'regression' or 'classification'.

    Returns:
        dict: Evaluation metrics averaged across imputations. Regression yields
        rmse_mean/rmse_std/mae_mean/mae_std, classification yields
        accuracy_mean/accuracy_std/log_loss_mean/log_loss_std.
    """
    if task not in ('regression', 'classification'):
        raise ValueError(f"Unknown task: {task!r}. Use 'regression' or 'classification'.")
    metrics = {}
    n_imputations = len(imputed_list)

    if n_imputations == 0:
        logger.warning("No imputations provided, returning empty metrics.")
        return metrics

    if target not in test_data.columns:
        raise KeyError(f"Target column {target!r} not found in test data.")
    predictors = [col for col in test_data.columns
                  if col != target and pd.api.types.is_numeric_dtype(test_data[col])]

    X_test = test_data[predictors].to_numpy(dtype=np.float64)
    y_test = test_data[target].to_numpy()
    if np.isnan(X_test).any():
        logger.warning("NaNs detected in X_test. Skipping evaluation.")
        return metrics

    rmse_values, mae_values = [], []
    accuracy_values, log_loss_values = [], []

    for imputed_train in imputed_list:
        if len(imputed_train) < 2:
            logger.warning("Fewer than two training rows in imputed data. Skipping this imputation.")
            continue
        X_train = imputed_train[predictors].to_numpy(dtype=np.float64)
        y_train = imputed_train[target].to_numpy()

        if np.isnan(X_train).any() or pd.isna(y_train).any():
            logger.warning("NaNs detected in imputed training data. Skipping this imputation run.")
            continue

        if task == 'regression':
            model = LinearRegression()
            model.fit(X_train, y_train)
            y_pred = model.predict(X_test)
            rmse_values.append(np.sqrt(np.mean((y_test - y_pred) ** 2)))
            mae_values.append(np.mean(np.abs(y_test - y_pred)))
        else:
            if len(np.unique(y_train)) < 2:
                logger.warning("Only one class present in imputed training data. Skipping this imputation run.")
                continue
            model = LogisticRegression(random_state=123, max_iter=1000)
            try:
                model.fit(X_train, y_train)
            except ValueError as e:
                logger.error(f"LogisticRegression fit failed: {e}")
                continue
            accuracy_values.append(np.mean(model.predict(X_test) == y_test))
            log_loss_values.append(stable_log_loss(y_test, model.predict_proba(X_test), labels=model.classes_))

    _summarize(metrics, 'rmse', rmse_values, n_imputations)
    _summarize(metrics, 'mae', mae_values, n_imputations)
    _summarize(metrics, 'accuracy', accuracy_values, n_imputations)
    _summarize(metrics, 'log_loss', log_loss_values, n_imputations)
    return metrics
