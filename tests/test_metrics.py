import logging

import pytest
import numpy as np
import pandas as pd
from numpy.random import default_rng

from imputation_study.metrics import (
    rmse, mae, wasserstein, jensen_shannon_divergence, compare_distributions,
    compare_imputed_to_original
)


@pytest.fixture
def normal_sample():
    return default_rng(0).normal(0, 1, 500)


def test_rmse_and_mae():
    assert rmse([0, 0, 0, 0], [1, -1, 1, -1]) == pytest.approx(1.0)
    assert mae([1, 2, 3], [2, 2, 5]) == pytest.approx(1.0)
    with pytest.raises(ValueError, match="same length"):
        rmse([1, 2], [1, 2, 3])


# ----------------------------------------------------------------------
# Wasserstein
# ----------------------------------------------------------------------
def test_wasserstein_identical_samples(normal_sample):
    assert wasserstein(normal_sample, normal_sample) == pytest.approx(0.0)


def test_wasserstein_shift(normal_sample):
    assert wasserstein(normal_sample, normal_sample + 2) == pytest.approx(2.0)


def test_wasserstein_drops_nans():
    assert wasserstein([1.0, 2.0, np.nan], [1.0, 2.0]) == pytest.approx(0.0)


def test_wasserstein_empty_sample():
    with pytest.raises(ValueError):
        wasserstein([np.nan, np.nan], [1.0, 2.0])


# ----------------------------------------------------------------------
# Jensen-Shannon
# ----------------------------------------------------------------------
def test_js_divergence_identical_samples(normal_sample):
    assert jensen_shannon_divergence(normal_sample, normal_sample) == pytest.approx(0.0, abs=1e-10)


def test_js_divergence_separated_samples(normal_sample):
    far = default_rng(1).normal(5, 1, 500)
    near = default_rng(1).normal(0.2, 1, 500)
    js_far = jensen_shannon_divergence(normal_sample, far)
    js_near = jensen_shannon_divergence(normal_sample, near)
    assert 0.5 < js_far <= 1.0
    assert js_near < js_far


def test_js_divergence_is_symmetric(normal_sample):
    other = default_rng(2).normal(1, 2, 300)
    assert jensen_shannon_divergence(normal_sample, other) == pytest.approx(
        jensen_shannon_divergence(other, normal_sample))


@pytest.mark.parametrize("sample", [[1.0, 1.0, 1.0], [3.0]])
def test_js_divergence_degenerate_samples(normal_sample, sample):
    with pytest.raises(ValueError):
        jensen_shannon_divergence(normal_sample, sample)


def test_compare_distributions_warns_on_constant_column(caplog):
    rng = default_rng(3)
    original = pd.DataFrame({'a': rng.normal(0, 1, 50), 'b': rng.normal(0, 1, 50)})
    imputed = original.assign(b=0.0)
    with caplog.at_level(logging.WARNING):
        scores = compare_distributions(original, imputed)
    assert list(scores.index) == ['a', 'b']
    assert scores.loc['a', 'wasserstein'] == pytest.approx(0.0)
    assert np.isnan(scores.loc['b', 'js_divergence'])
    assert scores.loc['b', 'wasserstein'] > 0
    assert any("JS divergence undefined for b" in record.message for record in caplog.records)


# ----------------------------------------------------------------------
# Cell-level comparison
# ----------------------------------------------------------------------
def test_compare_identical_frames():
    original = pd.DataFrame({'a': [1.0, 2.0, 3.0, 4.0], 'b': [2.0, 1.0, 4.0, 3.0]})
    result = compare_imputed_to_original(original, original.copy())
    assert result == {'mae': pytest.approx(0.0), 'rmse': pytest.approx(0.0), 'correlation': pytest.approx(1.0)}


def test_compare_with_mask():
    original = pd.DataFrame({'a': [1.0, 2.0, 3.0, 4.0]})
    imputed = pd.DataFrame({'a': [1.0, 4.0, 3.0, 6.0]})
    mask = pd.DataFrame({'a': [False, True, False, True]})
    result = compare_imputed_to_original(original, imputed, metrics=('mae', 'rmse'), mask=mask)
    assert result['mae'] == pytest.approx(2.0)
    assert result['rmse'] == pytest.approx(2.0)


def test_compare_series_input():
    original = pd.Series([1.0, 2.0, 3.0])
    result = compare_imputed_to_original(original, pd.Series([1.0, 2.0, 5.0]), metrics=('mae',))
    assert result['mae'] == pytest.approx(2 / 3)


def test_compare_skips_non_numeric_columns():
    original = pd.DataFrame({'a': [1.0, 2.0], 'label': ['x', 'y']})
    imputed = pd.DataFrame({'a': [2.0, 3.0], 'label': ['y', 'x']})
    result = compare_imputed_to_original(original, imputed, metrics=('mae',))
    assert result['mae'] == pytest.approx(1.0)


def test_compare_rejects_shape_mismatch():
    with pytest.raises(ValueError, match="same dimensions"):
        compare_imputed_to_original(pd.DataFrame({'a': [1.0, 2.0]}), pd.DataFrame({'a': [1.0]}))


def test_compare_rejects_unknown_metric():
    frame = pd.DataFrame({'a': [1.0, 2.0]})
    with pytest.raises(ValueError, match="Unknown metrics"):
        compare_imputed_to_original(frame, frame, metrics=('mape',))
