import pytest
import numpy as np
import pandas as pd
from numpy.random import default_rng

from imputation_study.data_generators import synthetic_dataset_gen
from imputation_study.missingness_patterns import (
    MCARPattern, MARPattern, MNARPattern, MixedPattern, PATTERN_REGISTRY,
    summarize_missing, missingness_indicator_test
)


@pytest.fixture
def complete_data():
    """100 x 5 complete numeric frame."""
    return synthetic_dataset_gen(100, 4, rng=default_rng(7))


# ----------------------------------------------------------------------
# MCAR
# ----------------------------------------------------------------------
def test_mcar_exact_cell_count(complete_data):
    dat_miss = MCARPattern(prop_missing=0.2).apply(complete_data, rng=default_rng(1))
    assert dat_miss.isna().sum().sum() == 100, "MCAR should blank exactly round(cells * prop) cells"
    assert dat_miss.shape == complete_data.shape


def test_mcar_respects_excluded_columns(complete_data):
    dat_miss = MCARPattern(prop_missing=0.2, exclude_cols=['target']).apply(complete_data, rng=default_rng(1))
    assert dat_miss['target'].notna().all()
    assert dat_miss.isna().sum().sum() == 80


def test_mcar_does_not_mutate_input(complete_data):
    before = complete_data.copy()
    MCARPattern(prop_missing=0.5).apply(complete_data, rng=default_rng(2))
    pd.testing.assert_frame_equal(complete_data, before)


def test_mcar_keeps_observed_values(complete_data):
    dat_miss = MCARPattern(prop_missing=0.3).apply(complete_data, rng=default_rng(3))
    observed = dat_miss.notna()
    np.testing.assert_array_equal(dat_miss.to_numpy()[observed.to_numpy()],
                                  complete_data.to_numpy()[observed.to_numpy()])


def test_mcar_zero_proportion_is_noop(complete_data):
    dat_miss = MCARPattern(prop_missing=0.0).apply(complete_data, rng=default_rng(3))
    pd.testing.assert_frame_equal(dat_miss, complete_data)


@pytest.mark.parametrize("prop", [-0.1, 1.5])
def test_patterns_reject_out_of_range_proportions(prop):
    with pytest.raises(ValueError, match="between 0 and 1"):
        MCARPattern(prop_missing=prop)
    with pytest.raises(ValueError, match="between 0 and 1"):
        MARPattern(prop_missing=prop)
    with pytest.raises(ValueError, match="between 0 and 1"):
        MNARPattern(prop_missing=prop)
    with pytest.raises(ValueError, match="between 0 and 1"):
        MixedPattern(prop_missing_total=prop)


def test_mcar_unknown_excluded_column(complete_data):
    with pytest.raises(KeyError):
        MCARPattern(exclude_cols=['nope']).apply(complete_data)


# ----------------------------------------------------------------------
# MAR
# ----------------------------------------------------------------------
def test_mar_blanks_rows_above_predictor_quantile(complete_data):
    pattern = MARPattern(prop_missing=0.5, predictor_cols=['X1'], target_cols=['X2', 'X3', 'X4', 'target'])
    dat_miss = pattern.apply(complete_data, rng=default_rng(4))

    assert dat_miss['X1'].notna().all(), "The predictor of missingness must stay observed"
    affected = [col for col in dat_miss.columns if dat_miss[col].isna().any()]
    assert len(affected) == 2

    trigger = complete_data['X1'] > complete_data['X1'].quantile(0.7)
    for col in affected:
        pd.testing.assert_series_equal(dat_miss[col].isna(), trigger, check_names=False)


def test_mar_defaults_to_first_numeric_predictor(complete_data):
    dat_miss = MARPattern(prop_missing=0.25).apply(complete_data, rng=default_rng(5))
    assert dat_miss['X1'].notna().all()
    assert dat_miss.isna().any().sum() == 1


def test_mar_small_proportion_rounds_to_no_columns():
    rng = default_rng(5)
    data = pd.DataFrame(rng.normal(0, 1, size=(100, 4)), columns=['a', 'b', 'c', 'd'])
    # round(3 * 0.1) == 0 target columns
    dat_miss = MARPattern(prop_missing=0.1).apply(data, rng=default_rng(6))
    assert dat_miss.isna().sum().sum() == 0
    pd.testing.assert_frame_equal(dat_miss, data)


def test_mar_categorical_predictor():
    rng = default_rng(6)
    data = pd.DataFrame({
        'group': rng.choice(['a', 'b', 'c', 'd'], 200),
        'value': rng.normal(0, 1, 200),
    })
    pattern = MARPattern(prop_missing=1.0, predictor_cols=['group'], target_cols=['value'])
    dat_miss = pattern.apply(data, rng=default_rng(7))

    blanked_levels = set(data.loc[dat_miss['value'].isna(), 'group'])
    assert len(blanked_levels) == 2
    assert dat_miss.loc[data['group'].isin(blanked_levels), 'value'].isna().all()
    assert dat_miss.loc[~data['group'].isin(blanked_levels), 'value'].notna().all()


# ----------------------------------------------------------------------
# MNAR
# ----------------------------------------------------------------------
def test_mnar_blanks_values_above_own_quantile(complete_data):
    dat_miss = MNARPattern(prop_missing=0.2, threshold_quantile=0.7).apply(complete_data, rng=default_rng(8))
    affected = [col for col in dat_miss.columns if dat_miss[col].isna().any()]
    assert len(affected) == 1, "max(1, round(5 * 0.2)) columns should be affected"

    col = affected[0]
    expected = complete_data[col] > complete_data[col].quantile(0.7)
    pd.testing.assert_series_equal(dat_miss[col].isna(), expected, check_names=False)
    assert dat_miss[col].max() <= complete_data[col].quantile(0.7)


def test_mnar_affects_at_least_one_column(complete_data):
    dat_miss = MNARPattern(prop_missing=0.01).apply(complete_data, rng=default_rng(8))
    assert dat_miss.isna().any().sum() == 1


# ----------------------------------------------------------------------
# Mixed
# ----------------------------------------------------------------------
def test_mixed_pattern_normalises_weights():
    pattern = MixedPattern(prop_missing_total=0.2, pattern_weights={'MCAR': 2, 'MAR': 1, 'MNAR': 1})
    assert sum(pattern.pattern_weights.values()) == pytest.approx(1.0)
    assert pattern.pattern_weights['MCAR'] == pytest.approx(0.5)


@pytest.mark.parametrize("weights", [
    {'MCAR': -1, 'MAR': 1, 'MNAR': 1},
    {'MCAR': 0, 'MAR': 0, 'MNAR': 0},
    {'MCAR': 1, 'OTHER': 1},
])
def test_mixed_pattern_rejects_bad_weights(weights):
    with pytest.raises(ValueError):
        MixedPattern(pattern_weights=weights)


def test_mixed_pattern_introduces_missingness(complete_data):
    before = complete_data.copy()
    dat_miss = MixedPattern(prop_missing_total=0.3).apply(complete_data, rng=default_rng(9))
    assert dat_miss.isna().sum().sum() > 0
    pd.testing.assert_frame_equal(complete_data, before)


def test_mixed_pattern_skips_zero_share(complete_data):
    only_mcar = MixedPattern(prop_missing_total=0.2, pattern_weights={'MCAR': 1, 'MAR': 0, 'MNAR': 0})
    dat_miss = only_mcar.apply(complete_data, rng=default_rng(9))
    assert dat_miss.isna().sum().sum() == 100


def test_mixed_pattern_small_mar_share_adds_nothing():
    rng = default_rng(11)
    data = pd.DataFrame(rng.normal(0, 1, size=(100, 4)), columns=['a', 'b', 'c', 'd'])
    only_mar = MixedPattern(prop_missing_total=0.1, pattern_weights={'MCAR': 0, 'MAR': 1, 'MNAR': 0})
    dat_miss = only_mar.apply(data, rng=default_rng(12))
    assert dat_miss.isna().sum().sum() == 0


def test_pattern_registry_names():
    for name, cls in PATTERN_REGISTRY.items():
        assert cls().name == name


# ----------------------------------------------------------------------
# Summaries and diagnostics
# ----------------------------------------------------------------------
def test_summarize_missing():
    data = pd.DataFrame({'a': [1, np.nan, 3], 'b': [4, 5, np.nan]})
    summary = summarize_missing(data)
    assert summary['total_missing'] == 2
    assert summary['overall_proportion'] == pytest.approx(2 / 6)
    assert summary['complete_cases'] == 1
    assert summary['incomplete_cases'] == 2
    assert summary['column_proportions']['a'] == pytest.approx(1 / 3)


def test_missingness_indicator_test_detects_mar():
    rng = default_rng(10)
    n = 600
    data = pd.DataFrame({'X1': rng.normal(0, 1, n), 'X2': rng.normal(0, 1, n), 'X3': rng.normal(0, 1, n)})
    probs = 1 / (1 + np.exp(-(-1.0 + 2.0 * data['X1'])))
    data['X2'] = data['X2'].mask(rng.uniform(size=n) < probs)

    result = missingness_indicator_test(data, 'X2', ['X1', 'X3'])
    assert result['llr_pvalue'] < 0.001
    assert 'X1' in result['significant_predictors']
    assert 0 < result['pseudo_r2'] < 1


def test_missingness_indicator_test_requires_partial_missingness(complete_data):
    with pytest.raises(ValueError, match="partially missing"):
        missingness_indicator_test(complete_data, 'X1', ['X2'])
