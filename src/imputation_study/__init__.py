"""Simulation study of missing-data mechanisms and imputation techniques.

This package provides synthetic data generators, missingness injectors (MCAR,
MAR, MNAR), deletion and imputation methods, and the metrics used to score an
imputation against ground truth (Wasserstein distance, Jensen-Shannon
divergence, cell errors and downstream model performance).

Basic Usage
-----------
>>> from imputation_study import SimulationStudy, MCARPattern, SimpleImputation
>>>
>>> study = SimulationStudy(n_samples=200, num_runs=1, seed=123)
>>> results = study.run_scenario(MCARPattern(prop_missing=0.2), SimpleImputation('mean'))
>>> print(results)

Modules
-------
data_generators : Synthetic complete data
missingness_patterns : Missingness injection classes and diagnostics
imputation_methods : Deletion and imputation method classes
metrics : Distributional and cell-level comparison metrics
evaluator : Downstream model performance
simulator : Study orchestration
run_simulation : Configured full factorial runner
"""

from .data_generators import (
    synthetic_dataset_gen,
    generate_random_data,
    generate_linear_data,
    generate_cluster_data,
    train_test_split_data
)
from .missingness_patterns import (
    MissingnessPattern,
    MCARPattern,
    MARPattern,
    MNARPattern,
    MixedPattern,
    summarize_missing,
    missingness_indicator_test
)
from .imputation_methods import (
    ImputationMethod,
    ListwiseDeletion,
    pairwise_deletion,
    SimpleImputation,
    RegressionImputation,
    HotDeckImputation,
    EMImputation,
    MultipleImputation,
    pool_estimates,
    GAMImputation,
    RandomForestImputation,
    KNNImputation
)
from .metrics import (
    wasserstein,
    jensen_shannon_divergence,
    compare_distributions,
    compare_imputed_to_original
)
from .evaluator import evaluate_model_performance
from .simulator import SimulationStudy, summarize_results

__version__ = '1.0.0'

__all__ = [
    # Data generation
    'synthetic_dataset_gen',
    'generate_random_data',
    'generate_linear_data',
    'generate_cluster_data',
    'train_test_split_data',

    # Abstract base classes
    'MissingnessPattern',
    'ImputationMethod',

    # Missingness
    'MCARPattern',
    'MARPattern',
    'MNARPattern',
    'MixedPattern',
    'summarize_missing',
    'missingness_indicator_test',

    # Deletion and imputation
    'ListwiseDeletion',
    'pairwise_deletion',
    'SimpleImputation',
    'RegressionImputation',
    'HotDeckImputation',
    'EMImputation',
    'MultipleImputation',
    'pool_estimates',
    'GAMImputation',
    'RandomForestImputation',
    'KNNImputation',

    # Metrics and evaluation
    'wasserstein',
    'jensen_shannon_divergence',
    'compare_distributions',
    'compare_imputed_to_original',
    'evaluate_model_performance',
    'SimulationStudy',
    'summarize_results',
]
