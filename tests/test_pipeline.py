"""
Unit tests for the heart failure pipeline components.
"""

import pytest
import pandas as pd
import numpy as np
from unittest.mock import patch

from heart_failure_ml.data_generation import HeartFailureDataGenerator
from heart_failure_ml.exceptions import (
    ConfigurationError, ConvergenceError, SchemaError, UnseenCategoryError
)

# Test data generation
from heart_failure_ml.config import CSV_COLUMNS, TARGET_COLUMN


class TestHeartFailureDataGenerator:
    """Test synthetic data generation."""

    def test_generate_dataset(self):
        """Test complete dataset generation."""
        df = HeartFailureDataGenerator(seed=42).generate_dataset(n_records=299, event_rate=0.32)

        assert list(df.columns) == CSV_COLUMNS
        assert len(df) == 299
        assert df[TARGET_COLUMN].sum() == round(299 * 0.32)
        assert not df.isnull().any().any()

    def test_reproducible(self):
        df1 = HeartFailureDataGenerator(seed=3).generate_dataset(n_records=50)
        df2 = HeartFailureDataGenerator(seed=3).generate_dataset(n_records=50)
        pd.testing.assert_frame_equal(df1, df2)

    def test_separable_dataset(self, separable_frame):
        """Outcome is exactly ejection_fraction > 50."""
        expected = (separable_frame['ejection_fraction'] > 50).astype(int)
        assert (separable_frame[TARGET_COLUMN] == expected).all()
        assert separable_frame[TARGET_COLUMN].sum() == 50

    def test_noise_dataset(self):
        df = HeartFailureDataGenerator(seed=1).generate_noise_dataset(n_records=200, event_rate=0.3)
        assert df[TARGET_COLUMN].sum() == 60


# Test loading
from heart_failure_ml.pipeline.data_loading import Dataset, DatasetSchema, load_dataset


class TestDataLoading:
    """Test fixed-schema loading."""

    def test_load_dataset(self, csv_path):
        dataset = load_dataset(csv_path)

        assert len(dataset) == 299
        assert tuple(dataset.frame.columns) == dataset.schema.columns
        assert dataset.frame['anaemia'].dtype == np.int64
        assert dataset.frame['age'].dtype == np.float64
        assert dataset.X.shape == (299, 12)

    def test_load_dataset_with_dask(self, csv_path):
        """Dask and pandas readers produce the same Dataset."""
        pandas_ds = load_dataset(csv_path)
        dask_ds = load_dataset(csv_path, use_dask=True)
        pd.testing.assert_frame_equal(pandas_ds.frame, dask_ds.frame)

    def test_missing_file(self, temp_directory):
        with pytest.raises(ConfigurationError):
            load_dataset(temp_directory / "missing.csv")

    def test_missing_column(self, heart_failure_frame):
        with pytest.raises(SchemaError):
            Dataset.from_frame(heart_failure_frame.drop(columns=['serum_sodium']))

    def test_unexpected_column(self, heart_failure_frame):
        df = heart_failure_frame.assign(cholesterol=200.0)
        with pytest.raises(SchemaError):
            Dataset.from_frame(df)

    def test_missing_value_is_configuration_error(self, heart_failure_frame):
        df = heart_failure_frame.copy()
        df.loc[3, 'platelets'] = np.nan
        with pytest.raises(ConfigurationError, match="platelets"):
            Dataset.from_frame(df)

    def test_flag_outside_binary(self, heart_failure_frame):
        df = heart_failure_frame.copy()
        df.loc[0, 'anaemia'] = 2
        with pytest.raises(ConfigurationError, match="anaemia"):
            Dataset.from_frame(df)

    def test_non_numeric_column(self, heart_failure_frame):
        df = heart_failure_frame.copy()
        df['sex'] = df['sex'].map({0: 'F', 1: 'M'})
        with pytest.raises(ConfigurationError):
            Dataset.from_frame(df)

    def test_x_and_y_are_copies(self, heart_failure_dataset):
        X = heart_failure_dataset.X
        X['age'] = 0.0
        assert (heart_failure_dataset.frame['age'] > 0).all()


# Test preprocessing
from heart_failure_ml.pipeline.preprocessing import (
    DataValidator, PreprocessingRecipe, RecipeParams, apply_recipe
)


class TestDataValidator:
    """Test data validation."""

    def test_clinical_rules(self):
        """Test clinical validation rules."""
        validator = DataValidator()
        validator.setup_clinical_rules(binary_features=['anaemia'], target=TARGET_COLUMN)

        df = pd.DataFrame({
            'age': [45, 150, 60],                   # One violation (150 > 120)
            'ejection_fraction': [38, -5, 20],      # One violation (-5 < 0)
            'anaemia': [0, 1, 3],                   # One violation (3 not in {0, 1})
            'serum_sodium': [136, np.nan, 140],     # One missing value
            TARGET_COLUMN: [0, 1, 0],
        })

        violations = validator.validate(df)

        assert set(violations) == {'age', 'ejection_fraction', 'anaemia', 'serum_sodium'}

    def test_range_overrides(self):
        validator = DataValidator()
        validator.setup_clinical_rules(ranges={'age': (40, 95)})
        violations = validator.validate(pd.DataFrame({'age': [30, 50]}))
        assert 'age' in violations


class TestPreprocessingRecipe:
    """Test the fit-once, apply-many recipe."""

    def test_output_schema(self, recipe, data_split):
        params = recipe.fit(data_split.train.X)
        transformed = apply_recipe(params, data_split.test.X)

        # 7 numeric + 5 flags x (two levels + other)
        assert len(params.output_columns) == 22
        assert list(transformed.columns) == list(params.output_columns)
        assert 'anaemia_0' in transformed.columns
        assert 'anaemia_1' in transformed.columns
        assert 'anaemia_other' in transformed.columns
        assert len(transformed) == len(data_split.test)
        assert (transformed.index == data_split.test.index).all()

    def test_standardization(self, heart_failure_dataset):
        recipe = PreprocessingRecipe(numeric_features=heart_failure_dataset.schema.numeric_features,
                                     power_transform=False)
        X = heart_failure_dataset.X
        transformed = recipe.apply(recipe.fit(X), X)

        np.testing.assert_allclose(transformed.mean().to_numpy(), 0.0, atol=1e-9)
        np.testing.assert_allclose(transformed.std(ddof=1).to_numpy(), 1.0, atol=1e-9)

    def test_power_transform_reduces_skew(self, heart_failure_dataset):
        recipe = PreprocessingRecipe(numeric_features=['creatinine_phosphokinase'])
        X = heart_failure_dataset.X
        transformed = apply_recipe(recipe.fit(X), X)
        assert abs(transformed['creatinine_phosphokinase_norm'].skew()) < abs(X['creatinine_phosphokinase'].skew())

    def test_apply_is_idempotent(self, recipe, data_split):
        params = recipe.fit(data_split.train.X)
        once = apply_recipe(params, data_split.test.X)
        twice = apply_recipe(params, once)

        pd.testing.assert_frame_equal(once, twice)

    def test_numeric_only_apply_is_idempotent_on_rebuilt_frame(self, heart_failure_dataset):
        """A transformed frame rebuilt from plain values is recognised by its columns."""
        recipe = PreprocessingRecipe(numeric_features=heart_failure_dataset.schema.numeric_features)
        X = heart_failure_dataset.X[list(heart_failure_dataset.schema.numeric_features)]
        params = recipe.fit(X)

        once = apply_recipe(params, X)
        rebuilt = pd.DataFrame(once.to_dict())
        twice = apply_recipe(params, rebuilt)

        assert not rebuilt.attrs
        np.testing.assert_allclose(twice.to_numpy(), once.to_numpy())
        assert list(twice.columns) == list(params.output_columns)

    def test_apply_does_not_mutate_input(self, recipe, data_split):
        X = data_split.test.X
        before = X.copy()
        apply_recipe(recipe.fit(data_split.train.X), X)
        pd.testing.assert_frame_equal(X, before)

    def test_no_leakage_from_test_rows(self, recipe, heart_failure_frame):
        """Recipe parameters are byte-identical whatever the Test rows contain."""
        from heart_failure_ml.pipeline.splitting import StratifiedSplitter

        splitter = StratifiedSplitter(train_fraction=0.75, n_folds=3, random_state=11)
        split = splitter.split(Dataset.from_frame(heart_failure_frame))

        altered = heart_failure_frame.copy()
        test_rows = split.test.index
        altered.loc[test_rows, 'age'] = 95.0
        altered.loc[test_rows, 'serum_creatinine'] = 9.0
        altered.loc[test_rows, 'smoking'] = 1
        altered_split = splitter.split(Dataset.from_frame(altered))

        assert (altered_split.train.index == split.train.index).all()
        assert recipe.fit(split.train.X).fingerprint() == recipe.fit(altered_split.train.X).fingerprint()

    def test_rare_levels_collapse_to_other(self):
        X = pd.DataFrame({'age': np.linspace(40, 90, 100), 'anaemia': [1] * 2 + [0] * 98})
        recipe = PreprocessingRecipe(numeric_features=['age'], categorical_features=['anaemia'])
        params = recipe.fit(X)

        assert params.vocabularies == (('0',),)
        assert params.collapsed_levels == (('1',),)
        transformed = apply_recipe(params, X)
        assert list(transformed.columns) == ['age_norm', 'anaemia_0', 'anaemia_other']
        assert transformed['anaemia_other'].sum() == 2

    def test_unseen_level_routes_to_other(self, recipe, data_split):
        params = recipe.fit(data_split.train.X)
        X = data_split.test.X.head(3).copy()
        X['anaemia'] = 7

        transformed = apply_recipe(params, X)

        assert (transformed['anaemia_other'] == 1.0).all()
        assert (transformed['anaemia_0'] == 0.0).all()
        assert (transformed['anaemia_1'] == 0.0).all()

    def test_unseen_level_error_policy(self, heart_failure_dataset):
        schema = heart_failure_dataset.schema
        recipe = PreprocessingRecipe(numeric_features=schema.numeric_features,
                                     categorical_features=schema.binary_features,
                                     unseen_policy='error')
        params = recipe.fit(heart_failure_dataset.X)
        X = heart_failure_dataset.X.head(3).copy()
        X['smoking'] = 5

        with pytest.raises(UnseenCategoryError):
            apply_recipe(params, X)

    def test_missing_column(self, recipe, data_split):
        params = recipe.fit(data_split.train.X)
        with pytest.raises(SchemaError):
            apply_recipe(params, data_split.test.X.drop(columns=['time']))

    def test_params_serialization(self, recipe, data_split):
        params = recipe.fit(data_split.train.X)
        restored = RecipeParams.from_dict(params.to_dict())

        assert restored == params
        assert restored.fingerprint() == params.fingerprint()

    def test_invalid_configuration(self):
        with pytest.raises(ConfigurationError):
            PreprocessingRecipe(numeric_features=['age'], unseen_policy='ignore')
        with pytest.raises(ConfigurationError):
            PreprocessingRecipe(numeric_features=['age'], categorical_features=['age'])


# Test splitting
from heart_failure_ml.pipeline.splitting import StratifiedSplitter


class TestStratifiedSplitter:
    """Test stratified train/test split and folds."""

    @pytest.mark.parametrize("fraction", [0.5, 0.6, 0.75, 0.9])
    def test_partition_covers_dataset(self, heart_failure_dataset, fraction):
        split = StratifiedSplitter(train_fraction=fraction, n_folds=3).split(heart_failure_dataset)

        assert len(split.train) + len(split.test) == len(heart_failure_dataset)
        assert len(split.train.index.intersection(split.test.index)) == 0
        assert set(split.train.index) | set(split.test.index) == set(heart_failure_dataset.index)

    def test_deterministic(self, heart_failure_dataset):
        split1 = StratifiedSplitter(random_state=5).split(heart_failure_dataset)
        split2 = StratifiedSplitter(random_state=5).split(heart_failure_dataset)
        split3 = StratifiedSplitter(random_state=6).split(heart_failure_dataset)

        assert (split1.train.index == split2.train.index).all()
        assert (split1.test.index == split2.test.index).all()
        for f1, f2 in zip(split1.folds, split2.folds):
            np.testing.assert_array_equal(f1.validation_positions, f2.validation_positions)
        assert set(split1.test.index) != set(split3.test.index)

    def test_stratified(self, heart_failure_dataset, data_split):
        overall = heart_failure_dataset.prevalence
        assert abs(data_split.train.prevalence - overall) < 0.02
        assert abs(data_split.test.prevalence - overall) < 0.03

    def test_folds_partition_train(self, data_split):
        assert data_split.n_folds == 3
        n_train = len(data_split.train)
        validation = np.concatenate([fold.validation_positions for fold in data_split.folds])

        assert sorted(validation) == list(range(n_train))
        for fold in data_split.folds:
            assert len(fold.train_positions) + len(fold.validation_positions) == n_train
            assert len(np.intersect1d(fold.train_positions, fold.validation_positions)) == 0

    def test_too_many_folds(self, heart_failure_dataset):
        with pytest.raises(ConfigurationError):
            StratifiedSplitter(n_folds=100).split(heart_failure_dataset)

    @pytest.mark.parametrize("fraction", [0.0, 1.0, 1.5])
    def test_invalid_fraction(self, heart_failure_dataset, fraction):
        with pytest.raises(ConfigurationError):
            StratifiedSplitter(train_fraction=fraction).split(heart_failure_dataset)

    def test_single_class(self, heart_failure_frame):
        df = heart_failure_frame.assign(**{TARGET_COLUMN: 0})
        with pytest.raises(ConfigurationError):
            StratifiedSplitter().split(Dataset.from_frame(df))


# Test model specs
from heart_failure_ml.pipeline.model_specs import (
    HyperparameterGrid, LogisticRegressionSpec, RandomForestSpec
)


class TestModelSpecs:
    """Test model specifications and grids."""

    def test_logistic_regression_build(self):
        model = LogisticRegressionSpec(penalty=0.5, mixture=0.25).build(random_state=1)
        assert model.C == pytest.approx(2.0)
        assert model.l1_ratio == 0.25
        assert model.solver == 'saga'

    def test_invalid_logistic_regression(self):
        with pytest.raises(ConfigurationError):
            LogisticRegressionSpec(penalty=0.0)
        with pytest.raises(ConfigurationError):
            LogisticRegressionSpec(mixture=1.5)

    def test_random_forest_build(self):
        model = RandomForestSpec(mtry=10, min_node_size=1, tree_count=20).build(n_features=4)
        assert model.n_estimators == 20
        assert model.max_features == 4
        assert model.min_samples_split == 2

    def test_grid_order(self):
        """First axis varies slowest."""
        grid = HyperparameterGrid.from_config('logistic_regression', {
            'max_iter': 300,
            'grid': {'penalty': [0.1, 1.0], 'mixture': [0.0, 0.5]},
        })

        assert len(grid) == 4
        assert [spec.params() for spec in grid] == [
            {'penalty': 0.1, 'mixture': 0.0},
            {'penalty': 0.1, 'mixture': 0.5},
            {'penalty': 1.0, 'mixture': 0.0},
            {'penalty': 1.0, 'mixture': 0.5},
        ]
        assert all(spec.max_iter == 300 for spec in grid)

    def test_log_scale_axis(self):
        grid = HyperparameterGrid.from_config('logistic_regression', {
            'grid': {'penalty': {'log_start': -2, 'log_stop': 0, 'levels': 3}, 'mixture': [0.0]},
        })
        np.testing.assert_allclose([spec.penalty for spec in grid], [0.01, 0.1, 1.0])

    def test_unknown_family(self):
        with pytest.raises(ConfigurationError):
            HyperparameterGrid.from_config('svm', {'grid': {'C': [1.0]}})

    def test_invalid_value_in_grid(self):
        with pytest.raises(ConfigurationError):
            HyperparameterGrid.from_config('random_forest', {'grid': {'mtry': [0, 2]}})

    def test_unknown_hyperparameter(self):
        with pytest.raises(ConfigurationError):
            HyperparameterGrid.from_config('random_forest', {'grid': {'max_depth': [3]}})


# Test training
from heart_failure_ml.pipeline.training import ModelTrainer


def _small_grid(family='logistic_regression'):
    if family == 'logistic_regression':
        return HyperparameterGrid.from_config(family, {
            'grid': {'penalty': [0.1, 1.0], 'mixture': [0.0, 0.5]},
        })
    return HyperparameterGrid.from_config(family, {
        'tree_count': 25,
        'grid': {'mtry': [2, 4], 'min_node_size': [5]},
    })


class TestModelTrainer:
    """Test grid search, selection and refit."""

    def test_fit_logistic_regression(self, recipe, data_split):
        result = ModelTrainer(_small_grid(), recipe).fit(data_split.train, data_split.folds)

        assert len(result.trials) == 4 * 3
        assert list(result.summary.columns) == ['penalty', 'mixture', 'mean_score', 'std_score', 'n_failed']
        assert result.best_score == pytest.approx(result.summary['mean_score'].max())
        assert len(result.fold_predictions) == 3
        assert result.model.name == 'logistic_regression'
        assert result.model.recipe_params.output_columns[:7] == tuple(
            f"{feature}_norm" for feature in data_split.train.schema.numeric_features
        )

    def test_fit_random_forest(self, recipe, data_split):
        result = ModelTrainer(_small_grid('random_forest'), recipe).fit(data_split.train, data_split.folds)

        probabilities = result.model.predict_proba(data_split.test.X)
        assert probabilities.shape == (len(data_split.test),)
        assert ((probabilities >= 0) & (probabilities <= 1)).all()

    def test_select_best_breaks_ties_by_order(self):
        summary = pd.DataFrame({'mean_score': [0.8, 0.9, 0.9], 'n_failed': [0, 0, 0]})
        assert ModelTrainer.select_best(summary) == 1

    def test_select_best_skips_failed_combinations(self):
        summary = pd.DataFrame({'mean_score': [0.95, 0.9, np.nan], 'n_failed': [1, 0, 3]})
        assert ModelTrainer.select_best(summary) == 1

    def test_select_best_all_failed(self):
        summary = pd.DataFrame({'mean_score': [np.nan, np.nan], 'n_failed': [3, 3]})
        with pytest.raises(ConvergenceError):
            ModelTrainer.select_best(summary)

    def test_non_converged_combinations_are_excluded(self, recipe, data_split):
        """A combination whose solver fails is recorded as NaN and never selected."""
        real_check = LogisticRegressionSpec.check_convergence

        def fail_small_penalty(spec, estimator):
            if spec.penalty == 0.1:
                raise ConvergenceError("did not converge")
            return real_check(spec, estimator)

        with patch.object(LogisticRegressionSpec, 'check_convergence', autospec=True,
                          side_effect=fail_small_penalty):
            result = ModelTrainer(_small_grid(), recipe).fit(data_split.train, data_split.folds)

        failed = result.trials[result.trials['penalty'] == 0.1]
        assert failed['score'].isna().all()
        assert failed['error'].notna().all()
        assert (result.summary.loc[result.summary['penalty'] == 0.1, 'n_failed'] == 3).all()
        assert result.best_params['penalty'] == 1.0

    def test_all_combinations_fail(self, recipe, data_split):
        grid = HyperparameterGrid.from_config('logistic_regression', {
            'max_iter': 1,
            'grid': {'penalty': [1.0], 'mixture': [0.5]},
        })
        with pytest.raises(ConvergenceError):
            ModelTrainer(grid, recipe).fit(data_split.train, data_split.folds)

    def test_schedulers_agree(self, recipe, data_split):
        """Sequential and threaded evaluation give the same trial table."""
        sequential = ModelTrainer(_small_grid('random_forest'), recipe, scheduler='synchronous')
        threaded = ModelTrainer(_small_grid('random_forest'), recipe, scheduler='threads')

        seq_result = sequential.fit(data_split.train, data_split.folds)
        thr_result = threaded.fit(data_split.train, data_split.folds)

        np.testing.assert_allclose(seq_result.trials['score'], thr_result.trials['score'])
        assert seq_result.best_params == thr_result.best_params

    def test_smote_step(self, recipe, data_split):
        trainer = ModelTrainer(_small_grid('random_forest'), recipe, imbalance={'method': 'smote'})
        result = trainer.fit(data_split.train, data_split.folds)
        assert 'smote' in result.model.pipeline.named_steps

    def test_estimator_errors_fail_only_their_trial(self, recipe, data_split):
        """A ValueError raised while fitting one combination is recorded, the search carries on."""
        real_check = RandomForestSpec.check_convergence

        def fail_small_mtry(spec, estimator):
            if spec.mtry == 2:
                raise ValueError("Expected n_neighbors <= n_samples_fit")
            return real_check(spec, estimator)

        with patch.object(RandomForestSpec, 'check_convergence', autospec=True,
                          side_effect=fail_small_mtry):
            result = ModelTrainer(_small_grid('random_forest'), recipe).fit(data_split.train, data_split.folds)

        failed = result.trials[result.trials['mtry'] == 2]
        assert failed['score'].isna().all()
        assert failed['error'].str.contains('n_neighbors').all()
        assert result.best_params['mtry'] == 4

    def test_smote_on_folds_with_too_few_minority_rows(self):
        """SMOTE neighbours exceeding a fold's minority rows fail those trials instead of crashing the search."""
        frame = HeartFailureDataGenerator(seed=3).generate_dataset(n_records=40, event_rate=0.25)
        dataset = Dataset.from_frame(frame)
        split = StratifiedSplitter(train_fraction=0.75, n_folds=3, random_state=42).split(dataset)
        recipe = PreprocessingRecipe(numeric_features=dataset.schema.numeric_features,
                                     categorical_features=dataset.schema.binary_features)
        # At most 6 events remain in any fold's training rows; k_neighbors=6 needs 7
        trainer = ModelTrainer(_small_grid('random_forest'), recipe,
                               imbalance={'method': 'smote', 'smote': {'k_neighbors': 6}})

        trials = trainer.evaluate_grid(split.train, split.folds)

        assert len(trials) == 2 * 3
        assert all(trial.failed for trial in trials)
        assert all(np.isnan(trial.score) for trial in trials)
        with pytest.raises(ConvergenceError):
            trainer.fit(split.train, split.folds)

    def test_schema_mismatch(self, recipe, data_split):
        result = ModelTrainer(_small_grid(), recipe).fit(data_split.train, data_split.folds)
        with pytest.raises(SchemaError):
            result.model.predict_proba(data_split.test.X.drop(columns=['smoking']))
        with pytest.raises(SchemaError):
            result.model.predict(data_split.test.X.assign(cholesterol=1.0))

    def test_invalid_scoring(self, recipe):
        with pytest.raises(ConfigurationError):
            ModelTrainer(_small_grid(), recipe, scoring='log_loss')
