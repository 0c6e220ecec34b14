"""
Unit tests for data loading and preprocessing modules.
"""

import unittest
import tempfile
import pandas as pd
import numpy as np
import sys
from pathlib import Path

# Add src to path
sys.path.append(str(Path(__file__).parent.parent / "src"))

from anxiety_bcf import config
from anxiety_bcf.data.loader import TrialDataLoader
from anxiety_bcf.data.preprocessor import TrialPreprocessor, ModelInputs, derived_column_names


def make_trial_frame(n_samples=60, seed=0):
    """Synthetic trial data following the documented schema."""
    rng = np.random.default_rng(seed)
    return pd.DataFrame({
        'participant_id': np.arange(n_samples),
        'treatment': rng.integers(0, 2, n_samples),
        'anxiety': rng.normal(10, 3, n_samples),
        'age': rng.integers(18, 65, n_samples),
        'gender': rng.choice(['female', 'male'], n_samples),
        'ethnicity': rng.choice(['a', 'b', 'c'], n_samples),
        'income': rng.integers(1, 6, n_samples),
        'education': rng.integers(1, 5, n_samples),
        'employed': rng.integers(0, 2, n_samples),
        'baseline_anxiety': rng.normal(12, 3, n_samples),
        'depression': rng.normal(8, 2, n_samples),
        'stress': rng.normal(20, 5, n_samples),
        'self_esteem': rng.normal(25, 4, n_samples),
    })


class TestTrialDataLoader(unittest.TestCase):
    """Test cases for TrialDataLoader."""

    def setUp(self):
        """Set up test fixtures."""
        self.tmp_dir = tempfile.TemporaryDirectory()
        self.csv_path = Path(self.tmp_dir.name) / "trial.csv"
        self.sample_data = make_trial_frame()
        self.sample_data.to_csv(self.csv_path, index=False)

    def tearDown(self):
        self.tmp_dir.cleanup()

    def test_initialization(self):
        """Test loader initialization."""
        loader = TrialDataLoader(self.csv_path)
        self.assertEqual(loader.treatment_col, config.TREATMENT_COL)
        self.assertEqual(loader.outcome_col, config.OUTCOME_COL)
        self.assertEqual(loader.required_cols, config.COVARIATE_COLS)
        self.assertIsNone(loader._raw_data)
        self.assertEqual(loader.get_arm_sizes(), {})

    def test_load_data_basic(self):
        """Test basic data loading functionality."""
        loader = TrialDataLoader(self.csv_path)
        result = loader.load_data()

        self.assertEqual(len(result), len(self.sample_data))
        self.assertIn('anxiety', result.columns)
        self.assertIn('treatment', result.columns)

        arm_sizes = loader.get_arm_sizes()
        self.assertEqual(sum(arm_sizes.values()), len(self.sample_data))
        self.assertEqual(set(arm_sizes), {0, 1})

    def test_load_data_drops_missing(self):
        """Participants with missing analysis variables are removed."""
        data = self.sample_data.copy()
        data.loc[0, 'anxiety'] = np.nan
        data.loc[1, 'stress'] = np.nan
        data.to_csv(self.csv_path, index=False)

        result = TrialDataLoader(self.csv_path).load_data(drop_missing=True)

        self.assertEqual(len(result), len(data) - 2)
        self.assertEqual(result['anxiety'].isnull().sum(), 0)
        self.assertEqual(list(result.index), list(range(len(result))))

    def test_missing_column_raises(self):
        """A missing schema column is rejected."""
        self.sample_data.drop(columns=['stress']).to_csv(self.csv_path, index=False)

        with self.assertRaises(ValueError) as ctx:
            TrialDataLoader(self.csv_path).load_data()
        self.assertIn('stress', str(ctx.exception))

    def test_non_binary_treatment_raises(self):
        """Treatment must be coded 0/1."""
        data = self.sample_data.copy()
        data.loc[0, 'treatment'] = 2
        data.to_csv(self.csv_path, index=False)

        with self.assertRaises(ValueError):
            TrialDataLoader(self.csv_path).load_data()

    def test_non_numeric_outcome_raises(self):
        data = self.sample_data.copy()
        data['anxiety'] = 'high'
        data.to_csv(self.csv_path, index=False)

        with self.assertRaises(ValueError):
            TrialDataLoader(self.csv_path).load_data()

    def test_describe_dataset(self):
        loader = TrialDataLoader(self.csv_path)
        self.assertEqual(loader.describe_dataset(), {})

        data = self.sample_data.copy()
        data.loc[0, 'depression'] = np.nan
        data.to_csv(self.csv_path, index=False)
        loader.load_data()
        description = loader.describe_dataset()

        self.assertEqual(description['n_participants'], len(data) - 1)
        self.assertEqual(description['n_dropped_missing'], 1)
        self.assertEqual(description['arm_sizes'], loader.get_arm_sizes())
        self.assertEqual(set(description['outcome_by_arm']), {0, 1})
        treated = data.dropna().query('treatment == 1')['anxiety']
        self.assertAlmostEqual(description['outcome_by_arm'][1]['mean'], treated.mean())

    def test_single_arm_raises(self):
        """Both arms of the trial must be represented."""
        data = self.sample_data.copy()
        data['treatment'] = 1
        data.to_csv(self.csv_path, index=False)

        with self.assertRaises(ValueError):
            TrialDataLoader(self.csv_path).load_data()


class TestTrialPreprocessor(unittest.TestCase):
    """Test cases for TrialPreprocessor."""

    def setUp(self):
        """Set up test fixtures."""
        self.preprocessor = TrialPreprocessor()
        self.sample_data = make_trial_frame()

    def test_derived_column_names(self):
        self.assertEqual(
            derived_column_names(('baseline_anxiety', 'depression')),
            ('baseline_anxiety_plus_depression', 'baseline_anxiety_times_depression')
        )

    def test_add_derived_covariates(self):
        """Sum and product of the derived pair are computed row by row."""
        result = self.preprocessor.add_derived_covariates(self.sample_data)
        sum_col, prod_col = self.preprocessor.derived_cols

        np.testing.assert_allclose(
            result[sum_col], self.sample_data['baseline_anxiety'] + self.sample_data['depression']
        )
        np.testing.assert_allclose(
            result[prod_col], self.sample_data['baseline_anxiety'] * self.sample_data['depression']
        )
        # Input frame is untouched
        self.assertNotIn(sum_col, self.sample_data.columns)

    def test_add_derived_covariates_missing_column(self):
        with self.assertRaises(ValueError):
            self.preprocessor.add_derived_covariates(self.sample_data.drop(columns=['depression']))

    def test_preprocess_sets_categorical_dtypes(self):
        result = self.preprocessor.preprocess(self.sample_data)

        self.assertIsInstance(result['gender'].dtype, pd.CategoricalDtype)
        self.assertIsInstance(result['ethnicity'].dtype, pd.CategoricalDtype)
        for col in self.preprocessor.derived_cols:
            self.assertIn(col, result.columns)

    def test_build_model_inputs(self):
        """Model inputs are numeric, row aligned and exclude treatment and outcome."""
        processed = self.preprocessor.preprocess(self.sample_data)
        inputs = self.preprocessor.build_model_inputs(processed)

        self.assertIsInstance(inputs, ModelInputs)
        self.assertEqual(inputs.n_obs, len(self.sample_data))
        self.assertEqual(inputs.X.shape[0], len(inputs.z))
        self.assertTrue(all(dtype == np.float64 for dtype in inputs.X.dtypes))

        for excluded in ['treatment', 'anxiety', 'participant_id']:
            self.assertNotIn(excluded, inputs.covariate_names)

        self.assertIn('gender_female', inputs.covariate_names)
        self.assertNotIn('gender', inputs.covariate_names)
        for col in self.preprocessor.derived_cols:
            self.assertIn(col, inputs.covariate_names)

        np.testing.assert_array_equal(inputs.z, self.sample_data['treatment'].to_numpy())
        np.testing.assert_allclose(inputs.y, self.sample_data['anxiety'].to_numpy())

    def test_text_coded_covariates_are_encoded(self):
        """Socioeconomic covariates recorded as text become indicator columns."""
        data = self.sample_data.copy()
        rng = np.random.default_rng(5)
        data['education'] = rng.choice(['high_school', 'college', 'graduate'], len(data))
        data['employed'] = rng.choice(['yes', 'no'], len(data))

        processed = self.preprocessor.preprocess(data)
        self.assertIsInstance(processed['education'].dtype, pd.CategoricalDtype)

        inputs = self.preprocessor.build_model_inputs(processed)
        self.assertTrue(all(dtype == np.float64 for dtype in inputs.X.dtypes))
        for level in ['education_college', 'education_graduate', 'education_high_school', 'employed_yes']:
            self.assertIn(level, inputs.covariate_names)
        self.assertNotIn('education', inputs.covariate_names)
        np.testing.assert_array_equal(inputs.X[[c for c in inputs.covariate_names
                                                if c.startswith('education_')]].sum(axis=1), 1.0)

    def test_text_coded_derived_pair_raises(self):
        data = self.sample_data.copy()
        data['depression'] = 'moderate'
        with self.assertRaises(ValueError) as ctx:
            self.preprocessor.add_derived_covariates(data)
        self.assertIn('depression', str(ctx.exception))

    def test_additive_covariates_exclude_sum(self):
        """The sum column is collinear with the derived pair and is left out."""
        processed = self.preprocessor.preprocess(self.sample_data)
        sum_col, prod_col = self.preprocessor.derived_cols
        features = self.preprocessor.additive_covariates(processed)

        self.assertNotIn(sum_col, features)
        self.assertIn(prod_col, features)
        for col in self.preprocessor.derived_pair:
            self.assertIn(col, features)
        self.assertNotIn('gender', features)

    def test_get_feature_groups(self):
        """Test feature grouping functionality."""
        processed = self.preprocessor.preprocess(self.sample_data)
        feature_groups = self.preprocessor.get_feature_groups(processed)

        expected_groups = ['demographics', 'socioeconomic', 'psychological', 'derived']
        for group in expected_groups:
            self.assertIn(group, feature_groups)
            self.assertIsInstance(feature_groups[group], list)
        self.assertEqual(feature_groups['derived'], self.preprocessor.derived_cols)


class TestDataIntegration(unittest.TestCase):
    """Integration tests for data loading and preprocessing."""

    def test_full_pipeline(self):
        """Test the complete data loading and preprocessing pipeline."""
        with tempfile.TemporaryDirectory() as tmp_dir:
            csv_path = Path(tmp_dir) / "trial.csv"
            make_trial_frame(n_samples=100, seed=3).to_csv(csv_path, index=False)

            raw_data = TrialDataLoader(csv_path).load_data()

        preprocessor = TrialPreprocessor()
        processed_data = preprocessor.preprocess(raw_data)
        inputs = preprocessor.build_model_inputs(processed_data)

        self.assertEqual(len(processed_data), 100)
        self.assertEqual(inputs.n_obs, 100)
        self.assertFalse(inputs.X.isnull().any().any())
        self.assertTrue(set(np.unique(inputs.z)) <= {0, 1})


if __name__ == '__main__':
    unittest.main()
