"""
Unit tests for the ATE cross-check models.
"""

import unittest
import pandas as pd
import numpy as np
from unittest.mock import Mock, patch
import sys
from pathlib import Path

# Add src to path
sys.path.append(str(Path(__file__).parent.parent / "src"))

from anxiety_bcf.models.causal_models import CausalInferenceEngine, CausalEstimate
from anxiety_bcf.models.posterior import summarize_draws
from doubleml import DoubleMLData


def mock_dml_model(coef=-1.5):
    """DoubleML model stand-in with a fixed summary."""
    mock_model = Mock()
    mock_model.fit.return_value = mock_model
    mock_model.summary = pd.DataFrame({
        'coef': [coef],
        'std err': [0.4],
        '2.5 %': [coef - 0.8],
        '97.5 %': [coef + 0.8],
        'P>|t|': [0.001]
    }, index=['treatment'])
    mock_model.evaluate_learners.return_value = {
        'ml_l': np.array([[2.1]]),
        'ml_m': np.array([[0.49]])
    }
    return mock_model


class TestCausalEstimate(unittest.TestCase):
    """Test cases for CausalEstimate dataclass."""

    def test_initialization(self):
        estimate = CausalEstimate(
            coefficient=-1.2, std_error=0.5, ci_lower=-2.2,
            ci_upper=-0.2, p_value=0.02, method='difference_in_means'
        )

        self.assertEqual(estimate.coefficient, -1.2)
        self.assertEqual(estimate.std_error, 0.5)
        self.assertEqual(estimate.method, 'difference_in_means')

    def test_is_significant(self):
        sig_estimate = CausalEstimate(
            coefficient=-1.2, std_error=0.5, ci_lower=-2.2,
            ci_upper=-0.2, p_value=0.02, method='test'
        )
        self.assertTrue(sig_estimate.is_significant)

        nonsig_estimate = CausalEstimate(
            coefficient=-0.1, std_error=0.5, ci_lower=-1.1,
            ci_upper=0.9, p_value=0.8, method='test'
        )
        self.assertFalse(nonsig_estimate.is_significant)


class TestCausalInferenceEngine(unittest.TestCase):
    """Test cases for CausalInferenceEngine."""

    def setUp(self):
        """Set up test fixtures."""
        self.engine = CausalInferenceEngine(n_folds=3, random_state=42)

        rng = np.random.default_rng(42)
        n_samples = 200

        treatment = rng.binomial(1, 0.5, n_samples)
        baseline = rng.normal(12, 3, n_samples)
        self.sample_data = pd.DataFrame({
            'treatment': treatment,
            'anxiety': baseline - 2.0 * treatment + rng.normal(0, 1, n_samples),
            'baseline_anxiety': baseline,
            'depression': rng.normal(8, 2, n_samples),
            'employed': rng.binomial(1, 0.6, n_samples).astype(float),
        })

    def test_initialization(self):
        self.assertEqual(self.engine.n_folds, 3)
        self.assertEqual(self.engine.random_state, 42)
        self.assertIsInstance(self.engine.models, dict)
        self.assertIsInstance(self.engine.results, dict)

    def test_difference_in_means(self):
        """The unadjusted estimate recovers the simulated effect."""
        estimate = self.engine.difference_in_means(self.sample_data)

        treated = self.sample_data.loc[self.sample_data['treatment'] == 1, 'anxiety']
        control = self.sample_data.loc[self.sample_data['treatment'] == 0, 'anxiety']
        self.assertAlmostEqual(estimate.coefficient, treated.mean() - control.mean())
        self.assertLess(estimate.ci_lower, estimate.coefficient)
        self.assertGreater(estimate.ci_upper, estimate.coefficient)
        self.assertTrue(estimate.is_significant)
        self.assertEqual(estimate.method, 'difference_in_means')

    def test_prepare_data(self):
        """Test data preparation for DoubleML."""
        dml_data = self.engine.prepare_data(self.sample_data)

        self.assertIsInstance(dml_data, DoubleMLData)
        self.assertEqual(dml_data.y_col, 'anxiety')
        self.assertEqual(dml_data.d_cols, ['treatment'])

        for covariate in ['baseline_anxiety', 'depression', 'employed']:
            self.assertIn(covariate, dml_data.x_cols)
        self.assertNotIn('treatment', dml_data.x_cols)
        self.assertNotIn('anxiety', dml_data.x_cols)

    def test_prepare_data_explicit_columns(self):
        dml_data = self.engine.prepare_data(self.sample_data, x_cols=['baseline_anxiety', 'treatment'])
        self.assertEqual(dml_data.x_cols, ['baseline_anxiety'])

    def test_get_base_learners(self):
        learners = self.engine._get_base_learners()

        for method in ['linear', 'random_forest', 'xgboost']:
            self.assertIn(method, learners)
            self.assertIn('ml_l', learners[method])
            self.assertIn('ml_m', learners[method])

    @patch('doubleml.DoubleMLPLR')
    def test_estimate_treatment_effects(self, mock_dml_plr):
        mock_dml_plr.return_value = mock_dml_model()

        dml_data = self.engine.prepare_data(self.sample_data)
        estimates = self.engine.estimate_treatment_effects(dml_data, methods=['linear'])

        self.assertIn('linear', estimates)
        self.assertIsInstance(estimates['linear'], CausalEstimate)
        self.assertEqual(estimates['linear'].coefficient, -1.5)
        self.assertEqual(estimates['linear'].method, 'dml_linear')
        self.assertEqual(mock_dml_plr.call_args.kwargs['n_folds'], 3)

    def test_unknown_method_raises(self):
        dml_data = self.engine.prepare_data(self.sample_data)
        with self.assertRaises(ValueError):
            self.engine.estimate_treatment_effects(dml_data, methods=['boosted_stumps'])

    @patch('doubleml.DoubleMLPLR')
    def test_evaluate_learner_performance(self, mock_dml_plr):
        mock_dml_plr.return_value = mock_dml_model()

        dml_data = self.engine.prepare_data(self.sample_data)
        self.engine.estimate_treatment_effects(dml_data, methods=['linear', 'random_forest'])
        performance = self.engine.evaluate_learner_performance()

        self.assertEqual(set(performance), {'linear', 'random_forest'})
        self.assertAlmostEqual(performance['linear']['ml_l_rmse'], 2.1)
        self.assertAlmostEqual(performance['linear']['ml_m_rmse'], 0.49)

    def test_evaluate_learner_performance_failure(self):
        broken = Mock()
        broken.evaluate_learners.side_effect = RuntimeError("no predictions stored")
        self.engine.models['linear'] = broken

        with self.assertLogs('anxiety_bcf.models.causal_models', level='WARNING'):
            performance = self.engine.evaluate_learner_performance()
        self.assertIn('error', performance['linear'])

    def test_bcf_as_estimate(self):
        draws = np.concatenate([np.full(95, -2.0), np.full(5, 0.5)])
        summary = summarize_draws(draws)
        estimate = CausalInferenceEngine.bcf_as_estimate(summary)

        self.assertEqual(estimate.method, 'bcf')
        self.assertAlmostEqual(estimate.coefficient, summary.mean)
        self.assertAlmostEqual(estimate.p_value, 0.1)
        self.assertFalse(estimate.is_significant)


if __name__ == '__main__':
    unittest.main()
