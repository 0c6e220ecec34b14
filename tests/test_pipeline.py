"""
End-to-end smoke test of the analysis script with the BCF sampler mocked.
"""

import unittest
import tempfile
import json
import sys
from pathlib import Path
from unittest.mock import Mock, patch

import numpy as np
import pandas as pd

# Add src and the project root to path
sys.path.append(str(Path(__file__).parent.parent / "src"))
sys.path.append(str(Path(__file__).parent.parent))

import main_analysis


def make_trial_csv(path, n_samples=120, seed=11):
    rng = np.random.default_rng(seed)
    treatment = np.tile([0, 1], n_samples // 2)
    baseline = rng.normal(12, 3, n_samples)
    depression = rng.normal(8, 2, n_samples)
    effect = -1.0 - 0.3 * (baseline - 12)
    pd.DataFrame({
        'participant_id': np.arange(n_samples),
        'treatment': treatment,
        'anxiety': baseline + effect * treatment + rng.normal(0, 1, n_samples),
        'age': rng.integers(18, 65, n_samples),
        'gender': rng.choice(['female', 'male'], n_samples),
        'ethnicity': rng.choice(['a', 'b'], n_samples),
        'income': rng.integers(1, 6, n_samples),
        'education': rng.integers(1, 5, n_samples),
        'employed': rng.integers(0, 2, n_samples),
        'baseline_anxiety': baseline,
        'depression': depression,
        'stress': rng.normal(20, 5, n_samples),
        'self_esteem': rng.normal(25, 4, n_samples),
    }).to_csv(path, index=False)


def fake_bcf_model(n_draws=30, seed=0):
    """BCFModel stand-in whose sample() stores draws shaped like stochtree's."""
    rng = np.random.default_rng(seed)
    model = Mock()

    def sample(**kwargs):
        X = kwargs['X_train']
        z = kwargs['Z_train']
        y = kwargs['y_train']
        n_obs = len(y)
        tau_center = -1.0 - 0.3 * (X[:, 0] - X[:, 0].mean()) / (X[:, 0].std() + 1e-9)
        model.tau_hat_train = tau_center[:, None] + rng.normal(0, 0.2, (n_obs, n_draws))
        model.mu_hat_train = y[:, None] + rng.normal(0, 0.5, (n_obs, n_draws))
        model.y_hat_train = model.mu_hat_train + model.tau_hat_train * z[:, None]
        model.global_var_samples = rng.uniform(0.8, 1.2, n_draws)

    model.sample.side_effect = sample
    return model


class TestMainAnalysis(unittest.TestCase):
    """Runs the full pipeline on synthetic data."""

    def test_uses_headless_backend(self):
        import matplotlib
        self.assertEqual(matplotlib.get_backend().lower(), 'agg')
        self.assertFalse(hasattr(main_analysis, 'tempfile'))

    @patch('anxiety_bcf.models.bcf_model.BCFModel')
    def test_main_writes_outputs(self, mock_bcf_model):
        mock_bcf_model.return_value = fake_bcf_model()

        with tempfile.TemporaryDirectory() as tmp_dir:
            tmp = Path(tmp_dir)
            csv_path = tmp / "trial.csv"
            make_trial_csv(csv_path)

            results = main_analysis.main([
                '--data', str(csv_path),
                '--output-dir', str(tmp / "outputs"),
                '--quick',
                '--no-dml',
                '--log-level', 'WARNING'
            ])

            outputs = tmp / "outputs"
            report = outputs / "reports" / "bcf_analysis_report.pdf"
            self.assertTrue(report.exists())
            self.assertEqual(report.read_bytes()[:5], b"%PDF-")
            self.assertTrue((outputs / "figures" / "cate_interactive.html").exists())

            for name in ["sigma_trace.png", "ate_posterior.png", "cart_tree.png",
                         "partial_effects.png", "summary_r2.png", "subgroups_gender.png"]:
                self.assertTrue((outputs / "figures" / name).exists(), name)

            with open(outputs / "results" / "bcf_analysis_results.json") as f:
                saved = json.load(f)
            self.assertIn('ate', saved)
            self.assertLess(saved['ate']['mean'], 0)

            cate_csv = pd.read_csv(outputs / "results" / "cate_estimates.csv")
            self.assertEqual(len(cate_csv), 120)

        mock_bcf_model.return_value.sample.assert_called_once()
        self.assertEqual(results['data_summary']['n_participants'], 120)
        self.assertIn('bcf', results['ate_estimates'])
        self.assertIn('difference_in_means', results['ate_estimates'])
        self.assertEqual(set(results['moderators']), {'gender', 'baseline_anxiety', 'depression'})

        gam_features = results['additive_summary']['features']
        self.assertNotIn('baseline_anxiety_plus_depression', gam_features)
        self.assertIn('baseline_anxiety_times_depression', gam_features)
        self.assertEqual(results['data_summary']['n_dropped_missing'], 0)
        self.assertIn('derived', results['data_summary']['feature_groups'])


if __name__ == '__main__':
    unittest.main()
