"""
Average treatment effect cross-checks using difference in means and Double Machine Learning.
"""

import numpy as np
import pandas as pd
from typing import Dict, List, Tuple, Optional, Any
import logging
from dataclasses import dataclass

import doubleml as dml
from doubleml import DoubleMLData
from scipy import stats
from sklearn.ensemble import RandomForestClassifier, RandomForestRegressor
from sklearn.linear_model import LassoCV, LogisticRegressionCV
from xgboost import XGBClassifier, XGBRegressor

from .. import config
from .posterior import PosteriorSummary


logger = logging.getLogger(__name__)


@dataclass
class CausalEstimate:
    """Container for causal effect estimates."""
    coefficient: float
    std_error: float
    ci_lower: float
    ci_upper: float
    p_value: float
    method: str

    @property
    def is_significant(self, alpha: float = 0.05) -> bool:
        """Check if effect is statistically significant."""
        return self.p_value < alpha


class CausalInferenceEngine:
    """
    Estimates the average treatment effect with frequentist methods, for comparison with BCF.
    """

    def __init__(
        self,
        n_folds: int = 5,
        random_state: int = config.RANDOM_SEED,
        treatment_col: str = config.TREATMENT_COL,
        outcome_col: str = config.OUTCOME_COL
    ):
        """
        Initialize the causal inference engine.

        Args:
            n_folds: Number of folds for cross-fitting
            random_state: Random seed for reproducibility
            treatment_col: Name of treatment variable
            outcome_col: Name of outcome variable
        """
        self.n_folds = n_folds
        self.random_state = random_state
        self.treatment_col = treatment_col
        self.outcome_col = outcome_col
        self.models = {}
        self.results = {}

    def difference_in_means(self, df: pd.DataFrame) -> CausalEstimate:
        """
        Unadjusted ATE from a Welch two-sample comparison.

        Args:
            df: Trial dataset

        Returns:
            Causal estimate for treated minus control mean outcome
        """
        treated = df.loc[df[self.treatment_col] == 1, self.outcome_col].to_numpy(dtype=float)
        control = df.loc[df[self.treatment_col] == 0, self.outcome_col].to_numpy(dtype=float)

        diff = treated.mean() - control.mean()
        var_t = treated.var(ddof=1) / len(treated)
        var_c = control.var(ddof=1) / len(control)
        std_error = np.sqrt(var_t + var_c)

        # Welch-Satterthwaite degrees of freedom
        dof = (var_t + var_c) ** 2 / (var_t ** 2 / (len(treated) - 1) + var_c ** 2 / (len(control) - 1))
        t_crit = stats.t.ppf(0.975, dof)
        p_value = 2 * stats.t.sf(abs(diff / std_error), dof)

        logger.info(f"Difference in means: {diff:.4f} (SE {std_error:.4f})")

        return CausalEstimate(
            coefficient=float(diff),
            std_error=float(std_error),
            ci_lower=float(diff - t_crit * std_error),
            ci_upper=float(diff + t_crit * std_error),
            p_value=float(p_value),
            method='difference_in_means'
        )

    def prepare_data(
        self,
        df: pd.DataFrame,
        x_cols: Optional[List[str]] = None,
        exclude_cols: Optional[List[str]] = None
    ) -> DoubleMLData:
        """
        Prepare data for Double ML analysis.

        Args:
            df: Numeric dataset containing treatment, outcome and covariates
            x_cols: Covariate columns (default: every other numeric column)
            exclude_cols: Additional columns to exclude from covariates

        Returns:
            DoubleMLData object ready for analysis
        """
        if exclude_cols is None:
            exclude_cols = []

        all_exclude = [self.treatment_col, self.outcome_col] + exclude_cols

        if x_cols is None:
            numeric = df.select_dtypes(include=[np.number, 'bool']).columns
            x_cols = [col for col in numeric if col not in all_exclude]
        else:
            x_cols = [col for col in x_cols if col not in all_exclude]

        logger.info(f"Prepared data with {len(x_cols)} covariates, treatment: {self.treatment_col}, "
                    f"outcome: {self.outcome_col}")

        return DoubleMLData(
            df,
            y_col=self.outcome_col,
            d_cols=self.treatment_col,
            x_cols=x_cols
        )

    def _get_base_learners(self) -> Dict[str, Dict[str, Any]]:
        """Get base learners for the outcome (ml_l) and treatment (ml_m) nuisance functions."""
        return {
            'linear': {
                'ml_l': LassoCV(cv=self.n_folds, random_state=self.random_state),
                'ml_m': LogisticRegressionCV(cv=self.n_folds, max_iter=1000)
            },
            'random_forest': {
                'ml_l': RandomForestRegressor(n_estimators=300, min_samples_leaf=5,
                                              random_state=self.random_state),
                'ml_m': RandomForestClassifier(n_estimators=300, min_samples_leaf=5,
                                               random_state=self.random_state)
            },
            'xgboost': {
                'ml_l': XGBRegressor(n_estimators=200, max_depth=3, learning_rate=0.05,
                                     random_state=self.random_state, n_jobs=1),
                'ml_m': XGBClassifier(n_estimators=200, max_depth=3, learning_rate=0.05,
                                      random_state=self.random_state, objective="binary:logistic",
                                      eval_metric="logloss", n_jobs=1)
            }
        }

    def estimate_treatment_effects(
        self,
        dml_data: DoubleMLData,
        methods: Optional[List[str]] = None
    ) -> Dict[str, CausalEstimate]:
        """
        Estimate the ATE with the partially linear DoubleML model.

        Args:
            dml_data: Prepared DoubleML data
            methods: Learner families to use. If None, uses all available methods

        Returns:
            Dictionary mapping method names to causal estimates
        """
        learners = self._get_base_learners()
        if methods is None:
            methods = list(learners)

        estimates = {}

        for method in methods:
            if method not in learners:
                raise ValueError(f"Unknown learner '{method}'; choose from {sorted(learners)}")

            logger.info(f"Estimating treatment effects using {method}")

            dml_model = dml.DoubleMLPLR(
                dml_data,
                ml_l=learners[method]['ml_l'],
                ml_m=learners[method]['ml_m'],
                n_folds=self.n_folds
            )
            dml_model.fit(store_predictions=True)
            self.models[method] = dml_model

            summary = dml_model.summary
            first_row = summary.iloc[0]

            estimates[method] = CausalEstimate(
                coefficient=float(first_row['coef']),
                std_error=float(first_row['std err']),
                ci_lower=float(first_row['2.5 %']),
                ci_upper=float(first_row['97.5 %']),
                p_value=float(first_row['P>|t|']),
                method=f"dml_{method}"
            )

            logger.info(f"{method} - Coefficient: {estimates[method].coefficient:.6f}, "
                        f"P-value: {estimates[method].p_value:.6f}")

        self.results = estimates
        return estimates

    def evaluate_learner_performance(self) -> Dict[str, Dict[str, float]]:
        """
        Evaluate the out-of-fold RMSE of the nuisance learners.

        Returns:
            Dictionary with performance metrics for each method
        """
        def rmse_metric(y_true, y_pred):
            subset = np.logical_not(np.isnan(y_true))
            if np.sum(subset) == 0:
                return np.nan
            return float(np.sqrt(np.mean((y_true[subset] - y_pred[subset]) ** 2)))

        performance = {}

        for method, model in self.models.items():
            try:
                metrics = model.evaluate_learners(metric=rmse_metric)
                performance[method] = {
                    'ml_l_rmse': float(np.asarray(metrics['ml_l']).ravel()[0]),
                    'ml_m_rmse': float(np.asarray(metrics['ml_m']).ravel()[0])
                }
            except Exception as e:
                logger.warning(f"Could not evaluate learners for {method}: {e}")
                performance[method] = {'error': str(e)}

        return performance

    @staticmethod
    def bcf_as_estimate(summary: PosteriorSummary, method: str = 'bcf') -> CausalEstimate:
        """
        Express a BCF ATE posterior as a CausalEstimate for side-by-side reporting.

        The p-value slot holds twice the smaller posterior tail probability.
        """
        tail = min(summary.prob_positive, summary.prob_negative)
        return CausalEstimate(
            coefficient=summary.mean,
            std_error=summary.sd,
            ci_lower=summary.lower,
            ci_upper=summary.upper,
            p_value=float(min(1.0, 2 * tail)),
            method=method
        )
