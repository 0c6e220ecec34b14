"""
Additive (GAM) summaries of the BCF treatment-effect surface.
"""

import copy
import numpy as np
import pandas as pd
from functools import reduce
from operator import add
from typing import Dict, List, Optional
import logging

from pygam import LinearGAM, f, l, s

from .. import config
from .bcf_model import BCFPosterior


logger = logging.getLogger(__name__)


class AdditiveSummary:
    """
    Projects the CATE surface onto an additive model of selected covariates.

    Smooth terms are used for continuous covariates, linear terms for binary
    indicators and factor terms for integer-coded categoricals.
    """

    def __init__(
        self,
        features: List[str],
        categorical: Optional[List[str]] = None,
        n_splines: int = 10,
        lam: Optional[float] = None
    ):
        """
        Initialize the additive summary.

        Args:
            features: Covariate columns to include
            categorical: Integer-coded categorical columns among features
            n_splines: Basis size for smooth terms
            lam: Smoothing penalty; chosen by grid search when None
        """
        if not features:
            raise ValueError("At least one feature is required for an additive summary")
        self.features = list(features)
        self.categorical = list(categorical) if categorical else []
        self.n_splines = n_splines
        self.lam = lam
        self.gam = None
        self.term_kinds = {}

    def _build_terms(self, X: pd.DataFrame):
        terms = []
        self.term_kinds = {}
        for i, name in enumerate(self.features):
            values = X[name]
            if name in self.categorical:
                terms.append(f(i))
                self.term_kinds[name] = 'factor'
            elif values.nunique() <= 2:
                terms.append(l(i))
                self.term_kinds[name] = 'linear'
            else:
                n_splines = min(self.n_splines, max(values.nunique() + 2, 4))
                terms.append(s(i, n_splines=n_splines))
                self.term_kinds[name] = 'smooth'
        return reduce(add, terms) if len(terms) > 1 else terms[0]

    def _check_identifiable(self, data: np.ndarray) -> None:
        """
        Reject feature sets whose linear span is degenerate.

        A constant feature or one that is an exact linear combination of the others
        leaves the partial effects unidentified: the penalty spreads a single effect
        across the collinear terms.
        """
        centered = data - data.mean(axis=0)
        rank = np.linalg.matrix_rank(centered)
        if rank < len(self.features):
            redundant = []
            for j, name in enumerate(self.features):
                others = np.delete(centered, j, axis=1)
                if np.linalg.matrix_rank(others) == rank:
                    redundant.append(name)
            raise ValueError(
                f"Additive summary features are collinear (rank {rank} for {len(self.features)} "
                f"features); drop one of {redundant}"
            )

    def fit(self, X: pd.DataFrame, target: np.ndarray) -> "AdditiveSummary":
        """
        Fit the GAM to a per-participant CATE summary.

        Args:
            X: Covariate matrix containing the selected features
            target: Per-participant CATE, usually the posterior mean
        """
        missing = [name for name in self.features if name not in X.columns]
        if missing:
            raise ValueError(f"Features not found in covariate matrix: {missing}")

        data = X[self.features].to_numpy(dtype=float)
        self._check_identifiable(data)
        target = np.asarray(target, dtype=float)
        terms = self._build_terms(X)

        if self.lam is None:
            self.gam = LinearGAM(terms).gridsearch(data, target, progress=False)
        else:
            self.gam = LinearGAM(terms, lam=self.lam).fit(data, target)

        logger.info(
            f"Fitted additive CATE summary on {len(self.features)} features "
            f"(pseudo R2={self.statistics()['pseudo_r2']:.3f})"
        )
        return self

    def _check_fitted(self) -> None:
        if self.gam is None:
            raise RuntimeError("Additive summary has not been fitted. Call fit() first.")

    def statistics(self) -> Dict[str, float]:
        """Effective degrees of freedom and explained deviance of the fitted GAM."""
        self._check_fitted()
        stats = self.gam.statistics_
        return {
            'edof': float(stats['edof']),
            'pseudo_r2': float(stats['pseudo_r2']['explained_deviance']),
            'n_samples': int(stats['n_samples'])
        }

    def partial_effects(self, grid_points: int = 100, width: float = 0.95) -> Dict[str, pd.DataFrame]:
        """
        Partial effect of each feature on the CATE with pointwise confidence bands.

        Returns:
            Dictionary mapping feature name to a DataFrame with value, effect,
            lower and upper columns
        """
        self._check_fitted()
        partials = {}

        for i, name in enumerate(self.features):
            grid = self.gam.generate_X_grid(term=i, n=grid_points)
            effect, bands = self.gam.partial_dependence(term=i, X=grid, width=width)
            frame = pd.DataFrame({
                'value': grid[:, i],
                'effect': effect,
                'lower': bands[:, 0],
                'upper': bands[:, 1]
            }).drop_duplicates(subset='value')
            partials[name] = frame.reset_index(drop=True)

        return partials

    def summary_r2(
        self,
        posterior: BCFPosterior,
        X: pd.DataFrame,
        n_draws: int = 100,
        random_state: int = config.RANDOM_SEED
    ) -> np.ndarray:
        """
        Posterior distribution of how well the additive summary explains the CATEs.

        For a subset of draws the GAM, with its smoothing penalties held fixed, is
        refitted to that draw's CATE vector and R2 = 1 - var(residual) / var(CATE)
        is recorded.
        """
        self._check_fitted()
        rng = np.random.default_rng(random_state)
        n_draws = min(n_draws, posterior.num_draws)
        draw_ids = rng.choice(posterior.num_draws, size=n_draws, replace=False)
        data = X[self.features].to_numpy(dtype=float)

        r2 = np.empty(n_draws)
        for k, draw in enumerate(draw_ids):
            tau = posterior.tau_hat[draw]
            if np.var(tau) == 0:
                r2[k] = np.nan
                continue
            gam = copy.deepcopy(self.gam).fit(data, tau)
            residual = tau - gam.predict(data)
            r2[k] = 1 - np.var(residual) / np.var(tau)

        logger.info(f"Summary R2 over {n_draws} draws: median {np.nanmedian(r2):.3f}")
        return r2
