"""
Bayesian Causal Forest fitting via the stochtree sampler.
"""

import numpy as np
import pandas as pd
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
import logging

from stochtree import BCFModel

from .. import config
from ..data.preprocessor import ModelInputs


logger = logging.getLogger(__name__)


@dataclass
class BCFConfig:
    """Sampler configuration for the Bayesian Causal Forest."""
    num_gfr: int = 10
    num_burnin: int = 1000
    num_mcmc: int = 2000
    num_trees_mu: int = 200
    num_trees_tau: int = 50
    keep_every: int = 1
    random_seed: int = config.RANDOM_SEED
    propensity_covariate: str = "none"
    tau_max_depth: int = 5
    extra_general_params: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def quick(cls, random_seed: int = config.RANDOM_SEED) -> "BCFConfig":
        """Small configuration for smoke runs."""
        return cls(num_gfr=5, num_burnin=100, num_mcmc=200, random_seed=random_seed)

    def to_general_params(self) -> Dict[str, Any]:
        params = {
            'random_seed': self.random_seed,
            'keep_every': self.keep_every,
            'propensity_covariate': self.propensity_covariate,
        }
        params.update(self.extra_general_params)
        return params

    def to_prognostic_params(self) -> Dict[str, Any]:
        return {'num_trees': self.num_trees_mu}

    def to_treatment_params(self) -> Dict[str, Any]:
        return {'num_trees': self.num_trees_tau, 'max_depth': self.tau_max_depth}


@dataclass
class BCFPosterior:
    """
    Posterior draws from a fitted BCF model.

    All surfaces are stored draws x observations.
    """
    y_hat: np.ndarray
    mu_hat: np.ndarray
    tau_hat: np.ndarray
    sigma2: np.ndarray
    y: np.ndarray
    z: np.ndarray
    X: pd.DataFrame

    @property
    def num_draws(self) -> int:
        return self.tau_hat.shape[0]

    @property
    def num_obs(self) -> int:
        return self.tau_hat.shape[1]

    @property
    def sigma(self) -> np.ndarray:
        return np.sqrt(self.sigma2)


def _as_draws_by_obs(samples: np.ndarray, n_obs: int) -> np.ndarray:
    """Reshape sampler output (observations x draws) into draws x observations."""
    samples = np.asarray(samples, dtype=float)
    if samples.ndim == 1:
        samples = samples.reshape(n_obs, -1)
    if samples.shape[0] != n_obs:
        raise ValueError(f"Expected {n_obs} rows of posterior samples, got shape {samples.shape}")
    return samples.T


class BCFAnalysis:
    """Fits a Bayesian Causal Forest to trial data and exposes the posterior draws."""

    def __init__(self, bcf_config: Optional[BCFConfig] = None):
        """
        Initialize the analysis.

        Args:
            bcf_config: Sampler configuration (default: BCFConfig())
        """
        self.config = bcf_config if bcf_config is not None else BCFConfig()
        self.model = None
        self._posterior = None

    @staticmethod
    def estimate_propensity(z: np.ndarray) -> np.ndarray:
        """
        Propensity score for a randomized trial.

        Assignment is random, so every participant has the same probability of treatment,
        estimated by the observed treated share.
        """
        z = np.asarray(z, dtype=float)
        return np.full(z.shape[0], z.mean())

    def fit(self, inputs: ModelInputs) -> BCFPosterior:
        """
        Run the BCF sampler on the prepared inputs.

        Args:
            inputs: Row-aligned covariates, treatment and outcome

        Returns:
            Posterior draws of the fitted, prognostic and treatment-effect surfaces
        """
        cfg = self.config
        X = inputs.X.to_numpy(dtype=float)
        pi_hat = self.estimate_propensity(inputs.z)

        logger.info(
            f"Fitting BCF on {inputs.n_obs} participants, {X.shape[1]} covariates "
            f"(gfr={cfg.num_gfr}, burnin={cfg.num_burnin}, mcmc={cfg.num_mcmc})"
        )

        self.model = BCFModel()
        self.model.sample(
            X_train=X,
            Z_train=inputs.z,
            y_train=inputs.y,
            propensity_train=pi_hat,
            num_gfr=cfg.num_gfr,
            num_burnin=cfg.num_burnin,
            num_mcmc=cfg.num_mcmc,
            general_params=cfg.to_general_params(),
            prognostic_forest_params=cfg.to_prognostic_params(),
            treatment_effect_forest_params=cfg.to_treatment_params(),
        )

        n_obs = inputs.n_obs
        self._posterior = BCFPosterior(
            y_hat=_as_draws_by_obs(self.model.y_hat_train, n_obs),
            mu_hat=_as_draws_by_obs(self.model.mu_hat_train, n_obs),
            tau_hat=_as_draws_by_obs(self.model.tau_hat_train, n_obs),
            sigma2=np.asarray(self.model.global_var_samples, dtype=float).ravel(),
            y=np.asarray(inputs.y, dtype=float),
            z=np.asarray(inputs.z, dtype=int),
            X=inputs.X,
        )

        logger.info(f"BCF sampling complete: {self._posterior.num_draws} retained draws")
        return self._posterior

    @property
    def posterior(self) -> BCFPosterior:
        if self._posterior is None:
            raise RuntimeError("BCF model has not been fitted. Call fit() first.")
        return self._posterior
