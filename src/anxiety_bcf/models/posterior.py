"""
Posterior summaries derived from BCF draws: ATE, CATE, subgroup effects and fit diagnostics.
"""

import numpy as np
import pandas as pd
from dataclasses import dataclass
from typing import Dict, Hashable, Optional, Sequence, Union
import logging

from .. import config
from .bcf_model import BCFPosterior


logger = logging.getLogger(__name__)


@dataclass
class PosteriorSummary:
    """Summary of a scalar posterior from its draws."""
    mean: float
    sd: float
    lower: float
    upper: float
    prob_positive: float
    prob_negative: float
    level: float = config.CREDIBLE_LEVEL

    @property
    def excludes_zero(self) -> bool:
        """Whether the credible interval lies entirely on one side of zero."""
        return self.lower > 0 or self.upper < 0

    def as_dict(self) -> Dict[str, float]:
        return {
            'mean': self.mean,
            'sd': self.sd,
            'lower': self.lower,
            'upper': self.upper,
            'prob_positive': self.prob_positive,
            'prob_negative': self.prob_negative,
            'level': self.level
        }


@dataclass
class SubgroupEffect:
    """Posterior of the average treatment effect within one subgroup."""
    label: str
    n: int
    draws: np.ndarray
    summary: PosteriorSummary


def summarize_draws(draws: np.ndarray, level: float = config.CREDIBLE_LEVEL) -> PosteriorSummary:
    """
    Summarize posterior draws of a scalar quantity.

    Args:
        draws: One-dimensional array of posterior draws
        level: Credible interval mass

    Returns:
        PosteriorSummary with an equal-tailed credible interval
    """
    draws = np.asarray(draws, dtype=float)
    alpha = (1 - level) / 2
    lower, upper = np.quantile(draws, [alpha, 1 - alpha])
    return PosteriorSummary(
        mean=float(draws.mean()),
        sd=float(draws.std(ddof=1)) if draws.size > 1 else 0.0,
        lower=float(lower),
        upper=float(upper),
        prob_positive=float((draws > 0).mean()),
        prob_negative=float((draws < 0).mean()),
        level=level
    )


def ate_draws(posterior: BCFPosterior) -> np.ndarray:
    """Sample average treatment effect for each posterior draw."""
    return posterior.tau_hat.mean(axis=1)


def cate_summary(posterior: BCFPosterior, level: float = config.CREDIBLE_LEVEL) -> pd.DataFrame:
    """
    Per-participant CATE summaries.

    Returns:
        DataFrame indexed like the model inputs with posterior mean, sd, interval
        bounds and the probability that the effect is negative
    """
    tau = posterior.tau_hat
    alpha = (1 - level) / 2
    lower, upper = np.quantile(tau, [alpha, 1 - alpha], axis=0)

    return pd.DataFrame({
        'cate_mean': tau.mean(axis=0),
        'cate_sd': tau.std(axis=0, ddof=1),
        'cate_lower': lower,
        'cate_upper': upper,
        'prob_negative': (tau < 0).mean(axis=0)
    }, index=posterior.X.index)


def subgroup_effects(
    posterior: BCFPosterior,
    labels: Union[pd.Series, np.ndarray, Sequence[Hashable]],
    level: float = config.CREDIBLE_LEVEL,
    min_size: int = config.MIN_SUBGROUP_SIZE
) -> Dict[str, SubgroupEffect]:
    """
    Posterior average treatment effect within each labelled subgroup.

    Args:
        posterior: BCF posterior draws
        labels: Subgroup label per participant (boolean masks are labelled True/False)
        level: Credible interval mass
        min_size: Subgroups with fewer participants are skipped

    Returns:
        Dictionary mapping subgroup label to its SubgroupEffect
    """
    labels = pd.Series(np.asarray(labels))
    if len(labels) != posterior.num_obs:
        raise ValueError(f"Expected {posterior.num_obs} subgroup labels, got {len(labels)}")

    effects = {}
    for label in pd.unique(labels.dropna()):
        mask = (labels == label).to_numpy()
        n = int(mask.sum())

        if n < min_size:
            logger.warning(f"Skipping subgroup {label} (n={n})")
            continue

        draws = posterior.tau_hat[:, mask].mean(axis=1)
        effects[str(label)] = SubgroupEffect(
            label=str(label),
            n=n,
            draws=draws,
            summary=summarize_draws(draws, level)
        )

    return effects


def subgroup_contrast(
    effects: Dict[str, SubgroupEffect],
    first: str,
    second: str,
    level: float = config.CREDIBLE_LEVEL
) -> PosteriorSummary:
    """Posterior of the difference in average effect between two subgroups (first - second)."""
    for label in (first, second):
        if label not in effects:
            raise KeyError(f"Unknown subgroup '{label}'; available: {sorted(effects)}")
    return summarize_draws(effects[first].draws - effects[second].draws, level)


def subgroup_table(effects: Dict[str, SubgroupEffect]) -> pd.DataFrame:
    """Tabulate subgroup effects for reporting."""
    rows = []
    for label, effect in effects.items():
        row = {'subgroup': label, 'n': effect.n}
        row.update(effect.summary.as_dict())
        rows.append(row)
    return pd.DataFrame(rows)


def moderator_subgroups(
    df: pd.DataFrame,
    column: str,
    bins: Optional[Union[int, Sequence[float]]] = None,
    max_levels: int = 6
) -> pd.Series:
    """
    Label participants by the levels of a moderator.

    Categorical and low-cardinality columns keep their levels; numeric columns are
    cut at quantiles (tertiles by default) or at explicit bin edges.
    """
    values = df[column]

    is_numeric = pd.api.types.is_numeric_dtype(values) and not isinstance(values.dtype, pd.CategoricalDtype)
    if not is_numeric or (bins is None and values.nunique() <= max_levels):
        return values.astype(str).rename(column)

    if bins is None or isinstance(bins, int):
        n_bins = bins if bins is not None else 3
        cut = pd.qcut(values, q=n_bins, duplicates='drop')
    else:
        cut = pd.cut(values, bins=list(bins), include_lowest=True)

    return cut.astype(str).rename(column)


def effective_sample_size(trace: np.ndarray) -> float:
    """
    Effective sample size of a single MCMC trace.

    Uses Geyer's initial positive sequence of autocorrelation pair sums.
    """
    x = np.asarray(trace, dtype=float)
    n = x.size
    if n < 4 or np.var(x) == 0:
        return float(n)

    x = x - x.mean()
    acov = np.correlate(x, x, mode='full')[n - 1:] / n
    rho = acov / acov[0]

    pair_sum = 0.0
    for k in range(0, n - 1, 2):
        pair = rho[k] + rho[k + 1]
        if pair <= 0:
            break
        pair_sum += pair

    tau_int = -1.0 + 2.0 * pair_sum
    return float(n / max(tau_int, 1.0 / n))


def fit_diagnostics(posterior: BCFPosterior) -> Dict[str, float]:
    """
    Goodness-of-fit and mixing diagnostics for the BCF fit.

    Returns:
        Dictionary with rmse, r_squared, sigma_mean, sigma_ess and the correlation
        between the prognostic surface and observed outcomes in the control arm
    """
    y = posterior.y
    y_fit = posterior.y_hat.mean(axis=0)
    residuals = y - y_fit

    control = posterior.z == 0
    mu_fit = posterior.mu_hat.mean(axis=0)
    if control.sum() > 1:
        control_corr = float(np.corrcoef(mu_fit[control], y[control])[0, 1])
    else:
        control_corr = float('nan')

    return {
        'rmse': float(np.sqrt(np.mean(residuals ** 2))),
        'r_squared': float(1 - residuals.var() / y.var()),
        'sigma_mean': float(posterior.sigma.mean()),
        'sigma_ess': effective_sample_size(posterior.sigma),
        'control_mu_correlation': control_corr,
        'num_draws': posterior.num_draws
    }
