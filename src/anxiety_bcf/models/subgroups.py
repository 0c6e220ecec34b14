"""
CART-based subgroup discovery on the BCF treatment-effect posterior.
"""

import numpy as np
import pandas as pd
from collections import Counter
from typing import Dict, List, Optional
import logging

from sklearn.tree import DecisionTreeRegressor, export_text

from .. import config
from .bcf_model import BCFPosterior
from .posterior import subgroup_effects, subgroup_table


logger = logging.getLogger(__name__)


class CARTSubgroupFinder:
    """
    Finds effect-modifying subgroups by fitting a regression tree to posterior CATEs.

    The tree is fitted to the posterior mean CATE ("fit the fit"); its leaves define
    subgroups whose average effects are then summarized over the full posterior.
    """

    def __init__(
        self,
        max_depth: int = 3,
        min_samples_leaf: int = config.MIN_SUBGROUP_SIZE,
        random_state: int = config.RANDOM_SEED
    ):
        """
        Initialize the subgroup finder.

        Args:
            max_depth: Maximum depth of the summary tree
            min_samples_leaf: Minimum number of participants per leaf
            random_state: Random seed for reproducibility
        """
        self.max_depth = max_depth
        self.min_samples_leaf = min_samples_leaf
        self.random_state = random_state
        self.tree = None
        self.feature_names = None

    def _new_tree(self) -> DecisionTreeRegressor:
        return DecisionTreeRegressor(
            max_depth=self.max_depth,
            min_samples_leaf=self.min_samples_leaf,
            random_state=self.random_state
        )

    def fit(self, X: pd.DataFrame, target: np.ndarray) -> "CARTSubgroupFinder":
        """
        Fit the summary tree.

        Args:
            X: Covariate matrix used by the BCF model
            target: Per-participant CATE summary, usually the posterior mean
        """
        self.feature_names = list(X.columns)
        self.tree = self._new_tree()
        self.tree.fit(X, np.asarray(target, dtype=float))

        logger.info(
            f"Fitted CART summary tree with {self.tree.get_n_leaves()} leaves "
            f"(depth {self.tree.get_depth()})"
        )
        return self

    def _check_fitted(self) -> None:
        if self.tree is None:
            raise RuntimeError("Summary tree has not been fitted. Call fit() first.")

    def leaf_labels(self, X: pd.DataFrame) -> np.ndarray:
        """Leaf node id for each participant."""
        self._check_fitted()
        return self.tree.apply(X)

    def rules(self) -> Dict[int, str]:
        """Map each leaf node id to the conjunction of splits that defines it."""
        self._check_fitted()
        structure = self.tree.tree_
        rules = {}

        def walk(node: int, conditions: List[str]) -> None:
            left = structure.children_left[node]
            right = structure.children_right[node]
            if left == right:
                rules[node] = " & ".join(conditions) if conditions else "all participants"
                return

            name = self.feature_names[structure.feature[node]]
            threshold = structure.threshold[node]
            walk(left, conditions + [f"{name} <= {threshold:.3g}"])
            walk(right, conditions + [f"{name} > {threshold:.3g}"])

        walk(0, [])
        return rules

    def export_text(self) -> str:
        self._check_fitted()
        return export_text(self.tree, feature_names=self.feature_names, decimals=3)

    def summarize(
        self,
        posterior: BCFPosterior,
        X: pd.DataFrame,
        level: float = config.CREDIBLE_LEVEL
    ) -> pd.DataFrame:
        """
        Posterior average effect within each leaf subgroup.

        Returns:
            DataFrame with one row per leaf: rule, n, posterior mean, interval and
            probabilities of positive/negative effect, sorted by posterior mean
        """
        rules = self.rules()
        labels = pd.Series(self.leaf_labels(X)).map(rules)

        effects = subgroup_effects(posterior, labels, level=level, min_size=1)
        table = subgroup_table(effects).rename(columns={'subgroup': 'rule'})

        return table.sort_values('mean').reset_index(drop=True)

    def posterior_tree_uncertainty(
        self,
        posterior: BCFPosterior,
        X: pd.DataFrame,
        n_draws: int = 100,
        random_state: Optional[int] = None
    ) -> pd.Series:
        """
        Stability of the root split across individual posterior draws.

        Refits the summary tree to a random subset of CATE draws and reports the
        share of refits in which each covariate is chosen for the first split.
        """
        rng = np.random.default_rng(self.random_state if random_state is None else random_state)
        n_draws = min(n_draws, posterior.num_draws)
        draw_ids = rng.choice(posterior.num_draws, size=n_draws, replace=False)

        root_splits = Counter()
        for draw in draw_ids:
            tree = self._new_tree()
            tree.fit(X, posterior.tau_hat[draw])
            if tree.tree_.node_count > 1:
                root_splits[X.columns[tree.tree_.feature[0]]] += 1
            else:
                root_splits['(no split)'] += 1

        shares = pd.Series(root_splits, dtype=float) / n_draws
        logger.info(f"Root split stability over {n_draws} draws: {shares.round(3).to_dict()}")
        return shares.sort_values(ascending=False)
