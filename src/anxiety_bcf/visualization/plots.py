"""
Visualization module for the BCF trial analysis.
"""

import matplotlib.pyplot as plt
import seaborn as sns
import plotly.express as px
import pandas as pd
import numpy as np
from typing import Dict, List, Tuple, Optional
import logging
from pathlib import Path

from sklearn.tree import plot_tree

from .. import config
from ..models.bcf_model import BCFPosterior
from ..models.causal_models import CausalEstimate
from ..models.posterior import PosteriorSummary, SubgroupEffect
from ..models.subgroups import CARTSubgroupFinder


logger = logging.getLogger(__name__)


class CausalVisualization:
    """Creates the diagnostic and summary figures for the BCF analysis."""

    def __init__(
        self,
        figsize: Tuple[int, int] = (10, 6),
        treatment_col: str = config.TREATMENT_COL,
        outcome_col: str = config.OUTCOME_COL
    ):
        """
        Initialize visualization settings.

        Args:
            figsize: Default figure size
            treatment_col: Name of treatment variable
            outcome_col: Name of outcome variable
        """
        plt.style.use('default')
        sns.set_palette("husl")
        self.figsize = figsize
        self.treatment_col = treatment_col
        self.outcome_col = outcome_col
        self.colors = {
            'primary': '#2E86AB',
            'secondary': '#A23B72',
            'accent': '#F18F01',
            'neutral': '#C73E1D',
            'light_gray': '#F5F5F5',
            'dark_gray': '#333333'
        }

    def _finish(self, fig, save_path: Optional[str], description: str) -> None:
        fig.tight_layout()
        if save_path:
            Path(save_path).parent.mkdir(parents=True, exist_ok=True)
            fig.savefig(save_path, dpi=300, bbox_inches='tight')
            logger.info(f"{description} saved to {save_path}")
        plt.close(fig)

    def plot_data_overview(
        self,
        df: pd.DataFrame,
        derived_cols: Optional[List[str]] = None,
        save_path: Optional[str] = None
    ) -> None:
        """
        Outcome by arm, arm sizes and distributions of the derived covariates.

        Args:
            df: Preprocessed dataset
            derived_cols: Derived covariate columns to show
            save_path: Path to save the figure
        """
        derived_cols = [col for col in (derived_cols or []) if col in df.columns]
        n_panels = 2 + len(derived_cols)
        fig, axes = plt.subplots(1, n_panels, figsize=(6 * n_panels, 5))
        fig.suptitle('Dataset Overview', fontsize=16, fontweight='bold')

        arm_labels = {0: 'Control', 1: 'Treated'}
        arm_colors = {0: self.colors['primary'], 1: self.colors['accent']}

        for arm, group in df.groupby(self.treatment_col):
            axes[0].hist(group[self.outcome_col], bins=20, alpha=0.6,
                         color=arm_colors.get(arm), label=arm_labels.get(arm, str(arm)))
        axes[0].set_title(f'{self.outcome_col} by Arm')
        axes[0].set_xlabel(self.outcome_col)
        axes[0].set_ylabel('Count')
        axes[0].legend()

        arm_counts = df[self.treatment_col].value_counts().sort_index()
        axes[1].bar([arm_labels.get(arm, str(arm)) for arm in arm_counts.index], arm_counts.values,
                    color=[arm_colors.get(arm, self.colors['dark_gray']) for arm in arm_counts.index])
        axes[1].set_title('Participants per Arm')
        axes[1].set_ylabel('Count')

        for ax, col in zip(axes[2:], derived_cols):
            ax.hist(df[col], bins=20, color=self.colors['secondary'], alpha=0.7)
            ax.set_title(f'{col} Distribution')
            ax.set_xlabel(col)
            ax.set_ylabel('Frequency')

        self._finish(fig, save_path, "Data overview plot")

    def create_correlation_heatmap(
        self,
        df: pd.DataFrame,
        variables: List[str],
        save_path: Optional[str] = None
    ) -> None:
        """
        Create correlation heatmap for selected variables.

        Args:
            df: Dataset
            variables: Variables to include in correlation matrix
            save_path: Path to save the figure
        """
        correlation_matrix = df[variables].corr()

        fig, ax = plt.subplots(figsize=(10, 8))

        sns.heatmap(correlation_matrix, annot=True, cmap='coolwarm', center=0,
                    square=True, fmt='.2f', cbar_kws={'shrink': 0.8}, ax=ax)

        ax.set_title('Correlation Matrix of Baseline Covariates', fontweight='bold')

        self._finish(fig, save_path, "Correlation heatmap")

    def plot_balance(self, balance_df: pd.DataFrame, save_path: Optional[str] = None) -> None:
        """Love plot of standardized mean differences between arms."""
        ordered = balance_df.sort_values('standardized_mean_diff')

        fig, ax = plt.subplots(figsize=(8, max(3, 0.4 * len(ordered))))
        ax.scatter(ordered['standardized_mean_diff'], np.arange(len(ordered)),
                   color=self.colors['primary'], s=50, zorder=3)
        for threshold in (-0.1, 0.1):
            ax.axvline(threshold, color=self.colors['neutral'], linestyle='--', alpha=0.7)
        ax.axvline(0, color=self.colors['dark_gray'], linewidth=1)

        ax.set_yticks(np.arange(len(ordered)))
        ax.set_yticklabels(ordered['covariate'])
        ax.set_xlabel('Standardized Mean Difference (Treated - Control)')
        ax.set_title('Baseline Covariate Balance', fontweight='bold')
        ax.grid(True, alpha=0.3)

        self._finish(fig, save_path, "Balance plot")

    def plot_causal_dag(self, save_path: Optional[str] = None) -> None:
        """
        Create a directed acyclic graph showing the trial's causal assumptions.

        Args:
            save_path: Path to save the figure
        """
        import networkx as nx

        G = nx.DiGraph()

        nodes = {
            'Randomization': (0, 1),
            'Intervention': (2, 1),
            'Baseline\nCovariates': (2, 2.5),
            'Moderators': (3, 0),
            'Anxiety': (4, 1)
        }

        for node, pos in nodes.items():
            G.add_node(node, pos=pos)

        edges = [
            ('Randomization', 'Intervention'),
            ('Intervention', 'Anxiety'),
            ('Baseline\nCovariates', 'Anxiety'),
            ('Moderators', 'Anxiety'),
        ]

        G.add_edges_from(edges)

        fig, ax = plt.subplots(figsize=(12, 8))

        pos = nx.get_node_attributes(G, 'pos')

        nx.draw_networkx_nodes(G, pos, node_color=self.colors['primary'],
                               node_size=3500, alpha=0.9, ax=ax)
        nx.draw_networkx_edges(G, pos, edge_color=self.colors['dark_gray'],
                               arrows=True, arrowsize=20, alpha=0.7, ax=ax, node_size=3500)
        # Moderation acts on the treatment effect, drawn as a dashed line into the effect path
        ax.annotate('', xy=(3, 1), xytext=(3, 0.2),
                    arrowprops=dict(arrowstyle='->', linestyle='--', color=self.colors['secondary']))

        nx.draw_networkx_labels(G, pos, font_size=10, font_weight='bold', ax=ax)

        nx.draw_networkx_nodes(G, pos, nodelist=['Intervention'],
                               node_color=self.colors['accent'], node_size=3500, alpha=0.9, ax=ax)
        nx.draw_networkx_nodes(G, pos, nodelist=['Anxiety'],
                               node_color=self.colors['neutral'], node_size=3500, alpha=0.9, ax=ax)

        ax.set_title('Causal Diagram of the Randomized Trial', fontweight='bold', fontsize=14)
        ax.axis('off')

        legend_elements = [
            plt.Line2D([0], [0], marker='o', color='w', markerfacecolor=self.colors['primary'],
                       markersize=15, label='Covariates'),
            plt.Line2D([0], [0], marker='o', color='w', markerfacecolor=self.colors['accent'],
                       markersize=15, label='Treatment'),
            plt.Line2D([0], [0], marker='o', color='w', markerfacecolor=self.colors['neutral'],
                       markersize=15, label='Outcome')
        ]
        ax.legend(handles=legend_elements, loc='upper right')

        self._finish(fig, save_path, "Causal DAG")

    def plot_sigma_trace(self, posterior: BCFPosterior, save_path: Optional[str] = None) -> None:
        """Trace of the residual standard deviation across retained draws."""
        fig, ax = plt.subplots(figsize=self.figsize)

        sigma = posterior.sigma
        ax.plot(np.arange(1, len(sigma) + 1), sigma, color=self.colors['primary'], linewidth=0.8)
        ax.axhline(sigma.mean(), color=self.colors['neutral'], linestyle='--', alpha=0.7,
                   label=f'Posterior mean {sigma.mean():.3f}')
        ax.set_xlabel('Draw')
        ax.set_ylabel(r'$\sigma$')
        ax.set_title('Residual SD Trace', fontweight='bold')
        ax.legend()
        ax.grid(True, alpha=0.3)

        self._finish(fig, save_path, "Sigma trace plot")

    def plot_fit_diagnostics(self, posterior: BCFPosterior, save_path: Optional[str] = None) -> None:
        """Observed vs fitted outcomes, and control-arm outcomes vs the prognostic surface."""
        fig, (ax1, ax2) = plt.subplots(1, 2, figsize=(14, 6))

        y = posterior.y
        y_fit = posterior.y_hat.mean(axis=0)
        mu_fit = posterior.mu_hat.mean(axis=0)
        control = posterior.z == 0

        limits = [min(y.min(), y_fit.min()), max(y.max(), y_fit.max())]
        ax1.scatter(y_fit, y, alpha=0.5, s=15, color=self.colors['primary'])
        ax1.plot(limits, limits, color=self.colors['neutral'], linestyle='--')
        ax1.set_xlabel('Posterior Mean Fitted Value')
        ax1.set_ylabel(f'Observed {self.outcome_col}')
        ax1.set_title('Observed vs Fitted', fontweight='bold')
        ax1.grid(True, alpha=0.3)

        ax2.scatter(mu_fit[control], y[control], alpha=0.5, s=15, color=self.colors['secondary'])
        if control.any():
            limits = [min(y[control].min(), mu_fit[control].min()),
                      max(y[control].max(), mu_fit[control].max())]
            ax2.plot(limits, limits, color=self.colors['neutral'], linestyle='--')
        ax2.set_xlabel(r'Posterior Mean $\mu(x)$')
        ax2.set_ylabel(f'Observed {self.outcome_col} (Control Arm)')
        ax2.set_title('Control Arm vs Prognostic Surface', fontweight='bold')
        ax2.grid(True, alpha=0.3)

        self._finish(fig, save_path, "Fit diagnostics plot")

    def plot_ate_posterior(
        self,
        draws: np.ndarray,
        summary: PosteriorSummary,
        save_path: Optional[str] = None
    ) -> None:
        """Histogram of ATE draws with the posterior mean and credible interval."""
        fig, ax = plt.subplots(figsize=self.figsize)

        ax.hist(draws, bins=40, color=self.colors['primary'], alpha=0.7, density=True)
        ax.axvline(summary.mean, color=self.colors['dark_gray'], linewidth=2,
                   label=f'Mean {summary.mean:.3f}')
        ax.axvspan(summary.lower, summary.upper, color=self.colors['accent'], alpha=0.2,
                   label=f'{summary.level:.0%} interval [{summary.lower:.3f}, {summary.upper:.3f}]')
        ax.axvline(0, color=self.colors['neutral'], linestyle='--', alpha=0.7)

        ax.set_xlabel('Average Treatment Effect')
        ax.set_ylabel('Posterior Density')
        ax.set_title(f'Posterior ATE (P(ATE < 0) = {summary.prob_negative:.2f})', fontweight='bold')
        ax.legend()

        self._finish(fig, save_path, "ATE posterior plot")

    def plot_cate_intervals(self, cate_df: pd.DataFrame, save_path: Optional[str] = None) -> None:
        """Participants ordered by posterior mean CATE with credible intervals."""
        ordered = cate_df.sort_values('cate_mean').reset_index(drop=True)
        x = np.arange(len(ordered))

        fig, ax = plt.subplots(figsize=self.figsize)
        ax.vlines(x, ordered['cate_lower'], ordered['cate_upper'],
                  color=self.colors['light_gray'] if len(ordered) > 500 else self.colors['primary'],
                  alpha=0.5, linewidth=0.8)
        ax.plot(x, ordered['cate_mean'], color=self.colors['dark_gray'], linewidth=1.5)
        ax.axhline(0, color=self.colors['neutral'], linestyle='--', alpha=0.7)

        ax.set_xlabel('Participant (ordered by posterior mean CATE)')
        ax.set_ylabel('Conditional Average Treatment Effect')
        ax.set_title('Individual CATE Estimates with Credible Intervals', fontweight='bold')
        ax.grid(True, alpha=0.3)

        self._finish(fig, save_path, "CATE interval plot")

    def plot_cate_vs_covariate(
        self,
        df: pd.DataFrame,
        cate_df: pd.DataFrame,
        column: str,
        save_path: Optional[str] = None
    ) -> None:
        """Posterior mean CATE against a single covariate."""
        fig, ax = plt.subplots(figsize=self.figsize)

        values = df.loc[cate_df.index, column]
        if pd.api.types.is_numeric_dtype(values) and values.nunique() > 6:
            ax.errorbar(values, cate_df['cate_mean'],
                        yerr=[cate_df['cate_mean'] - cate_df['cate_lower'],
                              cate_df['cate_upper'] - cate_df['cate_mean']],
                        fmt='o', markersize=3, alpha=0.4, color=self.colors['primary'],
                        ecolor=self.colors['light_gray'])
        else:
            plot_df = pd.DataFrame({column: values.astype(str), 'cate_mean': cate_df['cate_mean']})
            sns.boxplot(data=plot_df, x=column, y='cate_mean', ax=ax, color=self.colors['primary'])

        ax.axhline(0, color=self.colors['neutral'], linestyle='--', alpha=0.7)
        ax.set_xlabel(column)
        ax.set_ylabel('Posterior Mean CATE')
        ax.set_title(f'Treatment Effect by {column}', fontweight='bold')
        ax.grid(True, alpha=0.3)

        self._finish(fig, save_path, f"CATE vs {column} plot")

    def plot_subgroup_effects(
        self,
        effects: Dict[str, SubgroupEffect],
        title: str = 'Subgroup Treatment Effects',
        save_path: Optional[str] = None
    ) -> None:
        """Overlaid posterior densities of the subgroup average effects."""
        fig, ax = plt.subplots(figsize=self.figsize)

        for label, effect in effects.items():
            sns.kdeplot(effect.draws, ax=ax, fill=True, alpha=0.3,
                        label=f'{label} (n={effect.n}, mean {effect.summary.mean:.2f})')

        ax.axvline(0, color=self.colors['neutral'], linestyle='--', alpha=0.7)
        ax.set_xlabel('Subgroup Average Treatment Effect')
        ax.set_ylabel('Posterior Density')
        ax.set_title(title, fontweight='bold')
        ax.legend(fontsize=8)

        self._finish(fig, save_path, "Subgroup effects plot")

    def plot_treatment_effects(
        self,
        estimates: Dict[str, CausalEstimate],
        save_path: Optional[str] = None
    ) -> None:
        """
        Plot ATE estimates from different methods with intervals.

        Args:
            estimates: Dictionary of causal estimates
            save_path: Path to save the figure
        """
        fig, ax = plt.subplots(figsize=self.figsize)

        methods = list(estimates.keys())
        coefficients = [est.coefficient for est in estimates.values()]
        errors_lower = [est.coefficient - est.ci_lower for est in estimates.values()]
        errors_upper = [est.ci_upper - est.coefficient for est in estimates.values()]

        y_pos = np.arange(len(methods))

        ax.errorbar(coefficients, y_pos, xerr=[errors_lower, errors_upper],
                    fmt='o', markersize=8, capsize=5, capthick=2,
                    color=self.colors['primary'], ecolor=self.colors['dark_gray'])

        ax.axvline(x=0, color=self.colors['neutral'], linestyle='--', alpha=0.7)

        ax.set_yticks(y_pos)
        ax.set_yticklabels(methods)
        ax.set_xlabel('Average Treatment Effect')
        ax.set_title('ATE Estimates Across Methods', fontweight='bold')
        ax.grid(True, alpha=0.3)

        self._finish(fig, save_path, "Treatment effects plot")

    def plot_cart_tree(self, finder: CARTSubgroupFinder, save_path: Optional[str] = None) -> None:
        """Draw the CART summary tree of posterior mean CATEs."""
        depth = finder.tree.get_depth()
        fig, ax = plt.subplots(figsize=(max(10, 5 * depth), 4 + 2 * depth))

        plot_tree(finder.tree, feature_names=finder.feature_names, filled=True,
                  rounded=True, impurity=False, precision=2, fontsize=9, ax=ax)
        ax.set_title('CART Summary of Posterior Mean CATE', fontweight='bold')

        self._finish(fig, save_path, "CART tree plot")

    def plot_partial_effects(
        self,
        partials: Dict[str, pd.DataFrame],
        save_path: Optional[str] = None
    ) -> None:
        """Grid of additive partial effects on the CATE with confidence bands."""
        n = len(partials)
        n_cols = min(3, n)
        n_rows = int(np.ceil(n / n_cols))
        fig, axes = plt.subplots(n_rows, n_cols, figsize=(5 * n_cols, 4 * n_rows), squeeze=False)

        for ax, (name, frame) in zip(axes.flat, partials.items()):
            ax.plot(frame['value'], frame['effect'], color=self.colors['primary'], linewidth=2)
            ax.fill_between(frame['value'], frame['lower'], frame['upper'],
                            color=self.colors['primary'], alpha=0.2)
            ax.axhline(0, color=self.colors['neutral'], linestyle='--', alpha=0.7)
            ax.set_xlabel(name)
            ax.set_ylabel('Partial Effect on CATE')
            ax.grid(True, alpha=0.3)

        for ax in list(axes.flat)[n:]:
            ax.axis('off')

        fig.suptitle('Additive Summary of Treatment Effect Heterogeneity', fontsize=14, fontweight='bold')
        self._finish(fig, save_path, "Partial effects plot")

    def plot_summary_r2(self, r2: np.ndarray, save_path: Optional[str] = None) -> None:
        """Histogram of the per-draw summary R2."""
        r2 = np.asarray(r2)
        r2 = r2[~np.isnan(r2)]

        fig, ax = plt.subplots(figsize=self.figsize)
        ax.hist(r2, bins=30, color=self.colors['secondary'], alpha=0.7)
        if r2.size:
            ax.axvline(np.median(r2), color=self.colors['dark_gray'], linewidth=2,
                       label=f'Median {np.median(r2):.3f}')
            ax.legend()
        ax.set_xlabel(r'Summary $R^2$')
        ax.set_ylabel('Draws')
        ax.set_title('Fit of the Additive Summary Across Posterior Draws', fontweight='bold')

        self._finish(fig, save_path, "Summary R2 plot")

    def create_interactive_cate_plot(
        self,
        df: pd.DataFrame,
        cate_df: pd.DataFrame,
        x_col: str,
        color_col: Optional[str] = None,
        save_path: Optional[str] = None
    ):
        """
        Interactive scatter of posterior mean CATE with credible-interval error bars.

        When save_path is given the figure is written as a standalone HTML page with
        plotly.js embedded, so it opens without network access.

        Returns:
            The plotly figure
        """
        plot_df = cate_df.join(df[[c for c in (x_col, color_col) if c]], how='left')
        if color_col:
            plot_df[color_col] = plot_df[color_col].astype(str)

        fig = px.scatter(
            plot_df, x=x_col, y='cate_mean', color=color_col,
            error_y=plot_df['cate_upper'] - plot_df['cate_mean'],
            error_y_minus=plot_df['cate_mean'] - plot_df['cate_lower'],
            hover_data=['prob_negative'],
            labels={'cate_mean': 'Posterior mean CATE'},
            title=f'Posterior CATE by {x_col}'
        )
        fig.add_hline(y=0, line_dash='dash', line_color=self.colors['neutral'])

        if save_path:
            Path(save_path).parent.mkdir(parents=True, exist_ok=True)
            fig.write_html(str(save_path), include_plotlyjs=True, full_html=True)
            logger.info(f"Interactive CATE plot saved to {save_path}")

        return fig
