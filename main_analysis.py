"""
Main analysis script for the Bayesian Causal Forest analysis of the anxiety intervention trial.

Loads the trial CSV, engineers the derived covariates, fits a BCF model and writes the
diagnostic figures, posterior summaries and a PDF report.
"""

import argparse
import sys
from pathlib import Path
import logging

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd

# Add src to path for imports
sys.path.append(str(Path(__file__).parent / "src"))

from anxiety_bcf import config
from anxiety_bcf.data.loader import TrialDataLoader
from anxiety_bcf.data.preprocessor import TrialPreprocessor
from anxiety_bcf.models.bcf_model import BCFAnalysis, BCFConfig
from anxiety_bcf.models.posterior import (
    ate_draws, summarize_draws, cate_summary, subgroup_effects, subgroup_contrast,
    subgroup_table, moderator_subgroups, fit_diagnostics
)
from anxiety_bcf.models.subgroups import CARTSubgroupFinder
from anxiety_bcf.models.additive import AdditiveSummary
from anxiety_bcf.models.causal_models import CausalInferenceEngine
from anxiety_bcf.visualization.plots import CausalVisualization
from anxiety_bcf.utils.helpers import (
    setup_logging, save_results, check_balance, validate_data_quality,
    calculate_summary_statistics, format_results_table, ensure_directory
)
from anxiety_bcf.utils.report import ReportBuilder


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="BCF analysis of the anxiety intervention trial")
    parser.add_argument("--data", type=Path, default=config.DEFAULT_DATA_FILE,
                        help="Path to the trial CSV file")
    parser.add_argument("--output-dir", type=Path, default=config.OUTPUTS_DIR,
                        help="Directory for figures, results and the report")
    parser.add_argument("--quick", action="store_true",
                        help="Use a short sampler run for smoke testing")
    parser.add_argument("--num-mcmc", type=int, default=None, help="Retained MCMC draws")
    parser.add_argument("--num-burnin", type=int, default=None, help="Burn-in MCMC iterations")
    parser.add_argument("--seed", type=int, default=config.RANDOM_SEED, help="Random seed")
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    parser.add_argument("--log-file", default=None, help="Optional log file")
    parser.add_argument("--no-dml", action="store_true",
                        help="Skip the Double ML cross-check of the ATE")
    return parser.parse_args(argv)


def build_bcf_config(args: argparse.Namespace) -> BCFConfig:
    bcf_config = BCFConfig.quick(args.seed) if args.quick else BCFConfig(random_seed=args.seed)
    if args.num_mcmc is not None:
        bcf_config.num_mcmc = args.num_mcmc
    if args.num_burnin is not None:
        bcf_config.num_burnin = args.num_burnin
    return bcf_config


def main(argv=None) -> dict:
    """Run the complete BCF analysis pipeline."""
    args = parse_args(argv)

    # Setup
    setup_logging(level=args.log_level, log_file=args.log_file)
    logger = logging.getLogger(__name__)

    figures_dir = ensure_directory(args.output_dir / "figures")
    results_dir = ensure_directory(args.output_dir / "results")
    reports_dir = ensure_directory(args.output_dir / "reports")

    logger.info("Starting BCF analysis of the anxiety intervention trial")

    # Step 1: Load and validate data
    logger.info("Step 1: Loading trial data")

    loader = TrialDataLoader(args.data)
    raw_data = loader.load_data(drop_missing=True)
    description = loader.describe_dataset()

    quality_metrics = validate_data_quality(raw_data, config.TREATMENT_COL, config.OUTCOME_COL)
    logger.info(f"Data quality: {quality_metrics['n_observations']} participants, "
                f"{quality_metrics['n_features']} columns")

    # Step 2: Feature engineering and randomization check
    logger.info("Step 2: Feature engineering and balance check")

    preprocessor = TrialPreprocessor()
    processed_data = preprocessor.preprocess(raw_data)
    inputs = preprocessor.build_model_inputs(processed_data)
    feature_groups = preprocessor.get_feature_groups(processed_data)
    arm_statistics = calculate_summary_statistics(
        processed_data, [config.OUTCOME_COL] + list(preprocessor.derived_pair) + preprocessor.derived_cols,
        group_col=config.TREATMENT_COL
    )

    balance_frame = pd.concat(
        [inputs.X, processed_data[[config.TREATMENT_COL]]], axis=1
    )
    balance_stats = check_balance(balance_frame, config.TREATMENT_COL, inputs.covariate_names)
    imbalanced = balance_stats[balance_stats['standardized_mean_diff'].abs() > 0.1]
    logger.info(f"Found {len(imbalanced)} covariates with |SMD| > 0.1")

    # Step 3: Exploratory plots
    logger.info("Step 3: Exploratory visualization")

    visualizer = CausalVisualization()
    visualizer.plot_data_overview(processed_data, preprocessor.derived_cols,
                                  save_path=figures_dir / "data_overview.png")
    visualizer.plot_causal_dag(save_path=figures_dir / "causal_dag.png")
    visualizer.plot_balance(balance_stats, save_path=figures_dir / "balance.png")

    numeric_covariates = [col for col in preprocessor.model_covariates(processed_data)
                          if pd.api.types.is_numeric_dtype(processed_data[col])]
    visualizer.create_correlation_heatmap(
        processed_data, numeric_covariates + [config.OUTCOME_COL],
        save_path=figures_dir / "correlation_matrix.png"
    )

    # Step 4: Fit the Bayesian Causal Forest
    logger.info("Step 4: Fitting the Bayesian Causal Forest")

    bcf_config = build_bcf_config(args)
    analysis = BCFAnalysis(bcf_config)
    posterior = analysis.fit(inputs)

    # Step 5: Diagnostics
    logger.info("Step 5: Model diagnostics")

    diagnostics = fit_diagnostics(posterior)
    logger.info(f"Diagnostics: RMSE={diagnostics['rmse']:.3f}, R2={diagnostics['r_squared']:.3f}, "
                f"sigma ESS={diagnostics['sigma_ess']:.0f}")
    visualizer.plot_sigma_trace(posterior, save_path=figures_dir / "sigma_trace.png")
    visualizer.plot_fit_diagnostics(posterior, save_path=figures_dir / "fit_diagnostics.png")

    # Step 6: Average and conditional treatment effects
    logger.info("Step 6: Average and conditional treatment effects")

    ate = ate_draws(posterior)
    ate_summary = summarize_draws(ate)
    logger.info(f"Posterior ATE: {ate_summary.mean:.3f} "
                f"[{ate_summary.lower:.3f}, {ate_summary.upper:.3f}], "
                f"P(ATE < 0) = {ate_summary.prob_negative:.3f}")
    visualizer.plot_ate_posterior(ate, ate_summary, save_path=figures_dir / "ate_posterior.png")

    cates = cate_summary(posterior)
    visualizer.plot_cate_intervals(cates, save_path=figures_dir / "cate_intervals.png")
    for column in preprocessor.derived_pair:
        visualizer.plot_cate_vs_covariate(processed_data, cates, column,
                                          save_path=figures_dir / f"cate_vs_{column}.png")

    # Step 7: Subgroup summaries for configured moderators
    logger.info("Step 7: Subgroup treatment effects")

    moderator_results = {}
    for moderator in config.SUBGROUP_MODERATORS:
        if moderator not in processed_data.columns:
            logger.warning(f"Moderator {moderator} not in dataset, skipping")
            continue

        labels = moderator_subgroups(processed_data, moderator)
        effects = subgroup_effects(posterior, labels)
        if not effects:
            continue

        ordered = sorted(effects, key=lambda label: effects[label].summary.mean)
        contrast = subgroup_contrast(effects, ordered[-1], ordered[0]) if len(ordered) > 1 else None

        moderator_results[moderator] = {
            'table': subgroup_table(effects),
            'contrast': {'first': ordered[-1], 'second': ordered[0], **contrast.as_dict()} if contrast else None
        }
        visualizer.plot_subgroup_effects(effects, title=f'Treatment Effect by {moderator}',
                                         save_path=figures_dir / f"subgroups_{moderator}.png")

    # Step 8: CART subgroup discovery
    logger.info("Step 8: CART subgroup discovery")

    finder = CARTSubgroupFinder(max_depth=3, random_state=args.seed)
    finder.fit(inputs.X, cates['cate_mean'])
    cart_table = finder.summarize(posterior, inputs.X)
    root_stability = finder.posterior_tree_uncertainty(posterior, inputs.X, n_draws=100)
    visualizer.plot_cart_tree(finder, save_path=figures_dir / "cart_tree.png")

    # Step 9: Additive partial-effect summaries
    logger.info("Step 9: Additive (GAM) partial effects")

    gam_features = preprocessor.additive_covariates(processed_data)
    additive = AdditiveSummary(gam_features)
    additive.fit(inputs.X, cates['cate_mean'])
    partials = additive.partial_effects()
    summary_r2 = additive.summary_r2(posterior, inputs.X, n_draws=100, random_state=args.seed)
    visualizer.plot_partial_effects(partials, save_path=figures_dir / "partial_effects.png")
    visualizer.plot_summary_r2(summary_r2, save_path=figures_dir / "summary_r2.png")

    # Step 10: ATE cross-checks
    logger.info("Step 10: ATE cross-checks")

    engine = CausalInferenceEngine(n_folds=5, random_state=args.seed)
    estimates = {'bcf': engine.bcf_as_estimate(ate_summary)}
    estimates['difference_in_means'] = engine.difference_in_means(processed_data)

    learner_performance = {}
    if not args.no_dml:
        dml_frame = pd.concat(
            [inputs.X, processed_data[[config.TREATMENT_COL, config.OUTCOME_COL]]], axis=1
        )
        try:
            dml_data = engine.prepare_data(dml_frame, x_cols=inputs.covariate_names)
            estimates.update(engine.estimate_treatment_effects(dml_data, methods=['linear', 'random_forest']))
            learner_performance = engine.evaluate_learner_performance()
        except Exception as e:
            logger.error(f"Double ML cross-check failed: {e}")
            learner_performance = {'error': str(e)}

    visualizer.plot_treatment_effects(estimates, save_path=figures_dir / "ate_comparison.png")

    # Step 11: Results and report
    logger.info("Step 11: Writing results and report")

    results = {
        'data_summary': {
            **description,
            'n_covariates': len(inputs.covariate_names),
            'outcome_mean': float(np.mean(inputs.y)),
            'feature_groups': feature_groups
        },
        'arm_statistics': arm_statistics,
        'data_quality': quality_metrics,
        'sampler': bcf_config,
        'diagnostics': diagnostics,
        'ate': ate_summary.as_dict(),
        'ate_estimates': estimates,
        'learner_performance': learner_performance,
        'moderators': moderator_results,
        'cart_subgroups': cart_table,
        'cart_root_stability': root_stability,
        'additive_summary': {
            'features': gam_features,
            'statistics': additive.statistics(),
            'summary_r2_median': float(np.nanmedian(summary_r2)),
            'summary_r2_interval': np.nanquantile(summary_r2, [0.025, 0.975])
        },
        'balance': balance_stats
    }
    save_results(results, results_dir / "bcf_analysis_results.json")
    cates.join(processed_data).to_csv(results_dir / "cate_estimates.csv", index=False)

    interactive_path = figures_dir / "cate_interactive.html"
    color_col = config.SUBGROUP_MODERATORS[0] if config.SUBGROUP_MODERATORS[0] in processed_data else None
    visualizer.create_interactive_cate_plot(processed_data, cates, x_col=preprocessor.derived_cols[0],
                                            color_col=color_col, save_path=interactive_path)

    report = ReportBuilder("Bayesian Causal Forest Analysis of an Anxiety Intervention Trial")
    report.add_section(
        "Data",
        f"{description['n_participants']} participants were randomized "
        f"({description['n_dropped_missing']} excluded for missing values). The model uses "
        f"{len(inputs.covariate_names)} covariates, including the sum and product of "
        f"{' and '.join(preprocessor.derived_pair)}."
    )
    report.add_table(
        pd.DataFrame([{'group': group, 'covariates': ', '.join(cols)}
                      for group, cols in feature_groups.items() if cols]),
        "Covariate groups."
    )
    report.add_table(arm_statistics, "Outcome and derived covariates by arm.")
    report.add_figure(figures_dir / "data_overview.png", "Outcome by arm and derived covariates.")
    report.add_figure(figures_dir / "causal_dag.png", "Assumed causal structure of the trial.")
    report.add_table(balance_stats[['covariate', 'treated_mean', 'control_mean', 'standardized_mean_diff']],
                     "Baseline balance between arms (standardized mean differences).")
    report.add_figure(figures_dir / "balance.png")
    report.add_figure(figures_dir / "correlation_matrix.png")

    report.add_section(
        "Model diagnostics",
        "The residual SD trace should look stationary. Fitted values should track the observed "
        "outcomes, and the prognostic surface should track control-arm outcomes."
    )
    report.add_table(pd.DataFrame([diagnostics]))
    report.add_figure(figures_dir / "sigma_trace.png")
    report.add_figure(figures_dir / "fit_diagnostics.png")

    report.add_section(
        "Average treatment effect",
        "The ATE posterior averages each draw's individual effects over the sample. It is compared "
        "with the unadjusted difference in means and Double ML estimates."
    )
    report.add_table(pd.DataFrame([ate_summary.as_dict()]))
    report.add_figure(figures_dir / "ate_posterior.png")
    report.add_preformatted(format_results_table(estimates, "ATE Estimates"))
    report.add_figure(figures_dir / "ate_comparison.png")

    report.add_section(
        "Conditional treatment effects",
        f"An interactive version of the CATE scatter is saved alongside the figures as "
        f"{interactive_path.name}."
    )
    report.add_figure(figures_dir / "cate_intervals.png")
    report.add_figure_row([figures_dir / f"cate_vs_{column}.png" for column in preprocessor.derived_pair],
                          "Posterior mean CATE against the derived pair.")

    report.add_section(
        "Subgroup effects",
        "Subgroup effects are posterior averages of individual effects within each subgroup. Each "
        "contrast compares the subgroups with the largest and smallest mean effect."
    )
    for moderator, summary in moderator_results.items():
        report.add_table(summary['table'], f"Effect by {moderator}")
        if summary['contrast']:
            report.add_table(pd.DataFrame([summary['contrast']]), f"Contrast for {moderator}")
        report.add_figure(figures_dir / f"subgroups_{moderator}.png")

    report.add_section(
        "CART subgroup discovery",
        "A regression tree fitted to posterior mean CATEs proposes subgroups. The effect of each "
        "leaf is then summarized over the full posterior."
    )
    report.add_figure(figures_dir / "cart_tree.png")
    report.add_preformatted(finder.export_text())
    report.add_table(cart_table)
    report.add_table(root_stability.rename('share').reset_index().rename(columns={'index': 'root_split'}),
                     "Share of posterior draws whose refitted tree splits first on each covariate.")

    report.add_section(
        "Additive partial effects",
        "A GAM fitted to posterior mean CATEs summarizes how the effect varies with each covariate. "
        "The summary R2 shows how much of each draw's heterogeneity the additive projection captures."
    )
    report.add_table(pd.DataFrame([additive.statistics()]))
    report.add_figure(figures_dir / "partial_effects.png")
    report.add_figure(figures_dir / "summary_r2.png")

    report_path = report.save(reports_dir / "bcf_analysis_report.pdf")

    print(format_results_table(estimates, "ATE Estimates"))
    print(f"\nCART subgroups:\n{finder.export_text()}")
    print(f"\nAnalysis complete! Report written to {report_path}")

    logger.info("Analysis complete! Check the output directory for figures, results and the report.")
    return results


if __name__ == "__main__":
    main()
