"""
Bayesian Causal Forest analysis of a randomized anxiety intervention trial.

This package fits a Bayesian Causal Forest to trial data and summarizes the posterior
treatment effects through diagnostic plots, subgroup summaries, CART subgroup discovery
and additive partial-effect summaries.
"""

__version__ = "1.0.0"
__author__ = "Data Science Research"
