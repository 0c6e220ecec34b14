"""
Project paths, column schema and analysis defaults.
"""

from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[2]

DATA_DIR = PROJECT_ROOT / "data"
OUTPUTS_DIR = PROJECT_ROOT / "outputs"
FIGURES_DIR = OUTPUTS_DIR / "figures"
RESULTS_DIR = OUTPUTS_DIR / "results"
REPORTS_DIR = OUTPUTS_DIR / "reports"

DEFAULT_DATA_FILE = DATA_DIR / "anxiety_trial.csv"

# Column schema of the trial CSV
ID_COL = "participant_id"
TREATMENT_COL = "treatment"
OUTCOME_COL = "anxiety"

DEMOGRAPHIC_COLS = ["age", "gender", "ethnicity"]
SOCIOECONOMIC_COLS = ["income", "education", "employed"]
PSYCHOLOGICAL_COLS = ["baseline_anxiety", "depression", "stress", "self_esteem"]

COVARIATE_COLS = DEMOGRAPHIC_COLS + SOCIOECONOMIC_COLS + PSYCHOLOGICAL_COLS

# Unordered categories; one-hot encoded before model fitting
CATEGORICAL_COLS = ["gender", "ethnicity"]

# Two baseline covariates combined into a sum and a product term
DERIVED_PAIR = ("baseline_anxiety", "depression")

# Candidate effect moderators for subgroup summaries
SUBGROUP_MODERATORS = ["gender", "baseline_anxiety", "depression"]

RANDOM_SEED = 2024
CREDIBLE_LEVEL = 0.95
MIN_SUBGROUP_SIZE = 20
