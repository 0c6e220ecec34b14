"""
Data loading module for the anxiety intervention trial.
"""

import pandas as pd
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import logging

from .. import config


logger = logging.getLogger(__name__)


class TrialDataLoader:
    """Loads the trial CSV and checks it against the documented column schema."""

    def __init__(
        self,
        path: Union[str, Path] = config.DEFAULT_DATA_FILE,
        treatment_col: str = config.TREATMENT_COL,
        outcome_col: str = config.OUTCOME_COL,
        required_cols: Optional[List[str]] = None
    ):
        """
        Initialize the data loader.

        Args:
            path: Location of the trial CSV file
            treatment_col: Name of the binary treatment indicator
            outcome_col: Name of the outcome column
            required_cols: Covariates that must be present (default: all schema covariates)
        """
        self.path = Path(path)
        self.treatment_col = treatment_col
        self.outcome_col = outcome_col
        self.required_cols = list(required_cols) if required_cols is not None else list(config.COVARIATE_COLS)
        self._raw_data = None
        self._n_dropped = 0

    def load_data(self, drop_missing: bool = True) -> pd.DataFrame:
        """
        Load the trial dataset and validate its schema.

        Args:
            drop_missing: Whether to drop participants with missing analysis variables

        Returns:
            Trial dataset with one row per participant
        """
        logger.info(f"Loading trial dataset from {self.path}")

        df = pd.read_csv(self.path)
        self._validate_schema(df)

        analysis_cols = [self.treatment_col, self.outcome_col] + self.required_cols

        if drop_missing:
            initial_size = len(df)
            df = df.dropna(subset=analysis_cols).reset_index(drop=True)
            self._n_dropped = initial_size - len(df)
            logger.info(f"Removed {self._n_dropped} participants with missing analysis variables")

        if len(df) == 0:
            raise ValueError("No participants left after removing missing values")

        df[self.treatment_col] = df[self.treatment_col].astype(int)

        arm_sizes = df[self.treatment_col].value_counts()
        if arm_sizes.get(0, 0) == 0 or arm_sizes.get(1, 0) == 0:
            raise ValueError(f"Both trial arms must be non-empty, got arm sizes {arm_sizes.to_dict()}")

        self._raw_data = df
        logger.info(f"Loaded dataset with {len(df)} participants and {len(df.columns)} columns")

        return df

    def _validate_schema(self, df: pd.DataFrame) -> None:
        """Check required columns, a 0/1 treatment and a numeric outcome."""
        expected = [self.treatment_col, self.outcome_col] + self.required_cols
        missing = [col for col in expected if col not in df.columns]
        if missing:
            raise ValueError(f"Trial data is missing required columns: {missing}")

        treatment_values = set(df[self.treatment_col].dropna().unique())
        if not treatment_values <= {0, 1}:
            raise ValueError(
                f"Treatment column '{self.treatment_col}' must be coded 0/1, "
                f"found values {sorted(treatment_values)}"
            )

        if not pd.api.types.is_numeric_dtype(df[self.outcome_col]):
            raise ValueError(f"Outcome column '{self.outcome_col}' must be numeric")

    def get_arm_sizes(self) -> Dict[int, int]:
        """Number of participants in each arm (0 = control, 1 = treated)."""
        if self._raw_data is None:
            return {}
        counts = self._raw_data[self.treatment_col].value_counts()
        return {int(arm): int(n) for arm, n in counts.sort_index().items()}

    def describe_dataset(self) -> Dict[str, Any]:
        """
        Describe the loaded trial: size, exclusions, arm sizes and outcome by arm.

        Returns:
            Dictionary of descriptive statistics; empty if nothing is loaded yet
        """
        if self._raw_data is None:
            logger.error("No data loaded. Call load_data() first.")
            return {}

        df = self._raw_data
        by_arm = df.groupby(self.treatment_col)[self.outcome_col].agg(['mean', 'std'])

        description = {
            'n_participants': len(df),
            'n_dropped_missing': self._n_dropped,
            'arm_sizes': self.get_arm_sizes(),
            'outcome_by_arm': {
                int(arm): {'mean': float(row['mean']), 'sd': float(row['std'])}
                for arm, row in by_arm.iterrows()
            }
        }

        logger.info(
            f"Trial dataset: {description['n_participants']} participants "
            f"({self._n_dropped} dropped for missing values), arm sizes {description['arm_sizes']}"
        )
        return description
