"""
Feature engineering and model-input preparation for the BCF analysis.
"""

import pandas as pd
import numpy as np
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple
import logging

from .. import config


logger = logging.getLogger(__name__)


@dataclass
class ModelInputs:
    """Row-aligned covariate matrix, treatment vector and outcome vector."""
    X: pd.DataFrame
    z: np.ndarray
    y: np.ndarray
    covariate_names: List[str]

    @property
    def n_obs(self) -> int:
        return len(self.y)


def derived_column_names(pair: Sequence[str]) -> Tuple[str, str]:
    """Names of the sum and product columns built from a covariate pair."""
    first, second = pair
    return f"{first}_plus_{second}", f"{first}_times_{second}"


class TrialPreprocessor:
    """Prepares the trial dataset for Bayesian Causal Forest fitting."""

    def __init__(
        self,
        treatment_col: str = config.TREATMENT_COL,
        outcome_col: str = config.OUTCOME_COL,
        covariate_cols: Optional[List[str]] = None,
        categorical_cols: Optional[List[str]] = None,
        derived_pair: Tuple[str, str] = config.DERIVED_PAIR,
        id_col: str = config.ID_COL
    ):
        """
        Initialize the preprocessor.

        Args:
            treatment_col: Name of the binary treatment indicator
            outcome_col: Name of the outcome column
            covariate_cols: Baseline covariates to model (default: schema covariates)
            categorical_cols: Unordered categorical covariates to one-hot encode
            derived_pair: Two covariates combined into sum and product terms
            id_col: Participant identifier, never used as a covariate
        """
        self.treatment_col = treatment_col
        self.outcome_col = outcome_col
        self.covariate_cols = list(covariate_cols) if covariate_cols is not None else list(config.COVARIATE_COLS)
        self.categorical_cols = list(categorical_cols) if categorical_cols is not None else list(config.CATEGORICAL_COLS)
        self.derived_pair = tuple(derived_pair)
        self.id_col = id_col

    @property
    def derived_cols(self) -> List[str]:
        return list(derived_column_names(self.derived_pair))

    def add_derived_covariates(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Add the additive and multiplicative combination of the derived pair.

        Args:
            df: Trial dataset

        Returns:
            Copy of the dataset with the sum and product columns appended
        """
        first, second = self.derived_pair
        missing = [col for col in (first, second) if col not in df.columns]
        if missing:
            raise ValueError(f"Cannot build derived covariates, missing columns: {missing}")

        non_numeric = [col for col in (first, second) if not pd.api.types.is_numeric_dtype(df[col])]
        if non_numeric:
            raise ValueError(f"Derived covariates need numeric columns, got text in: {non_numeric}")

        sum_col, prod_col = derived_column_names(self.derived_pair)
        df = df.copy()
        df[sum_col] = df[first] + df[second]
        df[prod_col] = df[first] * df[second]

        logger.info(f"Added derived covariates {sum_col} and {prod_col}")
        return df

    def preprocess(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Apply feature engineering to the loaded trial dataset.

        Args:
            df: Trial dataset as returned by the loader

        Returns:
            Dataset with derived covariates and categorical dtypes, index reset
        """
        logger.info("Starting data preprocessing")
        df_processed = df.reset_index(drop=True)

        df_processed = self.add_derived_covariates(df_processed)

        for col in self.categorical_cols:
            if col in df_processed.columns:
                df_processed[col] = df_processed[col].astype('category')

        # Text-coded covariates outside the declared categoricals are treated as unordered levels
        text_coded = [col for col in self.model_covariates(df_processed)
                      if not pd.api.types.is_numeric_dtype(df_processed[col])
                      and not isinstance(df_processed[col].dtype, pd.CategoricalDtype)]
        for col in text_coded:
            df_processed[col] = df_processed[col].astype(str).astype('category')
        if text_coded:
            logger.info(f"Encoding text-coded covariates as categorical: {text_coded}")

        logger.info(f"Preprocessing complete. Final dataset shape: {df_processed.shape}")
        return df_processed

    def model_covariates(self, df: pd.DataFrame) -> List[str]:
        """Covariates passed to the model, in schema order followed by derived terms."""
        excluded = {self.treatment_col, self.outcome_col, self.id_col}
        candidates = self.covariate_cols + self.derived_cols
        return [col for col in candidates if col in df.columns and col not in excluded]

    def additive_covariates(self, df: pd.DataFrame) -> List[str]:
        """
        Numeric covariates for an additive projection of the treatment effect.

        The sum column is left out: it is an exact linear combination of the
        derived pair, so additive partial effects on all three are not identified.
        The product column is kept.
        """
        sum_col, _ = derived_column_names(self.derived_pair)
        return [col for col in self.model_covariates(df)
                if col != sum_col and pd.api.types.is_numeric_dtype(df[col])]

    def build_model_inputs(self, df: pd.DataFrame) -> ModelInputs:
        """
        Build the numeric covariate matrix, treatment and outcome vectors.

        Args:
            df: Preprocessed dataset

        Returns:
            ModelInputs with rows aligned to df
        """
        covariates = self.model_covariates(df)
        X = df[covariates]

        categorical = [col for col in covariates
                       if col in self.categorical_cols or not pd.api.types.is_numeric_dtype(X[col])]
        if categorical:
            X = pd.get_dummies(X, columns=categorical, dummy_na=False, drop_first=False)

        X = X.astype(float)
        z = df[self.treatment_col].to_numpy(dtype=int)
        y = df[self.outcome_col].to_numpy(dtype=float)

        logger.info(f"Prepared model inputs with {X.shape[1]} covariates for {len(y)} participants")

        return ModelInputs(X=X, z=z, y=y, covariate_names=list(X.columns))

    def get_feature_groups(self, df: pd.DataFrame) -> Dict[str, List[str]]:
        """
        Categorize features into groups for analysis.

        Args:
            df: Preprocessed dataset

        Returns:
            Dictionary mapping feature group names to column lists
        """
        present = lambda cols: [col for col in cols if col in df.columns]

        return {
            'demographics': present(config.DEMOGRAPHIC_COLS),
            'socioeconomic': present(config.SOCIOECONOMIC_COLS),
            'psychological': present(config.PSYCHOLOGICAL_COLS),
            'derived': present(self.derived_cols)
        }
