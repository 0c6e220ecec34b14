"""
Utility functions for the BCF trial analysis.
"""

import pandas as pd
import numpy as np
import logging
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Dict, List, Any, Optional, Sequence
import json


logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    Set up logging configuration.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file to write logs to
    """
    log_level = getattr(logging, level.upper())

    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True
    )


def to_serializable(obj: Any) -> Any:
    """Recursively convert numpy, pandas and dataclass objects into JSON-compatible values."""
    if is_dataclass(obj) and not isinstance(obj, type):
        return to_serializable(asdict(obj))
    if isinstance(obj, dict):
        return {str(key): to_serializable(value) for key, value in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_serializable(value) for value in obj]
    if isinstance(obj, pd.DataFrame):
        return to_serializable(obj.to_dict(orient='records'))
    if isinstance(obj, pd.Series):
        return to_serializable(obj.to_dict())
    if isinstance(obj, np.ndarray):
        return to_serializable(obj.tolist())
    if isinstance(obj, np.bool_):
        return bool(obj)
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, (float, np.floating)):
        value = float(obj)
        return None if np.isnan(value) or np.isinf(value) else value
    if isinstance(obj, Path):
        return str(obj)
    return obj


def save_results(results: Dict[str, Any], filepath: str) -> Path:
    """
    Write the analysis results dictionary as indented JSON.

    Entries that still cannot be encoded after conversion are stored as their
    string representation.
    """
    filepath = Path(filepath)
    if filepath.suffix != '.json':
        raise ValueError(f"Results are written as JSON, got a '{filepath.suffix}' path")

    encoded = {}
    for key, value in to_serializable(results).items():
        try:
            json.dumps(value)
            encoded[key] = value
        except (TypeError, ValueError):
            encoded[key] = str(value)

    filepath.parent.mkdir(parents=True, exist_ok=True)
    with open(filepath, 'w') as f:
        json.dump(encoded, f, indent=2)

    logger.info(f"Results saved to {filepath}")
    return filepath


def calculate_summary_statistics(
    df: pd.DataFrame,
    columns: Sequence[str],
    group_col: Optional[str] = None
) -> pd.DataFrame:
    """
    Descriptive statistics for numeric columns, optionally split by a grouping column.

    Args:
        df: Dataset
        columns: Columns to describe; non-numeric ones are skipped
        group_col: Optional column to group by, e.g. the treatment arm

    Returns:
        Long table with one row per (group, variable) and n/mean/sd/min/max columns
    """
    numeric = [col for col in columns if col in df.columns and pd.api.types.is_numeric_dtype(df[col])]
    stats = ['count', 'mean', 'std', 'min', 'max']

    def describe(frame: pd.DataFrame) -> pd.DataFrame:
        summary = frame[numeric].agg(stats).T
        summary.index.name = 'variable'
        return summary.rename(columns={'count': 'n', 'std': 'sd'}).reset_index()

    if not group_col:
        return describe(df)

    parts = []
    for group, frame in df.groupby(group_col):
        part = describe(frame)
        part.insert(0, group_col, group)
        parts.append(part)
    return pd.concat(parts, ignore_index=True)


def check_balance(df: pd.DataFrame, treatment_col: str, covariates: List[str]) -> pd.DataFrame:
    """
    Standardized mean differences between the arms, one row per numeric covariate.

    The SMD uses the pooled SD sqrt((var_t + var_c) / 2); a covariate constant in
    both arms gets an SMD of 0.
    """
    usable = [col for col in covariates
              if col in df.columns and pd.api.types.is_numeric_dtype(df[col])]
    by_arm = df.groupby(treatment_col)[usable].agg(['mean', 'std', 'var'])

    rows = []
    for covariate in usable:
        stats = by_arm[covariate]
        pooled_sd = np.sqrt((stats.loc[1, 'var'] + stats.loc[0, 'var']) / 2)
        diff = stats.loc[1, 'mean'] - stats.loc[0, 'mean']
        rows.append({
            'covariate': covariate,
            'treated_mean': stats.loc[1, 'mean'],
            'control_mean': stats.loc[0, 'mean'],
            'treated_std': stats.loc[1, 'std'],
            'control_std': stats.loc[0, 'std'],
            'standardized_mean_diff': diff / pooled_sd if pooled_sd > 0 else 0.0
        })

    return pd.DataFrame(rows, columns=['covariate', 'treated_mean', 'control_mean', 'treated_std',
                                       'control_std', 'standardized_mean_diff'])


def validate_data_quality(df: pd.DataFrame, treatment_col: str, outcome_col: str) -> Dict[str, Any]:
    """
    Data quality metrics for the trial dataset.

    Covers missingness, duplicate participants, IQR outliers per numeric column,
    the treatment allocation shares and a description of the outcome.
    """
    missing_counts = df.isnull().sum()
    numeric = df.select_dtypes(include=[np.number])
    q1, q3 = numeric.quantile(0.25), numeric.quantile(0.75)
    iqr = q3 - q1
    outliers = ((numeric < q1 - 1.5 * iqr) | (numeric > q3 + 1.5 * iqr)).sum()

    metrics = {
        'n_observations': len(df),
        'n_features': len(df.columns),
        'missing_data': {
            'total_missing': int(missing_counts.sum()),
            'features_with_missing': int((missing_counts > 0).sum()),
            'max_missing_feature': missing_counts.idxmax() if missing_counts.sum() > 0 else None,
            'max_missing_count': int(missing_counts.max())
        },
        'duplicates': int(df.duplicated().sum()),
        'outliers': {col: int(n) for col, n in outliers.items()}
    }

    if treatment_col in df.columns:
        metrics['treatment_distribution'] = df[treatment_col].value_counts(normalize=True).to_dict()
    if outcome_col in df.columns:
        metrics['outcome_summary'] = df[outcome_col].describe().to_dict()

    return metrics


def format_results_table(estimates: Dict[str, Any], title: str = "Treatment Effect Estimates") -> str:
    """
    Plain-text comparison of ATE estimates, one line per method.

    Args:
        estimates: Mapping of method name to CausalEstimate
        title: Heading printed above the table
    """
    headers = ["Method", "Estimate", "Std Error", "Interval", "P-value", "Excl. zero"]
    width = 20
    lines = [f"\n{title}", "=" * len(title), " | ".join(f"{h:>{width}}" for h in headers),
             "-" * ((width + 3) * len(headers) - 3)]

    for method, est in estimates.items():
        if not hasattr(est, 'coefficient'):
            continue
        cells = [
            method[:width],
            f"{est.coefficient:.4f}",
            f"{est.std_error:.4f}",
            f"[{est.ci_lower:.3f}, {est.ci_upper:.3f}]",
            f"{est.p_value:.4f}",
            "Yes" if est.is_significant else "No"
        ]
        lines.append(" | ".join(f"{cell:>{width}}" for cell in cells))

    return "\n".join(lines)


def ensure_directory(path: str) -> Path:
    """Create the directory (and parents) if missing and return it as a Path."""
    path_obj = Path(path)
    path_obj.mkdir(parents=True, exist_ok=True)
    return path_obj
