"""
Relation Reader.

Loads build and probe relations from CSV or Parquet files with pandas. Only
the two configured columns are kept; rows with a missing key or payload are
dropped with a warning.
"""

import os
import logging
from typing import Optional, Tuple

import pandas as pd
import pyarrow.parquet as pq

from samplejoin.core.config import Config
from samplejoin.core.errors import ConfigurationError
from samplejoin.schema.relation import Relation


logger = logging.getLogger(__name__)


def read_relation(
    path: str,
    key_column: str,
    payload_column: str,
    input_format: str = "csv",
    name: Optional[str] = None
) -> Relation:
    """
    Read a two-column relation from disk.

    Args:
        path: File path
        key_column: Column holding the join key
        payload_column: Column holding the payload
        input_format: 'csv' or 'parquet'
        name: Relation name for logging (defaults to the file name)

    Returns:
        Relation with the key and payload columns

    Raises:
        FileNotFoundError: If the file does not exist
        ConfigurationError: If a column is missing or the format is unknown
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Relation file not found: {path}")

    columns = [key_column, payload_column]
    if input_format == 'csv':
        df = pd.read_csv(path)
        available = list(df.columns)
    elif input_format == 'parquet':
        # Check the schema first; only the two columns are loaded
        available = pq.read_schema(path).names
        df = None
    else:
        raise ConfigurationError(f"Unsupported input format: {input_format}")

    missing = [c for c in columns if c not in available]
    if missing:
        raise ConfigurationError(
            f"{path}: missing column(s) {missing}; available: {available}"
        )
    if df is None:
        df = pd.read_parquet(path, columns=columns)

    df = df[columns]
    n_before = len(df)
    df = df.dropna()
    if len(df) < n_before:
        logger.warning(f"{path}: dropped {n_before - len(df):,} rows with missing values")

    relation = Relation(
        keys=df[key_column].to_numpy(),
        payloads=df[payload_column].to_numpy(),
        name=name or os.path.basename(path),
    )
    logger.info(f"Loaded {relation!r} from {path}")
    return relation


def read_relations(config: Config) -> Tuple[Relation, Relation]:
    """Read the build (R1) and probe (R2) relations named in the configuration."""
    cols = config.columns
    r1 = read_relation(
        config.data.r1_path, cols['r1_key'], cols['r1_payload'],
        input_format=config.data.input_format, name="R1",
    )
    r2 = read_relation(
        config.data.r2_path, cols['r2_key'], cols['r2_payload'],
        input_format=config.data.input_format, name="R2",
    )
    return r1, r2
