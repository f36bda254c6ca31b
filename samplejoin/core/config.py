"""
Configuration management for the Sample-Join Estimator.
Handles loading, validation, and access to configuration parameters.
"""

import configparser
import os
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from samplejoin.core.errors import ConfigurationError


logger = logging.getLogger(__name__)


METHODS = ('ssj', 'hssj', 'ws', 'hws', 'us')
FILTER_MODES = ('full', 'filtered', 'naive')
AGGREGATES = ('sum_c', 'sum_b', 'count')
FILTERS = ('none', 'parity')
HEURISTICS = ('simple', 'complete')
SAMPLER_KINDS = ('auto', 'exact', 'heuristic', 'reservoir')
INPUT_FORMATS = ('csv', 'parquet')


@dataclass
class EstimatorConfig:
    """Sample-join estimation settings."""

    method: str = "ssj"  # 'ssj', 'hssj', 'ws', 'hws' or 'us'
    sample_size: int = 100  # Target number of filter-passing join tuples (m)
    filter_mode: str = "full"  # 'full' (no filter), 'filtered' (W' normalization), 'naive' (W normalization)

    # Known selectivity of the filter; computed from the exact join if unset
    filter_selectivity: Optional[float] = None

    # Slack terms of the intermediate draw size: constant + ceil(factor * m / selectivity)
    oversampling_factor: float = 1.2
    oversampling_constant: int = 100

    aggregate: str = "sum_c"  # 'sum_c', 'sum_b' or 'count'
    r1_filter: str = "none"  # 'none' or 'parity'
    r2_filter: str = "parity"

    seed: Optional[int] = None  # Random seed (None = fresh entropy)
    num_runs: int = 1  # Number of independent estimates per invocation

    def validate(self) -> None:
        """Validate estimator configuration."""
        if self.method not in METHODS:
            raise ConfigurationError(f"method must be one of {METHODS}, got {self.method}")

        if self.sample_size < 1:
            raise ConfigurationError(f"sample_size must be >= 1, got {self.sample_size}")

        if self.filter_mode not in FILTER_MODES:
            raise ConfigurationError(f"filter_mode must be one of {FILTER_MODES}, got {self.filter_mode}")

        if self.filter_selectivity is not None and not 0 < self.filter_selectivity <= 1:
            raise ConfigurationError(f"filter_selectivity must be in (0, 1], got {self.filter_selectivity}")

        if self.oversampling_factor < 1.0:
            raise ConfigurationError(f"oversampling_factor must be >= 1.0, got {self.oversampling_factor}")

        if self.oversampling_constant < 0:
            raise ConfigurationError(f"oversampling_constant must be >= 0, got {self.oversampling_constant}")

        if self.aggregate not in AGGREGATES:
            raise ConfigurationError(f"aggregate must be one of {AGGREGATES}, got {self.aggregate}")

        for name, value in (('r1_filter', self.r1_filter), ('r2_filter', self.r2_filter)):
            if value not in FILTERS:
                raise ConfigurationError(f"{name} must be one of {FILTERS}, got {value}")

        if self.num_runs < 1:
            raise ConfigurationError(f"num_runs must be >= 1, got {self.num_runs}")


@dataclass
class SamplerConfig:
    """Settings of the heuristic two-stage sampler and the reservoir adapter."""
    sigma: float = 0.99  # Duplicate-avoidance confidence
    k_factor: float = 1.0  # Pilot size inflation constant
    heuristic: str = "simple"  # 'simple' (O(1), k = m^2) or 'complete' (O(n), uses weight skew)
    kind: str = "auto"  # 'auto' (per method), 'exact', 'heuristic' or 'reservoir'
    use_exponential_jumps: bool = True  # Reservoir sampler: A-ExpJ instead of A-Res

    def validate(self) -> None:
        """Validate sampler configuration."""
        if not 0 < self.sigma < 1:
            raise ConfigurationError(f"sigma must be in (0, 1), got {self.sigma}")
        if self.k_factor <= 0:
            raise ConfigurationError(f"k_factor must be > 0, got {self.k_factor}")
        if self.heuristic not in HEURISTICS:
            raise ConfigurationError(f"heuristic must be one of {HEURISTICS}, got {self.heuristic}")
        if self.kind not in SAMPLER_KINDS:
            raise ConfigurationError(f"kind must be one of {SAMPLER_KINDS}, got {self.kind}")


@dataclass
class DataConfig:
    """Data-related configuration."""
    r1_path: str = ""
    r2_path: str = ""
    input_format: str = "csv"  # csv or parquet
    output_path: str = ""  # Optional JSON result file

    def validate(self) -> None:
        """Validate data configuration."""
        if not self.r1_path:
            raise ConfigurationError("r1_path must be specified")
        if not self.r2_path:
            raise ConfigurationError("r2_path must be specified")
        if self.input_format not in INPUT_FORMATS:
            raise ConfigurationError(f"input_format must be one of {INPUT_FORMATS}, got {self.input_format}")


def _optional_float(value: str) -> Optional[float]:
    value = value.strip()
    if not value or value.lower() == 'none':
        return None
    return float(value)


def _optional_int(value: str) -> Optional[int]:
    value = value.strip()
    if not value or value.lower() == 'none':
        return None
    return int(value)


@dataclass
class Config:
    """Main configuration container."""
    estimator: EstimatorConfig = field(default_factory=EstimatorConfig)
    sampler: SamplerConfig = field(default_factory=SamplerConfig)
    data: DataConfig = field(default_factory=DataConfig)

    # Column mappings (maps internal names to source column names)
    columns: Dict[str, str] = field(default_factory=lambda: {
        "r1_key": "A",
        "r1_payload": "B",
        "r2_key": "A",
        "r2_payload": "C",
    })

    def validate(self, require_data: bool = True) -> None:
        """Validate entire configuration."""
        self.estimator.validate()
        self.sampler.validate()
        if require_data:
            self.data.validate()
        logger.info("Configuration validated successfully")

    @classmethod
    def from_ini(cls, config_path: str) -> "Config":
        """Load configuration from INI file."""
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Config file not found: {config_path}")

        parser = configparser.ConfigParser()
        parser.read(config_path, encoding='utf-8')

        config = cls()

        if 'estimator' in parser:
            sec = parser['estimator']
            if 'method' in sec:
                config.estimator.method = sec['method'].strip().lower()
            if 'sample_size' in sec:
                config.estimator.sample_size = int(sec['sample_size'])
            if 'filter_mode' in sec:
                config.estimator.filter_mode = sec['filter_mode'].strip().lower()
            if 'filter_selectivity' in sec:
                config.estimator.filter_selectivity = _optional_float(sec['filter_selectivity'])

            # Oversampling slack
            if 'oversampling_factor' in sec:
                config.estimator.oversampling_factor = float(sec['oversampling_factor'])
            if 'oversampling_constant' in sec:
                config.estimator.oversampling_constant = int(sec['oversampling_constant'])

            if 'aggregate' in sec:
                config.estimator.aggregate = sec['aggregate'].strip().lower()
            if 'r1_filter' in sec:
                config.estimator.r1_filter = sec['r1_filter'].strip().lower()
            if 'r2_filter' in sec:
                config.estimator.r2_filter = sec['r2_filter'].strip().lower()
            if 'seed' in sec:
                config.estimator.seed = _optional_int(sec['seed'])
            if 'num_runs' in sec:
                config.estimator.num_runs = int(sec['num_runs'])

        if 'sampler' in parser:
            sec = parser['sampler']
            if 'sigma' in sec:
                config.sampler.sigma = float(sec['sigma'])
            if 'k_factor' in sec:
                config.sampler.k_factor = float(sec['k_factor'])
            if 'heuristic' in sec:
                config.sampler.heuristic = sec['heuristic'].strip().lower()
            if 'kind' in sec:
                config.sampler.kind = sec['kind'].strip().lower()
            if 'use_exponential_jumps' in sec:
                config.sampler.use_exponential_jumps = sec.getboolean('use_exponential_jumps')

        if 'data' in parser:
            sec = parser['data']
            config.data.r1_path = sec.get('r1_path', '')
            config.data.r2_path = sec.get('r2_path', '')
            config.data.input_format = sec.get('input_format', 'csv')
            config.data.output_path = sec.get('output_path', '')

        if 'columns' in parser:
            for key, value in parser['columns'].items():
                config.columns[key] = value

        logger.info(f"Configuration loaded from {config_path}")
        return config

    def to_ini(self, config_path: str) -> None:
        """Save configuration to INI file."""
        parser = configparser.ConfigParser()

        est = self.estimator
        parser['estimator'] = {
            'method': est.method,
            'sample_size': str(est.sample_size),
            'filter_mode': est.filter_mode,
            'filter_selectivity': '' if est.filter_selectivity is None else str(est.filter_selectivity),
            'oversampling_factor': str(est.oversampling_factor),
            'oversampling_constant': str(est.oversampling_constant),
            'aggregate': est.aggregate,
            'r1_filter': est.r1_filter,
            'r2_filter': est.r2_filter,
            'seed': '' if est.seed is None else str(est.seed),
            'num_runs': str(est.num_runs),
        }

        parser['sampler'] = {
            'sigma': str(self.sampler.sigma),
            'k_factor': str(self.sampler.k_factor),
            'heuristic': self.sampler.heuristic,
            'kind': self.sampler.kind,
            'use_exponential_jumps': str(self.sampler.use_exponential_jumps).lower(),
        }

        parser['data'] = {
            'r1_path': self.data.r1_path,
            'r2_path': self.data.r2_path,
            'input_format': self.data.input_format,
            'output_path': self.data.output_path,
        }

        parser['columns'] = self.columns

        with open(config_path, 'w', encoding='utf-8') as f:
            parser.write(f)

        logger.info(f"Configuration saved to {config_path}")
