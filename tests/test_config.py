"""
Test that configuration survives a save/load cycle and rejects invalid values.
"""
import os
import tempfile

import pytest

from samplejoin.core.config import Config, EstimatorConfig, SamplerConfig, DataConfig
from samplejoin.core.errors import ConfigurationError


def test_defaults_validate():
    config = Config()
    config.validate(require_data=False)
    assert config.estimator.oversampling_factor == 1.2
    assert config.estimator.oversampling_constant == 100
    assert config.sampler.sigma == 0.99
    assert config.columns["r2_payload"] == "C"

    with pytest.raises(ConfigurationError):
        config.validate()


def test_config_roundtrip():
    """Every setting survives a to_ini / from_ini cycle."""
    config1 = Config()
    config1.estimator.method = "hws"
    config1.estimator.sample_size = 250
    config1.estimator.filter_mode = "filtered"
    config1.estimator.filter_selectivity = 0.4
    config1.estimator.oversampling_factor = 1.5
    config1.estimator.oversampling_constant = 10
    config1.estimator.aggregate = "count"
    config1.estimator.r1_filter = "parity"
    config1.estimator.seed = 12345
    config1.estimator.num_runs = 7
    config1.sampler.heuristic = "complete"
    config1.sampler.k_factor = 2.5
    config1.sampler.kind = "reservoir"
    config1.sampler.use_exponential_jumps = False
    config1.data.r1_path = "data/build.parquet"
    config1.data.r2_path = "data/probe.parquet"
    config1.data.input_format = "parquet"
    config1.columns["r2_payload"] = "amount"

    with tempfile.NamedTemporaryFile(mode='w', suffix='.ini', delete=False) as f:
        temp_path = f.name

    try:
        config1.to_ini(temp_path)
        config2 = Config.from_ini(temp_path)
    finally:
        os.unlink(temp_path)

    assert config2.estimator == config1.estimator
    assert config2.sampler == config1.sampler
    assert config2.data == config1.data
    assert config2.columns == config1.columns
    config2.validate()


def test_unset_optionals_roundtrip(tmp_path):
    path = str(tmp_path / "config.ini")
    Config().to_ini(path)
    loaded = Config.from_ini(path)

    assert loaded.estimator.filter_selectivity is None
    assert loaded.estimator.seed is None
    assert loaded.data.output_path == ""


def test_partial_ini_keeps_defaults(tmp_path):
    path = tmp_path / "partial.ini"
    path.write_text("[estimator]\nmethod = WS\nseed = none\n\n[data]\nr1_path = a.csv\nr2_path = b.csv\n")

    config = Config.from_ini(str(path))
    assert config.estimator.method == "ws"
    assert config.estimator.seed is None
    assert config.estimator.sample_size == 100
    assert config.sampler.kind == "auto"
    config.validate()


def test_missing_file():
    with pytest.raises(FileNotFoundError):
        Config.from_ini("does/not/exist.ini")


@pytest.mark.parametrize("field, value", [
    ("method", "bogus"),
    ("sample_size", 0),
    ("filter_mode", "partial"),
    ("filter_selectivity", 0.0),
    ("filter_selectivity", 1.5),
    ("oversampling_factor", 0.5),
    ("oversampling_constant", -1),
    ("aggregate", "avg"),
    ("r2_filter", "odd"),
    ("num_runs", 0),
])
def test_invalid_estimator_settings(field, value):
    config = EstimatorConfig()
    setattr(config, field, value)
    with pytest.raises(ValueError):
        config.validate()


@pytest.mark.parametrize("field, value", [
    ("sigma", 0.0),
    ("sigma", 1.0),
    ("k_factor", 0.0),
    ("heuristic", "median"),
    ("kind", "magic"),
])
def test_invalid_sampler_settings(field, value):
    config = SamplerConfig()
    setattr(config, field, value)
    with pytest.raises(ConfigurationError):
        config.validate()


def test_invalid_input_format():
    config = DataConfig(r1_path="a", r2_path="b", input_format="json")
    with pytest.raises(ConfigurationError):
        config.validate()
