"""
Tests for relation loading, memory monitoring and the command-line entry point.
"""

import json
import logging

import numpy as np
import pandas as pd
import pytest

from main import main, parse_args, apply_overrides
from samplejoin.core.config import Config
from samplejoin.core.errors import ConfigurationError
from samplejoin.core.memory_monitor import MemoryMonitor
from samplejoin.reader.relation_reader import read_relation, read_relations


@pytest.fixture
def data_dir(tmp_path):
    rng = np.random.default_rng(0)
    pd.DataFrame({
        "A": rng.integers(0, 5, 300),
        "B": rng.random(300),
    }).to_csv(tmp_path / "r1.csv", index=False)
    pd.DataFrame({
        "A": np.repeat(np.arange(5), 4),
        "C": 1.0 + 9.0 * rng.random(20),
    }).to_csv(tmp_path / "r2.csv", index=False)
    return tmp_path


@pytest.fixture
def config_path(data_dir):
    config = Config()
    config.estimator.sample_size = 10
    config.estimator.seed = 3
    config.data.r1_path = str(data_dir / "r1.csv")
    config.data.r2_path = str(data_dir / "r2.csv")
    path = data_dir / "config.ini"
    config.to_ini(str(path))
    return path


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    logger = logging.getLogger("samplejoin")
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


# =============================================================================
# Reader
# =============================================================================

def test_read_relation_csv(data_dir):
    relation = read_relation(str(data_dir / "r2.csv"), "A", "C", name="R2")
    assert len(relation) == 20
    assert relation.name == "R2"
    assert relation[0][0] == 0


def test_read_relation_drops_missing_rows(tmp_path):
    path = tmp_path / "gaps.csv"
    pd.DataFrame({"A": [1, 2, None, 4], "C": [1.0, None, 3.0, 4.0]}).to_csv(path, index=False)
    relation = read_relation(str(path), "A", "C")
    assert len(relation) == 2


def test_read_relation_errors(data_dir):
    with pytest.raises(ConfigurationError):
        read_relation(str(data_dir / "r2.csv"), "A", "missing")
    with pytest.raises(ConfigurationError):
        read_relation(str(data_dir / "r2.csv"), "A", "C", input_format="json")
    with pytest.raises(FileNotFoundError):
        read_relation(str(data_dir / "nope.csv"), "A", "C")


def test_read_relation_parquet(tmp_path):
    path = tmp_path / "r2.parquet"
    pd.DataFrame({"A": [1, 1, 2], "C": [5.0, 6.0, 7.0], "X": [0, 0, 0]}).to_parquet(path, index=False)

    relation = read_relation(str(path), "A", "C", input_format="parquet")
    assert relation.to_pairs() == [(1, 5.0), (1, 6.0), (2, 7.0)]

    with pytest.raises(ConfigurationError, match="missing column"):
        read_relation(str(path), "A", "B", input_format="parquet")


def test_main_reports_missing_parquet_column(tmp_path):
    pd.DataFrame({"A": [1, 2], "X": [1.0, 2.0]}).to_parquet(tmp_path / "r1.parquet", index=False)
    pd.DataFrame({"A": [1, 2], "C": [1.0, 2.0]}).to_parquet(tmp_path / "r2.parquet", index=False)
    config = Config()
    config.estimator.sample_size = 1
    config.data.r1_path = str(tmp_path / "r1.parquet")
    config.data.r2_path = str(tmp_path / "r2.parquet")
    config.data.input_format = "parquet"
    config.to_ini(str(tmp_path / "config.ini"))

    assert main(["--config", str(tmp_path / "config.ini"), "--log-dir", str(tmp_path / "logs")]) == 1


def test_read_relations_uses_column_mapping(config_path):
    config = Config.from_ini(str(config_path))
    r1, r2 = read_relations(config)
    assert (len(r1), len(r2)) == (300, 20)
    assert r1.name == "R1"


# =============================================================================
# Memory monitor
# =============================================================================

def test_memory_monitor_checkpoints():
    monitor = MemoryMonitor()
    stats = monitor.log_process_memory("start")
    assert stats["rss_gb"] > 0
    assert 0 <= stats["percent"] <= 100

    footprint = monitor.log_array_footprint("cache", weights=np.zeros(1024), cdf=None)
    assert footprint["arrays"] == {"weights": 8192, "cdf": 0}

    assert set(monitor.checkpoints) == {"start", "cache"}
    assert "cache" in monitor.summary()


# =============================================================================
# Command line
# =============================================================================

def test_overrides_apply():
    args = parse_args(["--config", "x.ini", "--method", "ws", "--sample-size", "7", "--runs", "2"])
    config = apply_overrides(Config(), args)
    assert config.estimator.method == "ws"
    assert config.estimator.sample_size == 7
    assert config.estimator.num_runs == 2
    assert config.data.r1_path == ""


def test_main_end_to_end(config_path, data_dir):
    output = data_dir / "out" / "result.json"
    code = main([
        "--config", str(config_path),
        "--runs", "3",
        "--exact",
        "--monitor-memory",
        "--output", str(output),
        "--log-dir", str(data_dir / "logs"),
    ])
    assert code == 0

    result = json.loads(output.read_text())
    assert result["method"] == "ssj"
    assert len(result["estimates"]) == 3
    assert len(result["relative_errors"]) == 3
    assert result["exact"]["join_size"] > 0
    assert result["sampler"] == "ExactSampler"
    assert all(run["filtered_sample_size"] == 10 for run in result["runs"])


def test_main_filtered_mode_derives_selectivity(config_path, data_dir):
    output = data_dir / "filtered.json"
    code = main([
        "--config", str(config_path),
        "--method", "hws",
        "--runs", "2",
        "--output", str(output),
        "--log-dir", str(data_dir / "logs"),
    ])
    assert code == 0
    result = json.loads(output.read_text())
    assert result["filter_selectivity"] == 1.0

    config = Config.from_ini(str(config_path))
    config.estimator.filter_mode = "filtered"
    filtered_ini = data_dir / "filtered.ini"
    config.to_ini(str(filtered_ini))

    code = main([
        "--config", str(filtered_ini),
        "--output", str(output),
        "--log-dir", str(data_dir / "logs"),
    ])
    assert code == 0
    result = json.loads(output.read_text())
    assert 0 < result["filter_selectivity"] < 1
    assert "exact" in result


def test_main_dry_run(config_path, data_dir):
    assert main(["--config", str(config_path), "--dry-run", "--log-dir", str(data_dir / "logs")]) == 0


def test_main_reports_errors(config_path, data_dir):
    logs = str(data_dir / "logs")
    assert main(["--config", str(data_dir / "missing.ini"), "--log-dir", logs]) == 1
    assert main(["--config", str(config_path), "--sample-size", "0", "--log-dir", logs]) == 1
    assert main(["--config", str(config_path), "--r1", str(data_dir / "none.csv"), "--log-dir", logs]) == 1
