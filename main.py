#!/usr/bin/env python3
"""
Sample-Join Estimator - Main Entry Point
========================================
Command-line interface for estimating an aggregate over the join of two
relations by weighted sampling.

Usage:
    python main.py --config configs/default.ini
    python main.py --config configs/default.ini --method ws --sample-size 500 --runs 20
"""

import argparse
import json
import logging
import logging.handlers
import sys
import os
from datetime import datetime
from typing import Any, Dict, List, Optional

from samplejoin.core.config import Config, METHODS
from samplejoin.core.errors import SampleJoinError, ConfigurationError
from samplejoin.core.memory_monitor import MemoryMonitor
from samplejoin.core.primitives import get_rng
from samplejoin.engine.exact import ExactAggregate, exact_join_aggregate
from samplejoin.engine.methods import build_estimator, ensure_feasible_sampler, get_method
from samplejoin.reader.relation_reader import read_relations
from samplejoin.schema.strata import StratifiedRelation


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    log_dir: str = "logs"
) -> logging.Logger:
    """
    Set up logging with console and optional file output.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional log file name. If None, auto-generated.
        log_dir: Directory for log files

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger("samplejoin")
    logger.setLevel(getattr(logging, log_level.upper()))

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, log_level.upper()))
    console_format = logging.Formatter(
        '%(asctime)s [%(levelname)s] %(message)s',
        datefmt='%H:%M:%S'
    )
    console_handler.setFormatter(console_format)
    logger.addHandler(console_handler)

    # File handler (rotating)
    if log_file or log_dir:
        os.makedirs(log_dir, exist_ok=True)
        if log_file is None:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            log_file = f"samplejoin_{timestamp}.log"

        log_path = os.path.join(log_dir, log_file)
        file_handler = logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=10*1024*1024,  # 10MB
            backupCount=5,
            encoding='utf-8'
        )
        file_handler.setLevel(logging.DEBUG)
        file_format = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s'
        )
        file_handler.setFormatter(file_format)
        logger.addHandler(file_handler)
        logger.info(f"Logging to file: {log_path}")

    return logger


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Sample-Join Estimator - Approximate aggregates over large joins",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Run with config file
    python main.py --config configs/default.ini

    # Weighted sample join, 20 repetitions, compare with the exact aggregate
    python main.py --config configs/default.ini --method ws --runs 20 --exact

    # Specify input/output
    python main.py --config configs/default.ini \\
        --r1 data/r1.csv --r2 data/r2.csv \\
        --output results/estimate.json
        """
    )

    # Required arguments
    parser.add_argument(
        "--config", "-c",
        required=True,
        help="Path to configuration INI file"
    )

    # Optional overrides
    parser.add_argument(
        "--method", "-m",
        choices=METHODS,
        default=None,
        help="Override sample-join method"
    )

    parser.add_argument(
        "--sample-size", "-n",
        type=int,
        default=None,
        help="Override sample size m"
    )

    parser.add_argument(
        "--r1",
        type=str,
        default=None,
        help="Override build relation path"
    )

    parser.add_argument(
        "--r2",
        type=str,
        default=None,
        help="Override probe relation path"
    )

    parser.add_argument(
        "--output", "-o",
        type=str,
        default=None,
        help="Write the result as JSON to this path"
    )

    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Override random seed"
    )

    parser.add_argument(
        "--runs",
        type=int,
        default=None,
        help="Override number of independent estimates"
    )

    parser.add_argument(
        "--exact",
        action="store_true",
        help="Also compute the exact aggregate and report relative errors"
    )

    # Logging options
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)"
    )

    parser.add_argument(
        "--log-dir",
        type=str,
        default="logs",
        help="Directory for log files (default: logs/)"
    )

    # Execution options
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate configuration and exit without running"
    )

    parser.add_argument(
        "--monitor-memory",
        action="store_true",
        help="Log memory usage of the normalization cache"
    )

    return parser.parse_args(argv)


def apply_overrides(config: Config, args: argparse.Namespace) -> Config:
    """Apply command-line overrides to configuration."""
    if args.method is not None:
        config.estimator.method = args.method

    if args.sample_size is not None:
        config.estimator.sample_size = args.sample_size

    if args.r1 is not None:
        config.data.r1_path = args.r1

    if args.r2 is not None:
        config.data.r2_path = args.r2

    if args.output is not None:
        config.data.output_path = args.output

    if args.seed is not None:
        config.estimator.seed = args.seed

    if args.runs is not None:
        config.estimator.num_runs = args.runs

    return config


def print_config_summary(config: Config, logger: logging.Logger):
    """Print configuration summary."""
    est = config.estimator
    method = get_method(est.method)
    logger.info("=" * 60)
    logger.info("Configuration Summary")
    logger.info("=" * 60)
    logger.info(f"Method:                   {method.label}")
    logger.info(f"Sample Size (m):          {est.sample_size}")
    logger.info(f"Filter Mode:              {est.filter_mode}")
    if est.filter_mode != 'full':
        logger.info(f"Filters:                  R1={est.r1_filter}, R2={est.r2_filter}")
    logger.info(f"Aggregate:                {est.aggregate}")
    logger.info(f"Oversampling:             {est.oversampling_constant} + {est.oversampling_factor} * m / selectivity")
    logger.info(f"Runs:                     {est.num_runs}")
    logger.info(f"R1 Path:                  {config.data.r1_path}")
    logger.info(f"R2 Path:                  {config.data.r2_path}")
    logger.info(f"Sampler:                  {config.sampler.kind} (sigma={config.sampler.sigma}, "
                f"k_factor={config.sampler.k_factor}, heuristic={config.sampler.heuristic})")
    logger.info("=" * 60)


def run_estimation(
    config: Config,
    logger: logging.Logger,
    compute_exact: bool = False,
    memory_monitor: Optional[MemoryMonitor] = None
) -> Dict[str, Any]:
    """
    Load the relations and compute the configured number of estimates.

    The normalization is computed once; every run reuses it, and the first
    run memoizes the CDF if the sampler uses one.

    Returns:
        Result dictionary (estimates, diagnostics, exact aggregate if computed)
    """
    est = config.estimator
    r1, r2 = read_relations(config)
    if memory_monitor is not None:
        memory_monitor.log_process_memory("relations loaded")

    rng = get_rng(est.seed)
    strata = StratifiedRelation(r2)
    logger.info(strata.summary())

    estimator = build_estimator(config, r1, r2, rng=rng, strata=strata, memory_monitor=memory_monitor)

    exact: Optional[ExactAggregate] = None
    needs_selectivity = est.filter_mode != 'full' and est.filter_selectivity is None
    if compute_exact or needs_selectivity:
        exact = exact_join_aggregate(r1, strata, estimator.aggregate, estimator.r1_filter, estimator.r2_filter)

    if est.filter_mode == 'full':
        selectivity = 1.0
    elif est.filter_selectivity is not None:
        selectivity = est.filter_selectivity
    else:
        selectivity = exact.selectivity
        if selectivity <= 0:
            raise ConfigurationError("the filter selects no join tuples; nothing to estimate")
        logger.info(f"Filter selectivity from exact join: {selectivity:.4%}")

    estimator.recompute_normalization()
    ensure_feasible_sampler(estimator, est.sample_size, selectivity)

    results = []
    for run_i in range(est.num_runs):
        result = estimator.run(
            est.sample_size,
            filtered_estimator=(est.filter_mode == 'filtered'),
            filter_selectivity=selectivity,
            recompute_normalization=False,
            recompute_cdf=(run_i == 0),
        )
        results.append(result)
        logger.debug(f"Run {run_i + 1}/{est.num_runs}: estimate={result.estimate:.6g}")

    estimates = [r.estimate for r in results]
    output: Dict[str, Any] = {
        "method": est.method,
        "filter_mode": est.filter_mode,
        "sample_size": est.sample_size,
        "filter_selectivity": selectivity,
        "sampler": type(estimator.sampler).__name__,
        "estimates": estimates,
        "mean_estimate": sum(estimates) / len(estimates),
        "runs": [r.to_dict() for r in results],
    }
    if exact is not None:
        output["exact"] = exact.to_dict()
        if exact.aggregate != 0:
            output["relative_errors"] = [exact.relative_error(e) for e in estimates]

    if memory_monitor is not None:
        memory_monitor.log_process_memory("estimation finished")
        logger.info(memory_monitor.summary())
    return output


def write_result(output: Dict[str, Any], path: str, logger: logging.Logger) -> None:
    """Write the result dictionary as JSON."""
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(output, f, indent=2)
    logger.info(f"Result written to {path}")


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    # Parse arguments
    args = parse_args(argv)

    # Set up logging
    logger = setup_logging(
        log_level=args.log_level,
        log_dir=args.log_dir
    )

    try:
        # Load configuration
        logger.info(f"Loading configuration from: {args.config}")
        config = Config.from_ini(args.config)

        # Apply command-line overrides
        config = apply_overrides(config, args)

        # Validate configuration
        logger.info("Validating configuration...")
        config.validate()

        # Print summary
        print_config_summary(config, logger)

        # Dry run check
        if args.dry_run:
            logger.info("Dry run mode - exiting without processing")
            return 0

        monitor = MemoryMonitor() if args.monitor_memory else None

        logger.info("Starting sample-join estimation...")
        start_time = datetime.now()

        output = run_estimation(config, logger, compute_exact=args.exact, memory_monitor=monitor)

        duration = (datetime.now() - start_time).total_seconds()
        output["duration_seconds"] = duration

        logger.info("=" * 60)
        logger.info("Estimation Complete")
        logger.info("=" * 60)
        logger.info(f"Duration:                 {duration:.2f} seconds")
        logger.info(f"Mean Estimate:            {output['mean_estimate']:.6g} ({len(output['estimates'])} runs)")
        if "exact" in output:
            logger.info(f"Exact Aggregate:          {output['exact']['aggregate']:.6g}")
        if "relative_errors" in output:
            errors = output["relative_errors"]
            logger.info(f"Max Relative Error:       {max(errors):.4%}")
        logger.info("=" * 60)

        if config.data.output_path:
            write_result(output, config.data.output_path, logger)

        return 0

    except FileNotFoundError as e:
        logger.error(f"File not found: {e}")
        return 1
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    except SampleJoinError as e:
        logger.error(f"Estimation failed: {type(e).__name__}: {e}")
        return 1
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
