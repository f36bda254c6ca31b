"""
Memory monitoring for the sample-join estimator.

The normalization cache holds O(n1) arrays (sampling weights and CDF over
the build relation). These helpers log their footprint and the process
memory at checkpoints without touching the arrays' contents.
"""

import logging
from typing import Dict, Any

import numpy as np
import psutil

logger = logging.getLogger(__name__)


class MemoryMonitor:
    """
    Monitor memory usage around the estimator's O(n1) stages.

    Checkpoints are kept by label so a caller can compare, for example,
    memory before and after the normalization vector is built.
    """

    def __init__(self):
        self._process = psutil.Process()
        self._checkpoints: Dict[str, Dict[str, Any]] = {}

    @property
    def checkpoints(self) -> Dict[str, Dict[str, Any]]:
        return dict(self._checkpoints)

    def log_process_memory(self, label: str) -> Dict[str, float]:
        """
        Log current process and system memory usage.

        Args:
            label: Description of current checkpoint

        Returns:
            Dict with memory statistics (GB and %)
        """
        rss_gb = self._process.memory_info().rss / (1024**3)
        vm = psutil.virtual_memory()

        stats = {
            'label': label,
            'rss_gb': rss_gb,
            'total_gb': vm.total / (1024**3),
            'percent': vm.percent,
            'available_gb': vm.available / (1024**3),
        }

        logger.info(
            f"[MEMORY] {label}: rss={rss_gb:.3f} GB, "
            f"system {vm.percent:.1f}% used, available={stats['available_gb']:.2f} GB"
        )

        self._checkpoints[label] = stats
        return stats

    def log_array_footprint(self, label: str, **arrays: np.ndarray) -> Dict[str, Any]:
        """
        Log the size of named arrays (None entries are reported as 0 bytes).

        Returns:
            Dict with per-array bytes and the total in MB
        """
        sizes = {name: (0 if arr is None else int(arr.nbytes)) for name, arr in arrays.items()}
        total_mb = sum(sizes.values()) / (1024**2)

        stats = {'label': label, 'arrays': sizes, 'total_mb': total_mb}
        parts = ", ".join(f"{name}={size / (1024**2):.2f} MB" for name, size in sizes.items())
        logger.info(f"[FOOTPRINT] {label}: {parts} (total {total_mb:.2f} MB)")

        self._checkpoints[label] = stats
        return stats

    def summary(self) -> str:
        """Generate summary of recorded checkpoints."""
        lines = ["Memory checkpoints:"]
        for label, stats in self._checkpoints.items():
            if 'rss_gb' in stats:
                lines.append(f"  {label}: rss={stats['rss_gb']:.3f} GB ({stats['percent']:.1f}% system)")
            else:
                lines.append(f"  {label}: {stats['total_mb']:.2f} MB in arrays")
        return "\n".join(lines)
