"""
Relation Structure.

A relation is an ordered sequence of (join key, payload) tuples. The build
side R1 holds (A, B), the probe side R2 holds (A, C). Columns are stored as
numpy arrays so that very large build relations stay compact.
"""

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, List, Tuple

import numpy as np


logger = logging.getLogger(__name__)


def _scalar(value: Any) -> Any:
    return value.item() if isinstance(value, np.generic) else value


@dataclass
class Relation:
    """
    Two-column relation (key, payload).

    The relation is treated as read-only by every consumer; nothing in the
    package writes to ``keys`` or ``payloads``.
    """
    keys: np.ndarray
    payloads: np.ndarray
    name: str = ""

    def __post_init__(self):
        self.keys = np.asarray(self.keys)
        self.payloads = np.asarray(self.payloads)
        if self.keys.ndim != 1 or self.payloads.ndim != 1:
            raise ValueError(f"Relation {self.name!r}: columns must be one-dimensional")
        if len(self.keys) != len(self.payloads):
            raise ValueError(
                f"Relation {self.name!r}: key column has {len(self.keys)} rows, "
                f"payload column has {len(self.payloads)}"
            )

    @classmethod
    def from_pairs(cls, pairs: Iterable[Tuple[Any, Any]], name: str = "") -> "Relation":
        """Build a relation from (key, payload) pairs."""
        pairs = list(pairs)
        if not pairs:
            return cls(np.empty(0), np.empty(0), name=name)
        keys, payloads = zip(*pairs)
        return cls(np.asarray(keys), np.asarray(payloads), name=name)

    def __len__(self) -> int:
        return len(self.keys)

    def __getitem__(self, index: int) -> Tuple[Any, Any]:
        return _scalar(self.keys[index]), _scalar(self.payloads[index])

    def __iter__(self) -> Iterator[Tuple[Any, Any]]:
        return zip(self.keys.tolist(), self.payloads.tolist())

    def to_pairs(self) -> List[Tuple[Any, Any]]:
        return list(self)

    def __repr__(self) -> str:
        return f"Relation({self.name or '?'}: {len(self):,} rows)"
