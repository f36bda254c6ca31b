"""Relation and stratum structures."""
from .relation import Relation
from .strata import StratifiedRelation, StratumWeight, StratumWeights

__all__ = ['Relation', 'StratifiedRelation', 'StratumWeight', 'StratumWeights']
