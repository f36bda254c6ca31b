"""Relation readers."""
__all__ = ['read_relation', 'read_relations']


def __getattr__(name):
    if name in __all__:
        from . import relation_reader
        return getattr(relation_reader, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
