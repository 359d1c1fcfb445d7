"""Parsing module for the search condition language."""

from typed_models.parsing.condition_parser import ConditionParser

__all__ = [
    "ConditionParser",
]
