"""
Formula model, parsing and lookup.
"""

from .model import BuildStep, Formula, formula_digest
from .parser import load_formula, parse_formula
from .registry import FormulaRegistry

__all__ = [
    "BuildStep",
    "Formula",
    "formula_digest",
    "load_formula",
    "parse_formula",
    "FormulaRegistry",
]
