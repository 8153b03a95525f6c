"""Shared test fixtures for FormulaKit."""
