"""
Entry point for running the FormulaKit CLI as a module.

Usage: python -m formulakit.cli [command] [options]
"""

from .parser import main

if __name__ == "__main__":
    main()
