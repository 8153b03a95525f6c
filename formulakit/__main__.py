"""
Entry point for `python -m formulakit`.
"""

from formulakit.cli.parser import main

if __name__ == "__main__":
    main()
