"""
Formula registry.

The registry is an explicit object handed to the planner; there is no
process-wide formula table. One registry is built per invocation from the
configured formula search paths.
"""

import logging
from pathlib import Path
from typing import Dict, Iterable, Iterator, List

from formulakit.core.exceptions import FormulaError, FormulaNotFoundError
from formulakit.formula.model import Formula
from formulakit.formula.parser import load_formula

logger = logging.getLogger(__name__)

FORMULA_SUFFIXES = (".yaml", ".yml", ".json")


class FormulaRegistry:
    """
    Name -> Formula lookup table.

    Example:
        >>> registry = FormulaRegistry.from_paths([Path("~/.formulakit/formulas")])
        >>> formula = registry.get("scenery")
    """

    def __init__(self, formulas: Iterable[Formula] = ()):
        self._formulas: Dict[str, Formula] = {}
        for formula in formulas:
            self.add(formula)

    @classmethod
    def from_paths(cls, paths: Iterable[Path]) -> "FormulaRegistry":
        """
        Build a registry from formula directories.

        Directories are scanned in order; missing ones are skipped.

        Raises:
            FormulaError: If a formula file is invalid or a name is defined twice
        """
        registry = cls()
        for path in paths:
            registry.load_directory(Path(path).expanduser())
        return registry

    def add(self, formula: Formula) -> None:
        """
        Register a formula.

        Raises:
            FormulaError: If a formula with the same name is already registered
        """
        if formula.name in self._formulas:
            raise FormulaError(f"Duplicate formula name: {formula.name}")
        self._formulas[formula.name] = formula

    def load_directory(self, directory: Path) -> int:
        """
        Load every formula file in a directory (non-recursive).

        Returns:
            Number of formulas loaded
        """
        if not directory.is_dir():
            logger.debug(f"Formula directory not found, skipping: {directory}")
            return 0

        count = 0
        for path in sorted(directory.iterdir()):
            if path.suffix.lower() in FORMULA_SUFFIXES and path.is_file():
                self.add(load_formula(path))
                count += 1

        logger.debug(f"Loaded {count} formula(s) from {directory}")
        return count

    def get(self, name: str) -> Formula:
        """
        Look up a formula by name.

        Raises:
            FormulaNotFoundError: If no such formula is registered
        """
        try:
            return self._formulas[name]
        except KeyError:
            raise FormulaNotFoundError(name) from None

    def names(self) -> List[str]:
        return sorted(self._formulas)

    def __contains__(self, name: object) -> bool:
        return name in self._formulas

    def __iter__(self) -> Iterator[Formula]:
        return iter(self._formulas[name] for name in self.names())

    def __len__(self) -> int:
        return len(self._formulas)
