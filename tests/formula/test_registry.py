"""
Tests for the formula registry.
"""

import pytest
import yaml

from formulakit.core.exceptions import FormulaError, FormulaNotFoundError
from formulakit.formula.parser import parse_formula
from formulakit.formula.registry import FormulaRegistry

DIGEST = "a" * 64


def write_formula(directory, name, suffix=".yaml"):
    directory.mkdir(parents=True, exist_ok=True)
    data = {
        "name": name,
        "url": f"https://example.com/{name}.tar.gz",
        "digest": DIGEST,
        "buildSteps": ["make"],
    }
    path = directory / f"{name}{suffix}"
    path.write_text(yaml.safe_dump(data))
    return path


class TestFormulaRegistry:
    """Tests for FormulaRegistry."""

    def test_from_paths(self, tmp_path):
        write_formula(tmp_path / "a", "scenery")
        write_formula(tmp_path / "a", "age", ".yml")
        write_formula(tmp_path / "b", "tidy", ".json")
        (tmp_path / "a" / "notes.txt").write_text("ignored")

        registry = FormulaRegistry.from_paths([tmp_path / "a", tmp_path / "b", tmp_path / "missing"])

        assert registry.names() == ["age", "scenery", "tidy"]
        assert len(registry) == 3
        assert "scenery" in registry
        assert [f.name for f in registry] == ["age", "scenery", "tidy"]

    def test_get_unknown(self):
        with pytest.raises(FormulaNotFoundError) as exc_info:
            FormulaRegistry().get("nope")

        assert exc_info.value.name == "nope"
        assert isinstance(exc_info.value, FormulaError)

    def test_duplicate_name_rejected(self, tmp_path):
        write_formula(tmp_path / "a", "scenery")
        write_formula(tmp_path / "b", "scenery")

        with pytest.raises(FormulaError, match="Duplicate formula name: scenery"):
            FormulaRegistry.from_paths([tmp_path / "a", tmp_path / "b"])

    def test_invalid_file_propagates(self, tmp_path):
        (tmp_path / "broken.yaml").write_text("name: scenery\n")

        with pytest.raises(FormulaError, match="broken.yaml"):
            FormulaRegistry().load_directory(tmp_path)

    def test_explicit_formulas(self):
        formula = parse_formula(
            {"name": "scenery", "url": "https://example.com/s.tar.gz", "digest": DIGEST, "buildSteps": ["make"]}
        )
        registry = FormulaRegistry([formula])

        assert registry.get("scenery") is formula
