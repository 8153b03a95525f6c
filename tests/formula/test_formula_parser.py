"""
Tests for formula parsing and validation.
"""

import json

import pytest
import yaml

from formulakit.core.exceptions import FormulaError
from formulakit.formula.model import BuildStep, Formula, formula_digest
from formulakit.formula.parser import load_formula, parse_formula

DIGEST = "773372ac325ae746b95f0d503b08461bfa039bf9a0be6a3db2805aec69b61f74"


def scenery_data(**overrides):
    data = {
        "name": "scenery",
        "homepage": "https://github.com/dmlittle/scenery",
        "url": "https://github.com/dmlittle/scenery/archive/v0.1.0.tar.gz",
        "digest": DIGEST,
        "dependencies": ["go"],
        "buildSteps": ["go build -o scenery"],
    }
    data.update(overrides)
    return data


class TestParseFormula:
    """Tests for parse_formula."""

    def test_scenery(self):
        """Test the canonical scenery formula."""
        formula = parse_formula(scenery_data())

        assert formula.name == "scenery"
        assert formula.dependencies == ("go",)
        assert formula.build_steps == (
            BuildStep(program="go", args=("build", "-o", "scenery")),
        )
        assert dict(formula.artifacts) == {"scenery": "bin/scenery"}
        assert formula.executable == "bin/scenery"
        assert formula.archive_name == "v0.1.0.tar.gz"
        assert formula.test_args == ("--version",)

    @pytest.mark.parametrize("field_name", ["name", "url", "digest"])
    def test_missing_required_field(self, field_name):
        data = scenery_data()
        del data[field_name]

        with pytest.raises(FormulaError, match=f"missing required field: {field_name}"):
            parse_formula(data)

    def test_not_a_mapping(self):
        with pytest.raises(FormulaError, match="must be a mapping"):
            parse_formula(["scenery"])

    @pytest.mark.parametrize("name", ["../evil", "a/b", "-dash", ""])
    def test_invalid_name(self, name):
        with pytest.raises(FormulaError):
            parse_formula(scenery_data(name=name))

    def test_invalid_url(self):
        with pytest.raises(FormulaError, match="http"):
            parse_formula(scenery_data(url="ftp://example.com/a.tar.gz"))

    def test_digest_normalized(self):
        formula = parse_formula(scenery_data(digest="SHA256:" + DIGEST.upper()))
        assert formula.digest == DIGEST

    def test_short_digest_rejected(self):
        with pytest.raises(FormulaError, match="64-character"):
            parse_formula(scenery_data(digest="abc"))

    def test_empty_build_steps_rejected(self):
        with pytest.raises(FormulaError, match="non-empty list"):
            parse_formula(scenery_data(buildSteps=[]))

    def test_structured_build_step(self):
        formula = parse_formula(
            scenery_data(
                buildSteps=[
                    {"program": "go", "args": ["build", "-o", "{buildpath}/scenery"], "env": {"CGO_ENABLED": 0}},
                    ["strip", "scenery"],
                ]
            )
        )

        first, second = formula.build_steps
        assert first.argv == ["go", "build", "-o", "{buildpath}/scenery"]
        assert dict(first.env) == {"CGO_ENABLED": "0"}
        assert second.argv == ["strip", "scenery"]

    def test_unbalanced_quotes_rejected(self):
        with pytest.raises(FormulaError, match="cannot split command"):
            parse_formula(scenery_data(buildSteps=["go build 'oops"]))

    def test_duplicate_dependencies_collapsed(self):
        formula = parse_formula(scenery_data(dependencies=["go", "git", "go"]))
        assert formula.dependencies == ("go", "git")

    @pytest.mark.parametrize("destination", ["/usr/bin/scenery", "../bin/scenery", ".", "./", ""])
    def test_artifact_outside_prefix_rejected(self, destination):
        with pytest.raises(FormulaError, match="inside the prefix"):
            parse_formula(scenery_data(artifacts={"scenery": destination}))

    @pytest.mark.parametrize("source", [".", "../scenery"])
    def test_artifact_source_outside_build_dir_rejected(self, source):
        with pytest.raises(FormulaError, match="inside the build directory"):
            parse_formula(scenery_data(artifacts={source: "bin/scenery"}))

    def test_artifact_destinations_unique(self):
        with pytest.raises(FormulaError, match="same destination"):
            parse_formula(scenery_data(artifacts={"a": "bin/x", "b": "bin/x"}))

    def test_env_rejects_bool(self):
        with pytest.raises(FormulaError, match="must be a string"):
            parse_formula(scenery_data(env={"DEBUG": True}))

    def test_test_args(self):
        assert parse_formula(scenery_data(test="-h")).test_args == ("-h",)
        assert parse_formula(scenery_data(test=[])).test_args == ()


class TestLoadFormula:
    """Tests for load_formula."""

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "scenery.yaml"
        path.write_text(yaml.safe_dump(scenery_data()))

        assert load_formula(path).name == "scenery"

    def test_load_json(self, tmp_path):
        path = tmp_path / "scenery.json"
        path.write_text(json.dumps(scenery_data()))

        assert load_formula(path).name == "scenery"

    def test_error_names_file(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text(yaml.safe_dump(scenery_data(digest="nope")))

        with pytest.raises(FormulaError, match="broken.yaml"):
            load_formula(path)

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("name: [unclosed")

        with pytest.raises(FormulaError, match="Invalid YAML"):
            load_formula(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FormulaError, match="not found"):
            load_formula(tmp_path / "missing.yaml")


class TestFormulaDigest:
    """Tests for formula_digest."""

    def test_stable_across_parses(self):
        assert formula_digest(parse_formula(scenery_data())) == formula_digest(
            parse_formula(scenery_data())
        )

    def test_changes_with_build_steps(self):
        original = formula_digest(parse_formula(scenery_data()))
        changed = formula_digest(parse_formula(scenery_data(buildSteps=["go build"])))
        assert original != changed

    def test_to_dict_parses_back(self):
        formula = parse_formula(scenery_data(env={"GOFLAGS": "-mod=vendor"}))
        assert parse_formula(formula.to_dict()) == formula

    def test_formula_is_immutable(self):
        formula = parse_formula(scenery_data())
        with pytest.raises(Exception):
            formula.name = "other"
        assert isinstance(formula, Formula)
