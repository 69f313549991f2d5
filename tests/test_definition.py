"""
Tests for pipeline definition loading and schema validation.

Verifies that the loader:
- Accepts YAML, JSON and TOML documents
- Rejects invalid documents with `path: message` issues
- Derives step names and coerces environment values
"""
import json

import pytest
from pydantic import ValidationError

from stagerun.core.errors import ConfigValidationError
from stagerun.definition import (
    ConditionStatus,
    PipelineDefinition,
    StageDefinition,
    StepDefinition,
    definition_from_dict,
    definition_to_dict,
    load_definition,
    parse_definition,
)

PIPELINE_YAML = """
version: v1
name: webapp
env:
  PORT: 8080
  DEBUG: true
stages:
  - name: compile
    steps:
      - uses: maven
        with:
          goals: [clean, compile]
  - name: package
    steps:
      - run: mvn -B package
    artifacts:
      - name: app_war
        path: target/app.war
  - name: deploy
    needs: [app_war]
    when:
      status: on_success
      branches: [main, "release/*"]
    steps:
      - uses: tomcat_deploy
        timeout: 120
        with:
          url: "http://tomcat:8080"
          war: "${artifact:app_war}"
          context_path: /app
"""


class TestParseDefinition:
    """Tests for parse_definition/load_definition."""

    def test_parse_yaml(self):
        """Test a full YAML document."""
        definition = parse_definition(PIPELINE_YAML)
        assert definition.name == "webapp"
        assert definition.stage_names == ["compile", "package", "deploy"]
        assert definition.stages[2].when.branches == ["main", "release/*"]
        assert definition.stages[2].steps[0].timeout == 120
        assert definition.stages[2].steps[0].options["war"] == "${artifact:app_war}"

    def test_env_values_coerced_to_strings(self):
        """YAML ints and bools become environment strings."""
        definition = parse_definition(PIPELINE_YAML)
        assert definition.env == {"PORT": "8080", "DEBUG": "true"}

    def test_parse_json(self):
        data = {"stages": [{"name": "build", "steps": [{"run": "make"}]}]}
        definition = parse_definition(json.dumps(data), "json")
        assert definition.version == "v1"
        assert definition.name == "pipeline"

    def test_parse_toml(self):
        text = """
name = "toml-pipeline"

[[stages]]
name = "build"

[[stages.steps]]
command = "make"
args = ["all"]
"""
        definition = parse_definition(text, "toml")
        assert definition.name == "toml-pipeline"
        assert definition.stages[0].steps[0].args == ["all"]

    def test_load_definition_by_suffix(self, tmp_path):
        path = tmp_path / "pipeline.yml"
        path.write_text(PIPELINE_YAML)
        assert load_definition(path).name == "webapp"

    def test_unknown_suffix_rejected(self, tmp_path):
        path = tmp_path / "pipeline.txt"
        path.write_text(PIPELINE_YAML)
        with pytest.raises(ConfigValidationError, match="Cannot infer format"):
            load_definition(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigValidationError, match="Cannot read"):
            load_definition(tmp_path / "missing.yaml")

    def test_yaml_syntax_error(self):
        with pytest.raises(ConfigValidationError, match="Invalid YAML syntax"):
            parse_definition("stages: [unclosed")

    def test_root_must_be_mapping(self):
        with pytest.raises(ConfigValidationError, match="root must be a mapping"):
            parse_definition("- just\n- a list\n")

    def test_schema_issues_have_paths(self):
        """Test schema errors are reported as path: message."""
        with pytest.raises(ConfigValidationError) as exc_info:
            parse_definition("""
stages:
  - name: Build
    steps: []
""")
        issues = exc_info.value.issues
        assert any(issue.startswith("stages.0.name:") for issue in issues)
        assert any(issue.startswith("stages.0.steps:") for issue in issues)

    def test_unsupported_version(self):
        with pytest.raises(ConfigValidationError) as exc_info:
            parse_definition("version: v2\nstages: [{name: a, steps: [{run: 'true'}]}]")
        assert "Unsupported schema version" in str(exc_info.value)

    def test_unknown_key_rejected(self):
        with pytest.raises(ConfigValidationError) as exc_info:
            parse_definition("stages: [{name: a, steps: [{run: 'true'}], retries: 3}]")
        assert any("retries" in issue for issue in exc_info.value.issues)

    def test_round_trip(self):
        definition = parse_definition(PIPELINE_YAML)
        assert definition_from_dict(definition_to_dict(definition)) == definition


class TestStepDefinition:
    """Tests for StepDefinition validation."""

    def test_name_derived_from_run(self):
        step = StepDefinition.model_validate({"run": "mvn -B package"})
        assert step.name == "mvn"
        assert step.uses == "command"

    def test_name_derived_from_uses(self):
        step = StepDefinition.model_validate({"uses": "maven", "with": {"goals": ["test"]}})
        assert step.name == "maven"
        assert step.options == {"goals": ["test"]}

    def test_timeout_must_be_positive(self):
        with pytest.raises(ValidationError):
            StepDefinition.model_validate({"run": "true", "timeout": 0})

    def test_args_coerced_to_strings(self):
        step = StepDefinition.model_validate({"command": "sleep", "args": [1]})
        assert step.args == ["1"]

    def test_frozen(self):
        step = StepDefinition.model_validate({"run": "true"})
        with pytest.raises(ValidationError):
            step.run = "false"


class TestStageDefinition:
    """Tests for StageDefinition validation."""

    def test_unnamed_steps_get_unique_names(self):
        stage = StageDefinition.model_validate({
            "name": "build",
            "steps": [{"run": "mvn compile"}, {"run": "mvn test"}, {"run": "mvn package"}],
        })
        assert [s.name for s in stage.steps] == ["mvn", "mvn-2", "mvn-3"]

    def test_duplicate_explicit_step_names(self):
        with pytest.raises(ValidationError, match="Duplicate step name"):
            StageDefinition.model_validate({
                "name": "build",
                "steps": [{"name": "a", "run": "x"}, {"name": "a", "run": "y"}],
            })

    def test_duplicate_artifacts(self):
        with pytest.raises(ValidationError, match="Duplicate artifact"):
            StageDefinition.model_validate({
                "name": "build",
                "steps": [{"run": "x"}],
                "artifacts": [{"name": "a", "path": "x"}, {"name": "a", "path": "y"}],
            })

    def test_default_condition(self):
        stage = StageDefinition.model_validate({"name": "build", "steps": [{"run": "x"}]})
        assert stage.when.status == ConditionStatus.ON_SUCCESS
        assert stage.when.branches == []
        assert stage.continue_on_failure is False

    def test_invalid_stage_name(self):
        with pytest.raises(ValidationError):
            StageDefinition.model_validate({"name": "1st", "steps": [{"run": "x"}]})

    def test_pipeline_requires_stages(self):
        with pytest.raises(ValidationError):
            PipelineDefinition.model_validate({"stages": []})
