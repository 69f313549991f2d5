"""
Load pipeline definitions from YAML, JSON or TOML.
"""
import json
import tomllib
from pathlib import Path
from typing import Any, Dict, List, Union

import yaml
from pydantic import ValidationError

from stagerun.core.errors import ConfigValidationError
from stagerun.core.logging import get_logger
from stagerun.definition.schema import PipelineDefinition

logger = get_logger("definition.loader")

FORMATS_BY_SUFFIX = {
    ".yml": "yaml",
    ".yaml": "yaml",
    ".json": "json",
    ".toml": "toml",
}


def format_error_item(item: Dict[str, Any]) -> str:
    """One pydantic error as `path: message`."""
    path = ".".join(str(part) for part in item.get("loc", ())) or "<root>"
    message = item.get("msg", "invalid value")
    if message.startswith("Value error, "):
        message = message[len("Value error, "):]
    return f"{path}: {message}"


def format_validation_errors(error: ValidationError) -> List[str]:
    """Flatten pydantic errors into `path: message` strings."""
    return [format_error_item(item) for item in error.errors()]


def _parse_raw(text: str, fmt: str) -> Any:
    try:
        if fmt == "yaml":
            return yaml.safe_load(text)
        if fmt == "json":
            return json.loads(text)
        if fmt == "toml":
            return tomllib.loads(text)
    except yaml.YAMLError as e:
        raise ConfigValidationError(f"Invalid YAML syntax: {e}")
    except json.JSONDecodeError as e:
        raise ConfigValidationError(f"Invalid JSON syntax: {e}")
    except tomllib.TOMLDecodeError as e:
        raise ConfigValidationError(f"Invalid TOML syntax: {e}")
    raise ConfigValidationError(f"Unsupported definition format: '{fmt}'. Supported: yaml, json, toml")


def definition_from_dict(data: Any) -> PipelineDefinition:
    """Validate a decoded document against the pipeline schema."""
    if not isinstance(data, dict):
        raise ConfigValidationError("Pipeline definition root must be a mapping/object")
    try:
        return PipelineDefinition.model_validate(data)
    except ValidationError as e:
        raise ConfigValidationError("Invalid pipeline definition", format_validation_errors(e))


def parse_definition(text: str, fmt: str = "yaml") -> PipelineDefinition:
    """
    Parse definition text into a PipelineDefinition.

    Only the schema is checked here; cross-stage rules (artifact references,
    executor options) are checked by PipelineGraph.

    Raises:
        ConfigValidationError: If the text is malformed or fails the schema
    """
    return definition_from_dict(_parse_raw(text, fmt.lower()))


def load_definition(path: Union[str, Path]) -> PipelineDefinition:
    """Load a definition file, picking the format from its suffix."""
    path = Path(path)
    fmt = FORMATS_BY_SUFFIX.get(path.suffix.lower())
    if fmt is None:
        raise ConfigValidationError(
            f"Cannot infer format of '{path.name}'. "
            f"Use one of: {', '.join(sorted(FORMATS_BY_SUFFIX))}"
        )
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigValidationError(f"Cannot read pipeline definition '{path}': {e}")

    definition = parse_definition(text, fmt)
    logger.info(f"Loaded pipeline '{definition.name}' with {len(definition.stages)} stages from {path}")
    return definition


def definition_to_dict(definition: PipelineDefinition) -> Dict[str, Any]:
    """Serialize a definition back to plain data (round-trips through the loader)."""
    return definition.model_dump(by_alias=True, exclude_none=True, mode="json")
