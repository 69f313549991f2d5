"""
Pipeline definition schema and loaders.
"""
from stagerun.definition.schema import (
    SCHEMA_VERSION,
    ArtifactDeclaration,
    Condition,
    ConditionStatus,
    PipelineDefinition,
    StageDefinition,
    StepDefinition,
)
from stagerun.definition.loader import (
    definition_from_dict,
    definition_to_dict,
    load_definition,
    parse_definition,
)

__all__ = [
    "SCHEMA_VERSION",
    "ArtifactDeclaration",
    "Condition",
    "ConditionStatus",
    "PipelineDefinition",
    "StageDefinition",
    "StepDefinition",
    "definition_from_dict",
    "definition_to_dict",
    "load_definition",
    "parse_definition",
]
