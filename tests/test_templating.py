"""
Tests for placeholder expansion.
"""
import pytest

from stagerun.core.errors import ArtifactNotFound
from stagerun.definition.templating import (
    artifact_env_name,
    expand,
    expand_env,
    find_artifact_refs,
)
from stagerun.pipeline.artifacts import ArtifactRef

REF = ArtifactRef(name="app_war", path="/ws/target/app.war", checksum="sha256:abc", size=42, stage="package")


def resolve(name):
    if name == "app_war":
        return REF
    raise ArtifactNotFound(name)


def test_env_placeholders():
    assert expand("mvn -Dv=${VERSION}", {"VERSION": "1.2"}, resolve) == "mvn -Dv=1.2"


def test_unset_env_left_untouched():
    assert expand("echo ${NOPE}", {}, resolve) == "echo ${NOPE}"


def test_default_for_unset_or_empty_env():
    assert expand("-Dv=${VERSION:-0.0.1}", {}, resolve) == "-Dv=0.0.1"
    assert expand("-Dv=${VERSION:-0.0.1}", {"VERSION": ""}, resolve) == "-Dv=0.0.1"
    assert expand("-Dv=${VERSION:-0.0.1}", {"VERSION": "1.2"}, resolve) == "-Dv=1.2"
    assert expand("${REGION:-}", {}, resolve) == ""


def test_artifact_path_and_fields():
    assert expand("${artifact:app_war}", {}, resolve) == "/ws/target/app.war"
    assert expand("${artifact:app_war.checksum}", {}, resolve) == "sha256:abc"
    assert expand("${artifact:app_war.size}", {}, resolve) == "42"
    assert expand("${artifact:app_war.stage}", {}, resolve) == "package"


def test_unknown_artifact_field():
    with pytest.raises(ValueError, match="Unknown artifact field"):
        expand("${artifact:app_war.owner}", {}, resolve)


def test_missing_artifact_raises():
    with pytest.raises(ArtifactNotFound):
        expand("${artifact:other}", {}, resolve)


def test_nested_structures():
    value = {"war": "${artifact:app_war}", "flags": ["-v", "${LEVEL}"], "count": 3}
    assert expand(value, {"LEVEL": "debug"}, resolve) == {
        "war": "/ws/target/app.war",
        "flags": ["-v", "debug"],
        "count": 3,
    }


def test_find_artifact_refs():
    value = ["${artifact:a}", {"x": "${artifact:b.checksum} ${HOME}"}, None, 5]
    assert find_artifact_refs(value) == {"a", "b"}


def test_expand_env_sees_earlier_entries():
    env = {"ROOT": "/opt", "BIN": "${ROOT}/bin", "WAR": "${artifact:app_war}"}
    assert expand_env(env, {}, resolve) == {
        "ROOT": "/opt",
        "BIN": "/opt/bin",
        "WAR": "/ws/target/app.war",
    }


def test_artifact_env_name():
    assert artifact_env_name("app_war") == "STAGERUN_ARTIFACT_APP_WAR"
    assert artifact_env_name("site-docs") == "STAGERUN_ARTIFACT_SITE_DOCS"
