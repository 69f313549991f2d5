"""
Placeholder expansion for step parameters.

Placeholder forms recognised inside strings:
- ${VAR_NAME}                 environment variable (left as-is if unset)
- ${VAR_NAME:-default}        default used when VAR_NAME is unset or empty
- ${artifact:NAME}            path of a published artifact
- ${artifact:NAME.checksum}   any ArtifactRef field: path, checksum, size, stage
"""
import re
from typing import Any, Callable, Dict, Mapping, Set

ARTIFACT_FIELDS = ("path", "checksum", "size", "stage")

_PLACEHOLDER = re.compile(r'\$\{([^}]+)\}')
_ARTIFACT_REF = re.compile(r'^artifact:([A-Za-z][A-Za-z0-9_-]*)(?:\.([a-z_]+))?$')


def find_artifact_refs(value: Any) -> Set[str]:
    """Collect artifact names referenced by ${artifact:...} placeholders."""
    found: Set[str] = set()
    if isinstance(value, str):
        for match in _PLACEHOLDER.finditer(value):
            ref = _ARTIFACT_REF.match(match.group(1).strip())
            if ref:
                found.add(ref.group(1))
    elif isinstance(value, dict):
        for item in value.values():
            found |= find_artifact_refs(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            found |= find_artifact_refs(item)
    return found


def expand(
    value: Any,
    env: Mapping[str, str],
    resolve_artifact: Callable[[str], Any],
) -> Any:
    """
    Recursively expand placeholders in strings, lists and dicts.

    Args:
        value: Value to expand
        env: Environment used for ${VAR} lookups
        resolve_artifact: Callable returning an ArtifactRef for a name;
            raises ArtifactNotFound for unknown names

    Returns:
        Value of the same shape with placeholders replaced
    """
    if isinstance(value, str):
        def replacer(match):
            token = match.group(1).strip()
            ref = _ARTIFACT_REF.match(token)
            if ref:
                name, attr = ref.group(1), ref.group(2) or "path"
                if attr not in ARTIFACT_FIELDS:
                    raise ValueError(
                        f"Unknown artifact field '{attr}' in '{match.group(0)}'. "
                        f"Valid fields: {', '.join(ARTIFACT_FIELDS)}"
                    )
                return str(getattr(resolve_artifact(name), attr))
            if ":-" in token:
                name, default = token.split(":-", 1)
                return env.get(name.strip()) or default
            return env.get(token, match.group(0))
        return _PLACEHOLDER.sub(replacer, value)
    if isinstance(value, dict):
        return {key: expand(item, env, resolve_artifact) for key, item in value.items()}
    if isinstance(value, list):
        return [expand(item, env, resolve_artifact) for item in value]
    return value


def artifact_env_name(name: str) -> str:
    """Environment variable that exports an artifact path to steps."""
    return "STAGERUN_ARTIFACT_" + re.sub(r'[^A-Za-z0-9]', '_', name).upper()


def expand_env(
    env: Dict[str, str],
    base: Mapping[str, str],
    resolve_artifact: Callable[[str], Any],
) -> Dict[str, str]:
    """Expand env values in declaration order; each may reference earlier ones."""
    scope = dict(base)
    result = {}
    for key, raw in env.items():
        scope[key] = result[key] = expand(raw, scope, resolve_artifact)
    return result
