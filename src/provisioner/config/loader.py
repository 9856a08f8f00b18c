"""Plan loading, templating and overrides for provisioner."""

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from provisioner.config.models import ConfigOverrides, PlanConfig, Settings
from provisioner.config.presets import get_preset
from provisioner.core.errors import ConfigError
from provisioner.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_PLAN_FILE = Path("provision.yaml")

# Only plan values are substituted; other {{ }} text (e.g. kubectl go-templates) is kept
TEMPLATE_PATTERN = re.compile(r"\{\{\s*((?:settings|components)\.[A-Za-z0-9_.-]+)\s*\}\}")

ASSIGNMENT_PATTERN = re.compile(r"\s*[A-Za-z0-9_][A-Za-z0-9_.-]*=")


def load_plan(
    plan_file: str = "",
    preset: str = "",
    overrides: ConfigOverrides | None = None,
) -> PlanConfig:
    """Load a plan from a file or preset, apply overrides and resolve templates.

    Args:
        plan_file: Path to a YAML plan file (optional)
        preset: Name of a built-in preset (optional)
        overrides: Overrides from CLI flags and the environment (optional)

    Returns:
        Validated plan

    Raises:
        ConfigError: If the plan cannot be found, parsed, rendered or validated
    """
    if preset:
        logger.info("Loading preset", preset=preset)
        try:
            document = get_preset(preset)
        except ValueError as e:
            raise ConfigError(str(e)) from e
    elif plan_file:
        document = _load_from_file(Path(plan_file))
    elif DEFAULT_PLAN_FILE.exists():
        document = _load_from_file(DEFAULT_PLAN_FILE)
    else:
        raise ConfigError(
            f"No plan given and no {DEFAULT_PLAN_FILE} in the current directory; "
            "pass a plan file or --preset"
        )

    if overrides:
        _apply_overrides(document, overrides)

    rendered = render_templates(document)

    try:
        return PlanConfig.model_validate(rendered)
    except ValidationError as e:
        raise ConfigError(f"Invalid plan: {e}") from e


def _load_from_file(path: Path) -> dict[str, Any]:
    """Load a raw plan document from a YAML file.

    Raises:
        ConfigError: If the file is missing, not YAML, or not a mapping
    """
    if not path.exists():
        raise ConfigError(f"Plan file not found: {path}")

    logger.info("Loading plan file", path=str(path))

    try:
        with path.open("r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in plan file: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError("Plan file must contain a YAML mapping")
    return data


def _apply_overrides(document: dict[str, Any], overrides: ConfigOverrides) -> None:
    """Apply overrides to a raw plan document in place.

    Args:
        document: Raw plan document
        overrides: Override values to apply
    """
    for item in overrides.values:
        key, sep, raw_value = item.partition("=")
        if not sep or not key.strip():
            raise ConfigError(f"Override '{item}' must look like key=value")
        set_dotted(document, key.strip(), _parse_scalar(raw_value.strip()))

    settings = document.setdefault("settings", {})
    if not isinstance(settings, dict):
        raise ConfigError("'settings' must be a mapping")
    if overrides.state_file:
        settings["state-file"] = overrides.state_file
    if overrides.default_timeout is not None:
        settings["default-timeout"] = overrides.default_timeout


def _parse_scalar(value: str) -> Any:
    try:
        parsed = yaml.safe_load(value)
    except yaml.YAMLError:
        return value
    # Keep version-like strings such as "1.30" as text
    if isinstance(parsed, float) or parsed is None:
        return value
    return parsed


def set_dotted(document: dict[str, Any], key: str, value: Any) -> None:
    """Set a value in a nested document using a dotted key.

    Mapping segments create missing levels. A segment addressing a list of
    steps selects the entry with that ``id``, so
    ``steps.init-cluster.timeout`` targets the step named ``init-cluster``.

    Raises:
        ConfigError: If the key cannot be resolved
    """
    parts = key.split(".")
    node: Any = document
    for part in parts[:-1]:
        node = _descend(node, part, key, create=True)

    last = parts[-1]
    if isinstance(node, dict):
        node[last] = value
    else:
        raise ConfigError(f"Cannot set '{key}': parent is not a mapping")


def _descend(node: Any, part: str, key: str, create: bool) -> Any:
    if isinstance(node, dict):
        if part not in node and create:
            node[part] = {}
        if part not in node:
            raise ConfigError(f"Unknown key '{key}'")
        return node[part]
    if isinstance(node, list):
        for entry in node:
            if isinstance(entry, dict) and entry.get("id") == part:
                return entry
        raise ConfigError(f"No step with id '{part}' for override '{key}'")
    raise ConfigError(f"Cannot resolve '{key}': '{part}' is not a mapping")


def render_templates(document: dict[str, Any]) -> dict[str, Any]:
    """Resolve ``{{ components.x.version }}`` style references.

    References may point at ``settings`` or ``components`` values, which may
    themselves contain references. Default settings are visible even when
    the plan does not declare them.

    Args:
        document: Raw plan document

    Returns:
        A new document with every reference substituted

    Raises:
        ConfigError: On unknown or circular references
    """
    defaults = Settings().model_dump(by_alias=True)
    raw_settings = document.get("settings") or {}
    raw_components = document.get("components") or {}
    if not isinstance(raw_settings, dict) or not isinstance(raw_components, dict):
        raise ConfigError("'settings' and 'components' must be mappings")
    context = {
        "settings": {**defaults, **raw_settings},
        # Optional component fields resolve to "" when a plan leaves them out
        "components": {
            name: {"url": "", "checksum": "", **(fields if isinstance(fields, dict) else {})}
            for name, fields in raw_components.items()
        },
    }

    def lookup(path: str, chain: tuple[str, ...]) -> str:
        if path in chain:
            cycle = " -> ".join([*chain[chain.index(path) :], path])
            raise ConfigError(f"Circular template reference: {cycle}")

        node: Any = context
        for part in path.split("."):
            if not isinstance(node, dict):
                raise ConfigError(f"Unknown template reference '{path}'")
            for candidate in (part, part.replace("_", "-"), part.replace("-", "_")):
                if candidate in node:
                    node = node[candidate]
                    break
            else:
                raise ConfigError(f"Unknown template reference '{path}'")

        if isinstance(node, (dict, list)) or node is None:
            raise ConfigError(f"Template reference '{path}' does not name a scalar value")
        return render_string(str(node), (*chain, path))

    def render_string(text: str, chain: tuple[str, ...]) -> str:
        return TEMPLATE_PATTERN.sub(lambda m: lookup(m.group(1), chain), text)

    def render(value: Any) -> Any:
        if isinstance(value, str):
            return render_string(value, ())
        if isinstance(value, dict):
            return {k: render(v) for k, v in value.items()}
        if isinstance(value, list):
            return [render(v) for v in value]
        return value

    return render(document)


def split_assignments(text: str) -> list[str]:
    """Split comma-separated ``key=value`` pairs.

    A comma only starts a new pair when a ``key=`` follows it, so values may
    contain commas (``steps.x.command=echo a,b``).

    Args:
        text: One or more assignments

    Returns:
        Stripped assignments, empty entries dropped
    """
    assignments: list[str] = []
    for segment in text.split(","):
        if not segment.strip():
            continue
        if assignments and not ASSIGNMENT_PATTERN.match(segment):
            assignments[-1] = f"{assignments[-1]},{segment}"
        else:
            assignments.append(segment)
    return [a.strip() for a in assignments]


def get_env_overrides() -> ConfigOverrides:
    """Get plan overrides from environment variables.

    Environment variables are prefixed with PROVISION_ (e.g.
    PROVISION_STATE_FILE). PROVISION_SET holds comma-separated key=value
    pairs with the same meaning as ``--set``.

    Returns:
        ConfigOverrides populated from environment variables

    Raises:
        ConfigError: If PROVISION_DEFAULT_TIMEOUT is not a number
    """

    def get_str(key: str) -> str:
        return os.getenv(f"PROVISION_{key.upper()}", "")

    timeout_str = get_str("default_timeout")
    try:
        timeout = float(timeout_str) if timeout_str else None
    except ValueError as e:
        raise ConfigError(f"PROVISION_DEFAULT_TIMEOUT must be a number, got '{timeout_str}'") from e

    return ConfigOverrides(
        state_file=get_str("state_file"),
        default_timeout=timeout,
        values=split_assignments(get_str("set")),
    )


def merge_overrides(cli: ConfigOverrides, env: ConfigOverrides) -> ConfigOverrides:
    """Combine CLI and environment overrides; CLI flags win, value lists combine."""
    return ConfigOverrides(
        state_file=cli.state_file or env.state_file,
        default_timeout=(
            cli.default_timeout if cli.default_timeout is not None else env.default_timeout
        ),
        # Environment first so CLI assignments are applied last
        values=env.values + cli.values,
    )
