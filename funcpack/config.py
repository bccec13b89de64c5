"""Build settings: loading, layered merge and per-function resolution.

Settings come from several sources. Later layers win, key by key:

1. built-in defaults (``BuildConfiguration`` field defaults)
2. ``custom.build`` in ``serverless.yml``
3. ``serverless.build.yml`` next to it
4. per-invocation overrides (CLI flags)

Per-function include/exclude lists are then concatenated from the global
settings, the function's own ``package`` section and ``functions.<fn>``.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

import jsonschema
import pydantic
import yaml

from funcpack.errors import ConfigurationError
from funcpack.types import BuildConfiguration, FunctionBuildSpec, ServiceDefinition
from funcpack.validator import validate_build_settings

SERVICE_FILE = "serverless.yml"
BUILD_FILE = "serverless.build.yml"


def _read_yaml(path: Path) -> dict:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"invalid YAML in {path.name}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path.name} must contain a mapping at top level")
    return data


def load_service_definition(service_path: Path) -> ServiceDefinition:
    """Read ``serverless.yml`` from *service_path*."""
    raw = _read_yaml(service_path / SERVICE_FILE)
    service = raw.get("service")
    # `service: {name: foo}` is accepted as well as `service: foo`
    if isinstance(service, dict):
        raw = {**raw, "service": service.get("name")}
    raw["functions"] = {name: fn or {} for name, fn in (raw.get("functions") or {}).items()}
    raw["custom"] = raw.get("custom") or {}
    try:
        return ServiceDefinition.model_validate(raw)
    except pydantic.ValidationError as exc:
        raise ConfigurationError(f"invalid {SERVICE_FILE}: {exc}") from exc


def load_build_file(service_path: Path) -> dict:
    path = service_path / BUILD_FILE
    if not path.is_file():
        return {}
    return _read_yaml(path)


def merge_build_config(
    custom: Mapping[str, Any] | None = None,
    build_file: Mapping[str, Any] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> BuildConfiguration:
    """Merge the settings layers into one immutable configuration.

    The merge is shallow: a nested mapping such as ``modules`` or ``zip`` in a
    later layer replaces the earlier one as a whole.
    """
    merged: dict[str, Any] = {}
    for layer_name, layer in (
        ("custom.build", custom),
        (BUILD_FILE, build_file),
        ("overrides", overrides),
    ):
        if not layer:
            continue
        try:
            validate_build_settings(dict(layer))
        except jsonschema.ValidationError as exc:
            path = ".".join(str(p) for p in exc.absolute_path) or "<root>"
            raise ConfigurationError(f"{layer_name}: {path}: {exc.message}") from exc
        merged.update(layer)

    try:
        return BuildConfiguration.model_validate(merged)
    except pydantic.ValidationError as exc:
        raise ConfigurationError(f"invalid build settings: {exc}") from exc


def select_functions(service: ServiceDefinition, config: BuildConfiguration) -> list[str]:
    requested = config.function
    if requested is None:
        requested = []
    elif isinstance(requested, str):
        requested = [requested]

    selected = [name for name in requested if name in service.functions]
    return selected or list(service.functions)


def resolve_functions(
    service: ServiceDefinition, config: BuildConfiguration
) -> list[FunctionBuildSpec]:
    units: list[FunctionBuildSpec] = []
    for name in select_functions(service, config):
        fn = service.functions[name]
        override = config.functions.get(name)

        include = [
            *config.include,
            *fn.package.include,
            *(override.include if override else ()),
        ]
        exclude = [
            *config.base_exclude,
            *config.exclude,
            *fn.package.exclude,
            *(override.exclude if override else ()),
        ]
        units.append(
            FunctionBuildSpec(name=name, handler=fn.handler, include=include, exclude=exclude)
        )
    return units


def load_build_config(
    service_path: Path, overrides: Mapping[str, Any] | None = None
) -> tuple[ServiceDefinition, BuildConfiguration]:
    """Load and merge everything found in *service_path*."""
    service = load_service_definition(service_path)
    custom = service.custom.get("build") or {}
    if not isinstance(custom, dict):
        raise ConfigurationError("custom.build must be a mapping")
    config = merge_build_config(custom, load_build_file(service_path), overrides)
    return service, config
