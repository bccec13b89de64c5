"""Schema validation for raw build settings."""

from __future__ import annotations

import json
from functools import cache
from importlib import resources

from jsonschema import Draft202012Validator

# --- Schema loaders ---------------------------------------------------------


def _load_schema(package: str, resource_name: str) -> dict:
    with resources.files(package).joinpath(resource_name).open("r", encoding="utf-8") as f:
        return json.load(f)


@cache
def _build_schema() -> dict:
    return _load_schema("funcpack.schema", "build.schema.json")


# --- Public validators ------------------------------------------------------


def validate_build_settings(data: dict) -> None:
    """Validate one layer of build settings (``custom.build``, build file, overrides).

    Raises ``jsonschema.ValidationError`` on the first problem found.
    """
    Draft202012Validator(_build_schema()).validate(data)
