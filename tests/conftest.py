"""Shared fixtures for funcpack tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from tests.helpers import write_module

SERVERLESS_YML = """\
service: demo
functions:
  hello:
    handler: src/hello.handler
    package:
      include:
        - src/hello.js
  world:
    handler: src/world.handler
custom:
  build:
    method: bundle
"""


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def service_dir(tmp_path: Path) -> Path:
    """A small service tree with two functions and one installed module."""
    root = tmp_path / "svc"
    (root / "src").mkdir(parents=True)
    (root / "serverless.yml").write_text(SERVERLESS_YML, encoding="utf-8")
    (root / "src" / "hello.js").write_text("exports.handler = () => 'hello'\n", encoding="utf-8")
    (root / "src" / "world.js").write_text("exports.handler = () => 'world'\n", encoding="utf-8")
    write_module(root, "uuid", {"index.js": "module.exports = 'uuid'\n"})
    return root
