"""Compiler configuration.

Settings come from defaults, an optional YAML file, and ``CUBECELL_*``
environment variables, in that order of precedence (later wins).

Example YAML:

    class_prefix: PricingCell
    hoist_imports: true
    include_source_in_errors: false
"""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

ENV_PREFIX = "CUBECELL_"


class CompilerConfig(BaseModel):
    """Options for ``CellCompiler``."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    class_prefix: str = Field(
        default="CubeCell",
        description="Prefix of generated cell class names",
    )
    hoist_imports: bool = Field(
        default=True,
        description="Move top-level imports in cell source to the generated module",
    )
    include_source_in_errors: bool = Field(
        default=True,
        description="Quote the cell source in compile error messages",
    )
    max_error_source_length: int = Field(
        default=200,
        ge=0,
        description="Truncate quoted source in error messages to this many characters",
    )

    @field_validator("class_prefix")
    @classmethod
    def _identifier_prefix(cls, v: str) -> str:
        if not v.isidentifier():
            raise ValueError(f"class_prefix must be a Python identifier, got {v!r}")
        return v


def _env_overrides(environ: dict[str, str]) -> dict[str, Any]:
    overrides = {}
    for name in CompilerConfig.model_fields:
        key = ENV_PREFIX + name.upper()
        if key in environ:
            overrides[name] = environ[key]
    return overrides


def load_config(path: str | Path | None = None, environ: dict[str, str] | None = None) -> CompilerConfig:
    """Load compiler settings from YAML and the environment.

    Args:
        path: Optional YAML file. A missing file is an error.
        environ: Environment mapping (defaults to ``os.environ``)

    Returns:
        Validated CompilerConfig
    """
    data: dict[str, Any] = {}
    if path is not None:
        with open(path) as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"{path}: expected a mapping at top level")
        data.update(loaded)

    data.update(_env_overrides(dict(os.environ if environ is None else environ)))
    return CompilerConfig(**data)
