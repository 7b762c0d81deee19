"""Run configuration: template kinds and the GenerationConfig value.

The config is built once at startup (by the CLI or a caller) and passed
explicitly through the pipeline; nothing here is process-wide state.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, TYPE_CHECKING

from .errors import ConfigError, InvalidKindError, InvalidProjectNameError

if TYPE_CHECKING:
    from .schema_parser import SchemaModel

# Environment variable pointing at a filesystem templates root
TEMPLATE_DIR_ENV = "MCPFORGE_TEMPLATE_DIR"

DEFAULT_PROJECT_NAME = "mcp_server"
DEFAULT_OUTPUT_DIR = "generated"
DEFAULT_PROJECT_VERSION = "0.1.0"

_PROJECT_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*$")


class _ParsableEnum(str, Enum):
    @classmethod
    def parse(cls, value: str | "_ParsableEnum") -> Any:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            choices = ", ".join(m.value for m in cls)
            raise InvalidKindError(
                f"Unknown {cls.__name__} {value!r} (available: {choices})"
            ) from None

    def __str__(self) -> str:
        return self.value


class Protocol(_ParsableEnum):
    MCP = "mcp"


class Role(_ParsableEnum):
    SERVER = "server"
    CLIENT = "client"


class TemplateKind(_ParsableEnum):
    RUST = "rust"
    PYTHON = "python"
    TYPESCRIPT = "typescript"
    CUSTOM = "custom"


@dataclass
class GenerationConfig:
    """Everything a generation run needs besides the API document and templates."""

    project_name: str = DEFAULT_PROJECT_NAME
    output_dir: Path = Path(DEFAULT_OUTPUT_DIR)
    template_kind: TemplateKind = TemplateKind.PYTHON
    protocol: Protocol = Protocol.MCP
    role: Role = Role.SERVER
    template_dir: Path | None = None
    include_operations: list[str] = field(default_factory=list)
    exclude_operations: list[str] = field(default_factory=list)
    overwrite: bool = False
    extra_context: dict[str, Any] = field(default_factory=dict)
    base_url: str | None = None
    project_version: str = DEFAULT_PROJECT_VERSION
    description: str = ""
    max_workers: int = 1
    run_hooks: bool = False

    def __post_init__(self) -> None:
        self.output_dir = Path(self.output_dir)
        if self.template_dir is not None:
            self.template_dir = Path(self.template_dir)
        self.template_kind = TemplateKind.parse(self.template_kind)
        self.protocol = Protocol.parse(self.protocol)
        self.role = Role.parse(self.role)
        self.include_operations = list(self.include_operations)
        self.exclude_operations = list(self.exclude_operations)
        if self.max_workers < 1:
            raise ConfigError(f"max_workers must be >= 1, got {self.max_workers}")
        if self.template_kind is TemplateKind.CUSTOM and self.template_dir is None:
            raise InvalidKindError("Template kind 'custom' requires a template directory")
        validate_project_name(self.project_name)


def validate_project_name(name: str) -> None:
    """Project names become package/crate names, so keep them simple."""
    if not name:
        raise InvalidProjectNameError("Project name cannot be empty")
    if name[0] in "-_":
        raise InvalidProjectNameError("Project name cannot start with a dash or underscore")
    if not _PROJECT_NAME_RE.match(name):
        raise InvalidProjectNameError(
            "Project name must contain only alphanumeric characters, dashes, and underscores"
        )


def env_template_root() -> Path | None:
    value = os.environ.get(TEMPLATE_DIR_ENV)
    return Path(value) if value else None


def resolve_base_url(model: "SchemaModel", base_url: str | None = None) -> str | None:
    """Pick the API base URL generated code should call.

    An absolute server URL from the document wins; a relative one is appended
    to ``base_url``. Without servers, ``base_url`` is used as given.
    """
    if not model.servers:
        return base_url.rstrip("/") if base_url else None

    spec_url = model.servers[0].url
    if spec_url.startswith(("http://", "https://")):
        return spec_url.rstrip("/")
    if spec_url.startswith("/"):
        if not base_url:
            raise ConfigError(
                f"Spec declares a relative server URL {spec_url!r}; a base URL is required"
            )
        return base_url.rstrip("/") + spec_url.rstrip("/")
    raise ConfigError(
        f"Invalid server URL {spec_url!r}: expected an absolute URL or a path starting with '/'"
    )
