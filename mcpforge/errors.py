"""Exception hierarchy for the generation pipeline.

Every error raised by mcpforge derives from GenerationError. Components
never swallow or retry; errors propagate to the CLI, which reports them.
"""

from __future__ import annotations

from pathlib import Path


class GenerationError(Exception):
    """Base class for all mcpforge errors."""


# ---------------------------------------------------------------------------
# Spec / schema
# ---------------------------------------------------------------------------

class SchemaError(GenerationError):
    """The API document could not be turned into a SchemaModel."""


class MalformedSpecError(SchemaError):
    pass


class UnresolvedRefError(SchemaError):
    def __init__(self, key: str) -> None:
        super().__init__(f"Unresolved reference: {key}")
        self.key = key


class UnsupportedVersionError(SchemaError):
    def __init__(self, value: str) -> None:
        super().__init__(f"Unsupported spec version: {value!r}")
        self.value = value


class FetchError(GenerationError):
    """The API document could not be read from its file or URL."""

    def __init__(self, url: str, cause: str) -> None:
        super().__init__(f"Failed to fetch {url}: {cause}")
        self.url = url
        self.cause = cause


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

class TemplateSourceError(GenerationError):
    pass


class TemplateNotFoundError(TemplateSourceError):
    pass


class InvalidManifestError(TemplateSourceError):
    pass


class RenderError(GenerationError):
    """A template failed to render. Carries the template identity."""

    def __init__(self, file_id: str, cause: str) -> None:
        super().__init__(f"Failed to render template {file_id!r}: {cause}")
        self.file_id = file_id
        self.cause = cause


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------

class OutputError(GenerationError):
    """Creating a directory or writing a file in the output tree failed."""

    def __init__(self, path: Path | str, cause: str) -> None:
        super().__init__(f"Failed to write {path}: {cause}")
        self.path = Path(path)
        self.cause = cause


class HookError(GenerationError):
    def __init__(self, command: str, returncode: int) -> None:
        super().__init__(f"Hook {command!r} exited with status {returncode}")
        self.command = command
        self.returncode = returncode


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class ConfigError(GenerationError):
    pass


class InvalidKindError(ConfigError):
    pass


class InvalidOperationFilterError(ConfigError):
    pass


class InvalidProjectNameError(ConfigError):
    pass
