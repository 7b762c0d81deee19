"""Template discovery, manifest loading, and rendering.

A template set is addressed by "{protocol}/{role}/{kind}" and comes from
one of two places:

  Embedded    bundled with the package under mcpforge/templates/
  Filesystem  a directory on disk (user override or a templates root)

Every template set has a manifest.yml listing the files to render.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path, PurePosixPath
from typing import Any, Union

import jinja2
import yaml

from .config import env_template_root
from .errors import InvalidManifestError, RenderError, TemplateNotFoundError
from .logging_config import get_logger
from .naming import to_camel_case, to_proper_case, to_snake_case

logger = get_logger(__name__)

MANIFEST_NAME = "manifest.yml"
EMBEDDED_PACKAGE = "mcpforge"
EMBEDDED_DIR = "templates"

# Repository-level templates root, used when running from a checkout
PROJECT_TEMPLATE_DIR = Path(__file__).parent.parent / "templates"

_PER_OPERATION_FOR_EACH = {"endpoint", "operation"}


@dataclass(frozen=True)
class Embedded:
    key: str


@dataclass(frozen=True)
class Filesystem:
    root: Path


TemplateSource = Union[Embedded, Filesystem]


def template_key(protocol: str, role: str, kind: str) -> str:
    return f"{protocol}/{role}/{kind}"


# ---------------------------------------------------------------------------
# Embedded bundles
# ---------------------------------------------------------------------------

def _embedded_root() -> Traversable:
    return resources.files(EMBEDDED_PACKAGE).joinpath(EMBEDDED_DIR)


def _embedded_dir(key: str) -> Traversable:
    node = _embedded_root()
    for part in key.split("/"):
        node = node.joinpath(part)
    return node


def has_embedded(key: str) -> bool:
    return _embedded_dir(key).joinpath(MANIFEST_NAME).is_file()


def list_embedded() -> list[str]:
    """Return the keys of all bundled template sets, sorted."""
    keys: list[str] = []
    root = _embedded_root()
    if not root.is_dir():
        return keys
    for protocol in root.iterdir():
        if not protocol.is_dir():
            continue
        for role in protocol.iterdir():
            if not role.is_dir():
                continue
            for kind in role.iterdir():
                if kind.is_dir() and kind.joinpath(MANIFEST_NAME).is_file():
                    keys.append(template_key(protocol.name, role.name, kind.name))
    return sorted(keys)


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------

def _candidate_roots(templates_root: Path | None) -> list[Path]:
    roots = []
    if templates_root is not None:
        roots.append(Path(templates_root))
    env_root = env_template_root()
    if env_root is not None:
        roots.append(env_root)
    roots.append(Path.cwd() / "templates")
    roots.append(PROJECT_TEMPLATE_DIR)
    return roots


def discover(
    protocol: str,
    role: str,
    kind: str,
    custom_dir: Path | str | None = None,
    templates_root: Path | None = None,
) -> tuple[TemplateSource, Path]:
    """Decide which template set to use.

    Resolution order, first match wins:
      1. custom_dir, unconditionally (no existence check here)
      2. embedded bundle "{protocol}/{role}/{kind}"
      3. {root}/{protocol}/{role}/{kind} under the known templates roots
    """
    if custom_dir is not None:
        custom = Path(custom_dir)
        logger.debug("Using custom template directory: %s", custom)
        return Filesystem(custom), custom

    key = template_key(str(protocol), str(role), str(kind))
    logger.debug("Checking for embedded template: %s", key)
    if has_embedded(key):
        logger.info("Using embedded template: %s", key)
        return Embedded(key), Path(key)

    logger.debug("Embedded template %s not found, falling back to filesystem", key)
    for root in _candidate_roots(templates_root):
        path = root.joinpath(*key.split("/"))
        if path.is_dir():
            logger.info("Using filesystem template: %s", path)
            return Filesystem(path), path

    raise TemplateNotFoundError(f"No template set found for {key}")


# ---------------------------------------------------------------------------
# Manifest
# ---------------------------------------------------------------------------

@dataclass
class FileEntry:
    source: str
    destination: str
    per_operation: bool = False
    description: str = ""
    role: str | None = None


@dataclass
class Manifest:
    name: str
    files: list[FileEntry]
    description: str = ""
    version: str = ""
    protocol: str | None = None
    role: str | None = None
    language: str | None = None
    variables: dict[str, Any] = field(default_factory=dict)
    required_directories: list[str] = field(default_factory=list)
    pre_generate: list[str] = field(default_factory=list)
    post_generate: list[str] = field(default_factory=list)


def _commands(value: Any, where: str) -> list[str]:
    """Hooks may be a single command string or a list of them."""
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return list(value)
    raise InvalidManifestError(f"{where}: expected string or list of strings")


def _check_relative(path: str, where: str) -> None:
    pure = PurePosixPath(path)
    if pure.is_absolute() or ".." in pure.parts:
        raise InvalidManifestError(f"{where}: {path!r} must be a relative path inside the output")


def _parse_entry(raw: Any, index: int) -> FileEntry:
    where = f"files[{index}]"
    if not isinstance(raw, dict):
        raise InvalidManifestError(f"{where}: expected a mapping")
    source = raw.get("source")
    destination = raw.get("destination")
    if not isinstance(source, str) or not source:
        raise InvalidManifestError(f"{where}: missing 'source'")
    if not isinstance(destination, str) or not destination:
        raise InvalidManifestError(f"{where}: missing 'destination'")
    _check_relative(destination, where)

    per_operation = raw.get("per_operation", False)
    if not isinstance(per_operation, bool):
        raise InvalidManifestError(f"{where}: 'per_operation' must be a boolean")
    for_each = raw.get("for_each")
    if for_each is not None:
        if for_each not in _PER_OPERATION_FOR_EACH:
            raise InvalidManifestError(f"{where}: unknown for_each directive {for_each!r}")
        per_operation = True

    return FileEntry(
        source=source,
        destination=destination,
        per_operation=per_operation,
        description=raw.get("description", "") or "",
        role=raw.get("role"),
    )


def parse_manifest(data: Any) -> Manifest:
    """Validate a decoded manifest document."""
    if not isinstance(data, dict):
        raise InvalidManifestError("Manifest must be a mapping")
    raw_files = data.get("files")
    if not isinstance(raw_files, list):
        raise InvalidManifestError("Manifest must contain a 'files' list")

    variables = data.get("variables") or {}
    if not isinstance(variables, dict):
        raise InvalidManifestError("'variables' must be a mapping")
    directories = data.get("required_directories") or []
    if not isinstance(directories, list):
        raise InvalidManifestError("'required_directories' must be a list")
    for directory in directories:
        _check_relative(str(directory), "required_directories")
    hooks = data.get("hooks") or {}
    if not isinstance(hooks, dict):
        raise InvalidManifestError("'hooks' must be a mapping")

    return Manifest(
        name=str(data.get("name", "")),
        files=[_parse_entry(raw, i) for i, raw in enumerate(raw_files)],
        description=str(data.get("description", "") or ""),
        version=str(data.get("version", "") or ""),
        protocol=data.get("protocol"),
        role=data.get("role"),
        language=data.get("language"),
        variables=dict(variables),
        required_directories=[str(d) for d in directories],
        pre_generate=_commands(hooks.get("pre_generate"), "hooks.pre_generate"),
        post_generate=_commands(hooks.get("post_generate"), "hooks.post_generate"),
    )


def load_manifest(source: TemplateSource) -> Manifest:
    """Read and validate manifest.yml from the template set."""
    try:
        if isinstance(source, Embedded):
            where = f"embedded:{source.key}/{MANIFEST_NAME}"
            text = _embedded_dir(source.key).joinpath(MANIFEST_NAME).read_text(encoding="utf-8")
        else:
            where = str(source.root / MANIFEST_NAME)
            text = (source.root / MANIFEST_NAME).read_text(encoding="utf-8")
    except OSError as exc:
        raise InvalidManifestError(f"Could not read template manifest {where}: {exc}") from exc

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise InvalidManifestError(f"Invalid YAML in template manifest {where}: {exc}") from exc

    manifest = parse_manifest(data)
    logger.debug("Loaded manifest %r with %d file entries", manifest.name, len(manifest.files))
    return manifest


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

class TemplateRenderer:
    """Jinja2 environment bound to one template set."""

    def __init__(self, source: TemplateSource) -> None:
        self.source = source
        if isinstance(source, Embedded):
            loader: jinja2.BaseLoader = jinja2.PackageLoader(
                EMBEDDED_PACKAGE, f"{EMBEDDED_DIR}/{source.key}"
            )
        else:
            loader = jinja2.FileSystemLoader(str(source.root))

        self.env = jinja2.Environment(
            loader=loader,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
            undefined=jinja2.StrictUndefined,
        )
        self.env.filters["snake_case"] = to_snake_case
        self.env.filters["proper_case"] = to_proper_case
        self.env.filters["camel_case"] = to_camel_case

    def render(self, template_name: str, context: dict[str, Any]) -> str:
        try:
            template = self.env.get_template(template_name)
            return template.render(**context)
        except Exception as exc:
            raise RenderError(template_name, str(exc)) from exc
