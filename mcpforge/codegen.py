"""Render templates and write generated output.

Takes a SchemaModel, a template set and its manifest, and produces the
output tree. Manifest entries are rendered once (global context) or once
per surviving operation (per-operation context).

The output directory is additive: it is never cleared, and existing files
are only replaced when the config asks for it.
"""

from __future__ import annotations

import subprocess
import threading
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .config import GenerationConfig
from .context_builder import ContextBuilder, endpoint_names, get_builder, language_for
from .errors import HookError, InvalidOperationFilterError, OutputError
from .loader import load_model
from .logging_config import get_logger
from .schema_parser import Operation, SchemaModel
from .templates import Manifest, TemplateRenderer, TemplateSource, discover, load_manifest

logger = get_logger(__name__)

# Placeholders accepted in per-operation destination templates
_NAME_PLACEHOLDERS = ("{{endpoint}}", "{endpoint}", "{{operation_id}}", "{operation_id}")
_IDENT_PLACEHOLDERS = ("{{endpoint_ident}}", "{endpoint_ident}")


@dataclass
class RenderJob:
    source: str
    destination: Path
    context: dict[str, Any]


@dataclass
class GeneratedFileSet:
    output_dir: Path
    written: list[Path] = field(default_factory=list)
    skipped: list[Path] = field(default_factory=list)

    @property
    def files(self) -> list[Path]:
        return sorted(self.written + self.skipped)


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------

def effective_operations(
    operations: list[Operation],
    include: list[str],
    exclude: list[str],
    names: dict[str, str] | None = None,
) -> list[Operation]:
    """Apply include/exclude filters; exclusion always wins.

    Filters match an operation id or its normalized endpoint name.
    """
    names = names or endpoint_names(operations)
    known = {op.id for op in operations} | set(names.values())
    unknown = [f for f in [*include, *exclude] if f not in known]
    if unknown:
        raise InvalidOperationFilterError(
            f"Operation filter names unknown operations: {', '.join(sorted(set(unknown)))}"
        )

    include_set, exclude_set = set(include), set(exclude)

    def _matches(op: Operation, filters: set[str]) -> bool:
        return op.id in filters or names[op.id] in filters

    return [
        op for op in operations
        if (not include_set or _matches(op, include_set)) and not _matches(op, exclude_set)
    ]


def destination_for(template: str, name: str, ident: str | None = None) -> str:
    """Substitute the endpoint name into a per-operation destination.

    ``{endpoint_ident}`` takes the identifier-safe form of the name.
    """
    for placeholder in _IDENT_PLACEHOLDERS:
        template = template.replace(placeholder, ident or name)
    for placeholder in _NAME_PLACEHOLDERS:
        template = template.replace(placeholder, name)
    return template


def plan(
    model: SchemaModel,
    manifest: Manifest,
    config: GenerationConfig,
    builder: ContextBuilder,
) -> list[RenderJob]:
    """Expand the manifest into concrete render jobs, in manifest order."""
    names = endpoint_names(model.operations)
    operations = effective_operations(
        model.operations, config.include_operations, config.exclude_operations, names
    )
    logger.info("Generating for %d of %d operations", len(operations), len(model.operations))

    global_context = builder.build_global(model, config, manifest, operations, names)
    output_dir = config.output_dir
    jobs: list[RenderJob] = []

    for entry in manifest.files:
        if not entry.per_operation:
            jobs.append(RenderJob(entry.source, output_dir / entry.destination, global_context))
            continue

        for op in operations:
            name = names[op.id]
            endpoint = builder.transform(op, model, config.extra_context, name=name)
            context = {**global_context, **endpoint, "operation": endpoint}
            ident = endpoint["endpoint_ident"]
            destination = output_dir / destination_for(entry.destination, name, ident)
            jobs.append(RenderJob(entry.source, destination, context))

    return jobs


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------

def _ensure_dir(path: Path) -> None:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise OutputError(path, str(exc)) from exc


class _FileWriter:
    """Renders jobs and writes them; one lock per destination path."""

    def __init__(self, renderer: TemplateRenderer, overwrite: bool) -> None:
        self.renderer = renderer
        self.overwrite = overwrite
        self._locks: dict[Path, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, path: Path) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(path, threading.Lock())

    def __call__(self, job: RenderJob) -> bool:
        """Return True if the file was written, False if left untouched."""
        text = self.renderer.render(job.source, job.context)
        with self._lock_for(job.destination):
            if job.destination.exists() and not self.overwrite:
                logger.debug("Keeping existing %s", job.destination)
                return False
            _ensure_dir(job.destination.parent)
            try:
                job.destination.write_text(text, encoding="utf-8")
            except OSError as exc:
                raise OutputError(job.destination, str(exc)) from exc
        logger.debug("Wrote %s", job.destination)
        return True


def _execute(jobs: list[RenderJob], writer: _FileWriter, max_workers: int) -> list[bool]:
    if max_workers <= 1 or len(jobs) <= 1:
        return [writer(job) for job in jobs]

    executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="mcpforge-render")
    try:
        futures: list[Future[bool]] = [executor.submit(writer, job) for job in jobs]
        done, _ = wait(futures, return_when=FIRST_EXCEPTION)
        failed = [f for f in futures if f in done and f.exception() is not None]
        if failed:
            executor.shutdown(wait=True, cancel_futures=True)
            raise failed[0].exception()  # type: ignore[misc]
        return [f.result() for f in futures]
    finally:
        executor.shutdown(wait=True)


def run_hooks(commands: list[str], cwd: Path, stage: str) -> None:
    for command in commands:
        logger.info("Running %s hook: %s", stage, command)
        result = subprocess.run(command, shell=True, cwd=cwd)
        if result.returncode != 0:
            raise HookError(command, result.returncode)


def generate(
    model: SchemaModel,
    source: TemplateSource,
    manifest: Manifest,
    config: GenerationConfig,
    builder: ContextBuilder | None = None,
    renderer: TemplateRenderer | None = None,
) -> GeneratedFileSet:
    """Render every manifest entry into config.output_dir."""
    if builder is None:
        builder = get_builder(language_for(config.template_kind, manifest))
    if renderer is None:
        renderer = TemplateRenderer(source)

    jobs = plan(model, manifest, config, builder)

    output_dir = config.output_dir
    _ensure_dir(output_dir)
    for directory in manifest.required_directories:
        _ensure_dir(output_dir / directory)

    if config.run_hooks:
        run_hooks(manifest.pre_generate, output_dir, "pre_generate")

    writer = _FileWriter(renderer, config.overwrite)
    outcomes = _execute(jobs, writer, config.max_workers)

    result = GeneratedFileSet(output_dir=output_dir)
    for job, written in zip(jobs, outcomes):
        target = result.written if written else result.skipped
        if job.destination not in target:
            target.append(job.destination)

    if config.run_hooks:
        run_hooks(manifest.post_generate, output_dir, "post_generate")

    logger.info(
        "Generated %d files in %s (%d left untouched)",
        len(result.written), output_dir, len(result.skipped),
    )
    return result


def generate_project(
    spec_source: str | Path,
    config: GenerationConfig,
    templates_root: Path | None = None,
) -> GeneratedFileSet:
    """Full pipeline: load spec, discover templates, generate."""
    model = load_model(spec_source)
    source, root = discover(
        config.protocol,
        config.role,
        config.template_kind,
        custom_dir=config.template_dir,
        templates_root=templates_root,
    )
    logger.debug("Template root: %s", root)
    manifest = load_manifest(source)
    return generate(model, source, manifest, config)
