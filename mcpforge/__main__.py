"""Entry point: python -m mcpforge / mcpforge

    mcpforge generate SPEC -o OUT [options]
    mcpforge templates
"""

from __future__ import annotations

from pathlib import Path

import click

from . import __version__
from .codegen import generate_project
from .config import (
    DEFAULT_OUTPUT_DIR,
    DEFAULT_PROJECT_NAME,
    DEFAULT_PROJECT_VERSION,
    GenerationConfig,
    Protocol,
    Role,
    TemplateKind,
)
from .errors import GenerationError
from .logging_config import setup_logging
from .templates import list_embedded


def _parse_vars(values: tuple[str, ...]) -> dict[str, str]:
    """Turn repeated --var KEY=VALUE options into a dict."""
    result: dict[str, str] = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise click.BadParameter(f"expected KEY=VALUE, got {item!r}", param_hint="--var")
        result[key.strip()] = value
    return result


@click.group()
@click.version_option(__version__, prog_name="mcpforge")
def main():
    """mcpforge: generate MCP servers from OpenAPI specs."""
    pass


@main.command()
@click.argument("spec")
@click.option("-o", "--output", default=DEFAULT_OUTPUT_DIR, show_default=True, type=click.Path(path_type=Path), help="Output directory.")
@click.option("--project-name", default=DEFAULT_PROJECT_NAME, show_default=True, help="Name of the generated project.")
@click.option("--project-version", default=DEFAULT_PROJECT_VERSION, show_default=True, help="Version of the generated project.")
@click.option("--kind", default=TemplateKind.PYTHON.value, show_default=True, type=click.Choice([k.value for k in TemplateKind]), help="Template kind.")
@click.option("--role", default=Role.SERVER.value, show_default=True, type=click.Choice([r.value for r in Role]), help="Generated component role.")
@click.option("--protocol", default=Protocol.MCP.value, show_default=True, type=click.Choice([p.value for p in Protocol]), help="Protocol.")
@click.option("--template-dir", default=None, type=click.Path(path_type=Path), help="Custom template directory (overrides bundled templates).")
@click.option("--include", "include", multiple=True, help="Only generate this operation (id or snake_case name). Repeatable.")
@click.option("--exclude", "exclude", multiple=True, help="Skip this operation (id or snake_case name). Repeatable.")
@click.option("--overwrite/--no-overwrite", default=False, help="Replace files that already exist.")
@click.option("--base-url", default=None, help="Base URL for the API (joined with relative server URLs).")
@click.option("--var", "variables", multiple=True, metavar="KEY=VALUE", help="Extra template variable. Repeatable.")
@click.option("--workers", default=1, show_default=True, type=click.IntRange(min=1), help="Parallel render workers.")
@click.option("--run-hooks", is_flag=True, default=False, help="Run the manifest's pre/post generate hooks.")
@click.option("-v", "--verbose", is_flag=True, default=False, help="Debug logging.")
def generate(
    spec: str,
    output: Path,
    project_name: str,
    project_version: str,
    kind: str,
    role: str,
    protocol: str,
    template_dir: Path | None,
    include: tuple[str, ...],
    exclude: tuple[str, ...],
    overwrite: bool,
    base_url: str | None,
    variables: tuple[str, ...],
    workers: int,
    run_hooks: bool,
    verbose: bool,
):
    """Generate a project from SPEC (a file path or http(s) URL)."""
    setup_logging(verbose)
    extra_context = _parse_vars(variables)

    try:
        config = GenerationConfig(
            project_name=project_name,
            output_dir=output,
            template_kind=kind,
            protocol=protocol,
            role=role,
            template_dir=template_dir,
            include_operations=list(include),
            exclude_operations=list(exclude),
            overwrite=overwrite,
            extra_context=extra_context,
            base_url=base_url,
            project_version=project_version,
            max_workers=workers,
            run_hooks=run_hooks,
        )
        result = generate_project(spec, config)
    except GenerationError as exc:
        raise click.ClickException(str(exc)) from exc

    for path in result.written:
        click.echo(f"  Created {path}")
    for path in result.skipped:
        click.echo(f"  Kept {path} (exists)")
    click.echo(f"Generated {len(result.written)} files in {result.output_dir}")


@main.command()
def templates():
    """List the bundled template sets."""
    keys = list_embedded()
    if not keys:
        click.echo("No bundled templates found.")
        return
    for key in keys:
        click.echo(key)


if __name__ == "__main__":
    main()
