"""Load an API spec from disk or over HTTP(S).

Remote specs are downloaded once, staged to a temporary file for the
duration of the load, and parsed exactly like a local file.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

import httpx
import yaml

from .errors import FetchError, MalformedSpecError
from .logging_config import get_logger
from .schema_parser import SchemaModel, parse

logger = get_logger(__name__)

FETCH_TIMEOUT = 30.0
USER_AGENT = "mcpforge"

_JSON_SUFFIXES = {".json"}
_YAML_SUFFIXES = {".yaml", ".yml"}


def is_url(source: str | Path) -> bool:
    return isinstance(source, str) and source.startswith(("http://", "https://"))


def fetch_spec(url: str, client: httpx.Client | None = None) -> bytes:
    """Download a spec and return the raw body."""
    owns_client = client is None
    if client is None:
        client = httpx.Client(
            timeout=FETCH_TIMEOUT,
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
        )
    try:
        logger.info("Fetching spec from %s", url)
        resp = client.get(url)
    except httpx.HTTPError as exc:
        raise FetchError(url, str(exc)) from exc
    finally:
        if owns_client:
            client.close()

    if resp.status_code < 200 or resp.status_code >= 300:
        raise FetchError(url, f"HTTP {resp.status_code}")
    return resp.content


def parse_spec_text(text: str, suffix: str = "") -> dict[str, Any]:
    """Decode JSON or YAML spec text into a dict."""
    suffix = suffix.lower()
    try:
        if suffix in _JSON_SUFFIXES:
            document = json.loads(text)
        elif suffix in _YAML_SUFFIXES:
            document = yaml.safe_load(text)
        else:
            try:
                document = json.loads(text)
            except json.JSONDecodeError:
                document = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise MalformedSpecError(f"Could not decode spec: {exc}") from exc

    if not isinstance(document, dict):
        raise MalformedSpecError("Spec document must be a mapping at the top level")
    return document


def _url_suffix(url: str) -> str:
    return Path(httpx.URL(url).path).suffix


def load_spec(source: str | Path, client: httpx.Client | None = None) -> dict[str, Any]:
    """Load the API document from a local path or an http(s) URL."""
    if is_url(source):
        body = fetch_spec(str(source), client=client)
        suffix = _url_suffix(str(source))
        # Staged copy lives only as long as this block
        staged = tempfile.NamedTemporaryFile(suffix=suffix or ".spec", delete=False)
        staged_path = Path(staged.name)
        try:
            try:
                with staged:
                    staged.write(body)
            except OSError as exc:
                raise FetchError(str(source), f"could not stage download: {exc}") from exc
            logger.debug("Staged %d bytes to %s", len(body), staged_path)
            return _load_file(staged_path)
        finally:
            os.unlink(staged_path)

    return _load_file(Path(source))


def _load_file(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise FetchError(str(path), str(exc)) from exc
    except UnicodeDecodeError as exc:
        raise MalformedSpecError(f"{path.name} is not valid UTF-8: {exc}") from exc
    return parse_spec_text(text, path.suffix)


def load_model(source: str | Path, client: httpx.Client | None = None) -> SchemaModel:
    """Load and parse a spec into a SchemaModel in one step."""
    return parse(load_spec(source, client=client))
