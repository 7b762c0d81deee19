"""Shared fixtures: a small petstore spec and a throwaway template set.

The petstore has exactly two operations (createPet, getPet) and a
self-referential Pet schema (Pet.parent -> Pet).
"""

from __future__ import annotations

import copy
import json
from pathlib import Path
from typing import Any

import pytest

from mcpforge.schema_parser import SchemaModel, parse


# ---------------------------------------------------------------------------
# Spec documents
# ---------------------------------------------------------------------------

PETSTORE: dict[str, Any] = {
    "openapi": "3.0.3",
    "info": {
        "title": "Petstore",
        "version": "1.0.0",
        "description": "A <b>sample</b> pet store",
    },
    "servers": [{"url": "https://petstore.example.com/v1"}],
    "paths": {
        "/pets/{petId}": {
            "get": {
                "operationId": "getPet",
                "summary": "Info for a specific pet",
                "tags": ["pets"],
                "parameters": [
                    {
                        "name": "petId",
                        "in": "path",
                        "required": True,
                        "description": "The id of the pet to retrieve",
                        "schema": {"type": "integer", "format": "int64"},
                    }
                ],
                "responses": {
                    "200": {
                        "description": "Expected response",
                        "content": {
                            "application/json": {"schema": {"$ref": "#/components/schemas/Pet"}}
                        },
                    },
                    "404": {
                        "description": "Not found",
                        "content": {
                            "application/json": {"schema": {"$ref": "#/components/schemas/Error"}}
                        },
                    },
                },
            }
        },
        "/pets": {
            "post": {
                "operationId": "createPet",
                "summary": "Create a pet",
                "tags": ["pets"],
                "requestBody": {
                    "required": True,
                    "content": {
                        "application/json": {"schema": {"$ref": "#/components/schemas/Pet"}}
                    },
                },
                "responses": {
                    "201": {
                        "description": "Created",
                        "content": {
                            "application/json": {"schema": {"$ref": "#/components/schemas/Pet"}}
                        },
                    }
                },
            }
        },
    },
    "components": {
        "schemas": {
            "Pet": {
                "type": "object",
                "required": ["id", "name"],
                "properties": {
                    "id": {"type": "integer", "format": "int64", "readOnly": True},
                    "name": {"type": "string", "description": "Pet name"},
                    "tag": {"type": "string"},
                    "status": {"$ref": "#/components/schemas/PetStatus"},
                    "parent": {"$ref": "#/components/schemas/Pet"},
                },
            },
            "PetStatus": {
                "type": "string",
                "enum": ["available", "pending", "sold"],
            },
            "Error": {
                "type": "object",
                "required": ["code", "message"],
                "properties": {
                    "code": {"type": "integer", "format": "int32"},
                    "message": {"type": "string"},
                },
            },
        }
    },
}


@pytest.fixture
def petstore_spec() -> dict[str, Any]:
    return copy.deepcopy(PETSTORE)


@pytest.fixture
def petstore_model(petstore_spec) -> SchemaModel:
    return parse(petstore_spec)


@pytest.fixture
def petstore_file(tmp_path, petstore_spec) -> Path:
    path = tmp_path / "petstore.json"
    path.write_text(json.dumps(petstore_spec), encoding="utf-8")
    return path


# ---------------------------------------------------------------------------
# Template set on disk
# ---------------------------------------------------------------------------

MANIFEST_YAML = """\
name: test-templates
description: Templates used by the test suite
version: "1.0"
language: python
files:
  - source: index.txt.j2
    destination: index.txt
  - source: op.txt.j2
    for_each: endpoint
    destination: ops/{endpoint}.txt
required_directories:
  - extra/empty
"""

INDEX_TEMPLATE = """\
{{ project_name }} ({{ endpoint_count }})
{% for e in endpoints %}
{{ e.endpoint }} {{ e.http_method }} {{ e.path }}
{% endfor %}
"""

OP_TEMPLATE = """\
{{ operation_id }} {{ http_method }} {{ path }}
{{ fn_name }}
"""


def write_template_set(root: Path, manifest: str = MANIFEST_YAML, **templates: str) -> Path:
    """Write a manifest plus templates; keyword names map to file names."""
    root.mkdir(parents=True, exist_ok=True)
    (root / "manifest.yml").write_text(manifest, encoding="utf-8")
    files = {"index.txt.j2": INDEX_TEMPLATE, "op.txt.j2": OP_TEMPLATE}
    files.update({name.replace("__", "."): body for name, body in templates.items()})
    for name, body in files.items():
        (root / name).write_text(body, encoding="utf-8")
    return root


@pytest.fixture
def make_template_set():
    return write_template_set


@pytest.fixture
def template_set(tmp_path) -> Path:
    return write_template_set(tmp_path / "templates")
