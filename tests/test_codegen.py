"""Tests for the generation orchestrator."""

import copy
import tomllib

import pytest

from mcpforge.codegen import (
    destination_for,
    effective_operations,
    generate,
    generate_project,
    plan,
)
from mcpforge.config import GenerationConfig
from mcpforge.context_builder import PythonContextBuilder
from mcpforge.errors import HookError, InvalidOperationFilterError, RenderError
from mcpforge.schema_parser import parse
from mcpforge.templates import Embedded, Filesystem, load_manifest


def _run(model, template_root, out, **kwargs):
    source = Filesystem(template_root)
    config = GenerationConfig(
        project_name="petstore",
        output_dir=out,
        template_kind="custom",
        template_dir=template_root,
        **kwargs,
    )
    return generate(model, source, load_manifest(source), config)


def _tree(root):
    return {
        str(p.relative_to(root)): p.read_bytes()
        for p in sorted(root.rglob("*"))
        if p.is_file()
    }


class TestEndToEnd:
    def test_one_global_plus_per_operation(self, petstore_model, template_set, tmp_path):
        """Two operations + one global + one per-op entry -> three files."""
        out = tmp_path / "out"
        result = _run(petstore_model, template_set, out)

        assert sorted(_tree(out)) == ["index.txt", "ops/create_pet.txt", "ops/get_pet.txt"]
        assert result.written == [out / "index.txt", out / "ops/create_pet.txt", out / "ops/get_pet.txt"]
        assert result.skipped == []
        assert (out / "ops/get_pet.txt").read_text() == "getPet GET /pets/{petId}\nget_pet\n"
        assert (out / "index.txt").read_text() == (
            "petstore (2)\ncreate_pet POST /pets\nget_pet GET /pets/{petId}\n"
        )

    def test_required_directories_created(self, petstore_model, template_set, tmp_path):
        out = tmp_path / "out"
        _run(petstore_model, template_set, out)
        assert (out / "extra" / "empty").is_dir()

    def test_idempotent(self, petstore_model, template_set, tmp_path):
        _run(petstore_model, template_set, tmp_path / "a")
        _run(petstore_model, template_set, tmp_path / "b")
        assert _tree(tmp_path / "a") == _tree(tmp_path / "b")

    def test_document_order_does_not_matter(self, petstore_spec, template_set, tmp_path):
        reordered = copy.deepcopy(petstore_spec)
        reordered["paths"] = dict(reversed(list(reordered["paths"].items())))
        _run(parse(petstore_spec), template_set, tmp_path / "a")
        _run(parse(reordered), template_set, tmp_path / "b")
        assert _tree(tmp_path / "a") == _tree(tmp_path / "b")

    def test_parallel_matches_sequential(self, petstore_model, template_set, tmp_path):
        _run(petstore_model, template_set, tmp_path / "seq")
        result = _run(petstore_model, template_set, tmp_path / "par", max_workers=4)
        assert _tree(tmp_path / "seq") == _tree(tmp_path / "par")
        assert len(result.written) == 3

    def test_extra_context_reaches_templates(self, petstore_model, make_template_set, tmp_path):
        root = make_template_set(tmp_path / "t", index__txt__j2="{{ greeting }}\n")
        out = tmp_path / "out"
        _run(petstore_model, root, out, extra_context={"greeting": "hello"})
        assert (out / "index.txt").read_text() == "hello\n"


class TestFiltering:
    def test_include_then_exclude(self, petstore_model, template_set, tmp_path):
        out = tmp_path / "out"
        _run(
            petstore_model, template_set, out,
            include_operations=["createPet", "getPet"],
            exclude_operations=["getPet"],
        )
        assert sorted(_tree(out)) == ["index.txt", "ops/create_pet.txt"]
        assert (out / "index.txt").read_text() == "petstore (1)\ncreate_pet POST /pets\n"

    def test_filter_by_normalized_name(self, petstore_model, template_set, tmp_path):
        out = tmp_path / "out"
        _run(petstore_model, template_set, out, include_operations=["get_pet"])
        assert sorted(_tree(out)) == ["index.txt", "ops/get_pet.txt"]

    def test_unknown_filter(self, petstore_model, template_set, tmp_path):
        with pytest.raises(InvalidOperationFilterError):
            _run(petstore_model, template_set, tmp_path / "out", exclude_operations=["deletePet"])
        assert not (tmp_path / "out").exists()

    def test_effective_operations(self, petstore_model):
        ops = petstore_model.operations
        assert [op.id for op in effective_operations(ops, [], [])] == ["createPet", "getPet"]
        assert [op.id for op in effective_operations(ops, ["createPet", "getPet"], ["getPet"])] == ["createPet"]
        assert effective_operations(ops, [], ["create_pet", "getPet"]) == []


class TestOverwritePolicy:
    def test_existing_file_kept(self, petstore_model, template_set, tmp_path):
        out = tmp_path / "out"
        (out / "ops").mkdir(parents=True)
        (out / "ops" / "get_pet.txt").write_text("hand edited\n")

        result = _run(petstore_model, template_set, out)

        assert (out / "ops" / "get_pet.txt").read_text() == "hand edited\n"
        assert result.skipped == [out / "ops" / "get_pet.txt"]
        assert out / "ops" / "create_pet.txt" in result.written

    def test_overwrite_replaces(self, petstore_model, template_set, tmp_path):
        out = tmp_path / "out"
        (out / "ops").mkdir(parents=True)
        (out / "ops" / "get_pet.txt").write_text("hand edited\n")

        result = _run(petstore_model, template_set, out, overwrite=True)

        assert (out / "ops" / "get_pet.txt").read_text().startswith("getPet GET")
        assert result.skipped == []

    def test_unrelated_files_untouched(self, petstore_model, template_set, tmp_path):
        out = tmp_path / "out"
        out.mkdir()
        (out / "notes.md").write_text("keep me")
        _run(petstore_model, template_set, out, overwrite=True)
        assert (out / "notes.md").read_text() == "keep me"


class TestFailures:
    def test_render_error_aborts(self, petstore_model, make_template_set, tmp_path):
        root = make_template_set(tmp_path / "t", op__txt__j2="{{ no_such_variable }}\n")
        with pytest.raises(RenderError) as exc_info:
            _run(petstore_model, root, tmp_path / "out")
        assert exc_info.value.file_id == "op.txt.j2"
        assert not (tmp_path / "out" / "ops").exists()

    def test_render_error_aborts_in_parallel(self, petstore_model, make_template_set, tmp_path):
        root = make_template_set(tmp_path / "t", op__txt__j2="{{ no_such_variable }}\n")
        with pytest.raises(RenderError):
            _run(petstore_model, root, tmp_path / "out", max_workers=4)
        assert not (tmp_path / "out" / "ops").exists()


class TestHooks:
    HOOK_MANIFEST = """\
name: hooks
language: python
files:
  - source: index.txt.j2
    destination: index.txt
hooks:
  post_generate:
    - "{command}"
"""

    def _root(self, make_template_set, tmp_path, command):
        return make_template_set(tmp_path / "t", manifest=self.HOOK_MANIFEST.format(command=command))

    def test_hooks_skipped_by_default(self, petstore_model, make_template_set, tmp_path):
        root = self._root(make_template_set, tmp_path, "touch hook_ran")
        out = tmp_path / "out"
        _run(petstore_model, root, out)
        assert not (out / "hook_ran").exists()

    def test_post_generate_runs_in_output_dir(self, petstore_model, make_template_set, tmp_path):
        root = self._root(make_template_set, tmp_path, "touch hook_ran")
        out = tmp_path / "out"
        _run(petstore_model, root, out, run_hooks=True)
        assert (out / "hook_ran").exists()

    def test_failing_hook(self, petstore_model, make_template_set, tmp_path):
        root = self._root(make_template_set, tmp_path, "exit 3")
        with pytest.raises(HookError) as exc_info:
            _run(petstore_model, root, tmp_path / "out", run_hooks=True)
        assert exc_info.value.returncode == 3


class TestPlanning:
    def test_destination_placeholders(self):
        assert destination_for("h/{endpoint}.py", "get_pet") == "h/get_pet.py"
        assert destination_for("h/{{endpoint}}.rs", "get_pet") == "h/get_pet.rs"
        assert destination_for("{operation_id}.txt", "get_pet") == "get_pet.txt"

    def test_per_operation_context(self, petstore_model, template_set, tmp_path):
        source = Filesystem(template_set)
        config = GenerationConfig(output_dir=tmp_path, template_kind="custom", template_dir=template_set)
        jobs = plan(petstore_model, load_manifest(source), config, PythonContextBuilder())
        assert [j.destination.relative_to(tmp_path).as_posix() for j in jobs] == [
            "index.txt", "ops/create_pet.txt", "ops/get_pet.txt",
        ]
        op_context = jobs[2].context
        assert op_context["operation_id"] == "getPet"
        assert op_context["operation"]["endpoint"] == "get_pet"
        # global keys still available per operation
        assert op_context["endpoint_count"] == 2


class TestBundledTemplates:
    def _config(self, out, kind):
        return GenerationConfig(project_name="petstore", output_dir=out, template_kind=kind)

    def test_python_server(self, petstore_model, tmp_path):
        out = tmp_path / "py"
        source = Embedded("mcp/server/python")
        generate(petstore_model, source, load_manifest(source), self._config(out, "python"))

        assert sorted(_tree(out)) == [
            "README.md",
            "api.py",
            "handlers/__init__.py",
            "handlers/create_pet.py",
            "handlers/get_pet.py",
            "models.py",
            "pyproject.toml",
            "server.py",
        ]
        for name in ["api.py", "models.py", "server.py", "handlers/__init__.py", "handlers/get_pet.py", "handlers/create_pet.py"]:
            compile((out / name).read_text(), name, "exec")

        handler = (out / "handlers" / "get_pet.py").read_text()
        assert "async def get_pet(" in handler
        assert '"petId": pet_id' in handler
        assert "NotRequired['Pet | None']" in (out / "models.py").read_text()
        assert "https://petstore.example.com/v1" in (out / "api.py").read_text()
        pyproject = tomllib.loads((out / "pyproject.toml").read_text())
        assert pyproject["project"]["name"] == "petstore"

    def test_rust_server(self, petstore_model, tmp_path):
        out = tmp_path / "rs"
        source = Embedded("mcp/server/rust")
        generate(petstore_model, source, load_manifest(source), self._config(out, "rust"))

        assert sorted(_tree(out)) == [
            "Cargo.toml",
            "README.md",
            "src/client.rs",
            "src/handlers/create_pet.rs",
            "src/handlers/get_pet.rs",
            "src/handlers/mod.rs",
            "src/main.rs",
        ]
        assert "pub mod get_pet;" in (out / "src/handlers/mod.rs").read_text()
        handler = (out / "src/handlers/get_pet.rs").read_text()
        assert 'path.replace("{petId}"' in handler
        assert '"type": "integer"' in handler
        cargo = tomllib.loads((out / "Cargo.toml").read_text())
        assert cargo["package"]["name"] == "petstore"

    def test_generate_project_pipeline(self, petstore_file, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        out = tmp_path / "generated"
        result = generate_project(petstore_file, self._config(out, "python"))
        assert out / "server.py" in result.written


def _edge_spec(op_id, *, path="/thing", method="post", parameters=(), body=False, schemas=None):
    operation = {
        "operationId": op_id,
        "parameters": list(parameters),
        "responses": {"200": {"description": "ok", "content": {"application/json": {"schema": {"type": "object"}}}}},
    }
    if body:
        operation["requestBody"] = {
            "required": True,
            "content": {"application/json": {"schema": {"type": "object", "properties": {"name": {"type": "string"}}}}},
        }
    doc = {
        "openapi": "3.0.3",
        "info": {"title": "Edge", "version": "1"},
        "servers": [{"url": "https://edge.example.com"}],
        "paths": {path: {method: operation}},
    }
    if schemas is not None:
        doc["components"] = {"schemas": schemas}
    return doc


_EDGE_CASES = {
    "keyword_operation": _edge_spec("import"),
    "digit_operation": _edge_spec("2fa"),
    "helper_name_operation": _edge_spec("request"),
    "param_named_body": _edge_spec(
        "search", parameters=[{"name": "body", "in": "query", "schema": {"type": "string"}}], body=True,
    ),
    "same_name_two_locations": _edge_spec(
        "lookup",
        parameters=[
            {"name": "id", "in": "query", "schema": {"type": "string"}},
            {"name": "id", "in": "header", "schema": {"type": "string"}},
        ],
    ),
    "keyword_parameter": _edge_spec(
        "filter", parameters=[{"name": "class", "in": "query", "required": True, "schema": {"type": "string"}}],
    ),
    "cookie_parameter": _edge_spec(
        "whoami", parameters=[{"name": "session", "in": "cookie", "schema": {"type": "string"}}],
    ),
    "colliding_component_names": _edge_spec(
        "status",
        schemas={
            "PetStatus": {"type": "object", "properties": {"code": {"type": "integer"}}},
            "pet-status": {"type": "string", "enum": ["available", "sold"]},
        },
    ),
}


class TestBundledTemplatesCompile:
    @pytest.mark.parametrize("spec", list(_EDGE_CASES.values()), ids=list(_EDGE_CASES))
    def test_python_bundle_compiles(self, spec, tmp_path):
        out = tmp_path / "py"
        source = Embedded("mcp/server/python")
        config = GenerationConfig(project_name="edge", output_dir=out, template_kind="python")
        generate(parse(spec), source, load_manifest(source), config)

        sources = sorted(out.rglob("*.py"))
        assert len(sources) == 5
        for path in sources:
            assert path.stem.isidentifier()
            compile(path.read_text(), str(path), "exec")

    def test_keyword_and_digit_operations_are_importable(self, tmp_path):
        spec = _edge_spec("import")
        spec["paths"]["/2fa"] = {"post": {"operationId": "2fa", "responses": {"204": {"description": "ok"}}}}
        out = tmp_path / "py"
        source = Embedded("mcp/server/python")
        config = GenerationConfig(project_name="edge", output_dir=out, template_kind="python")
        generate(parse(spec), source, load_manifest(source), config)

        init = (out / "handlers" / "__init__.py").read_text()
        assert "from ._2fa import _2fa" in init
        assert "from .import_ import import_" in init
        assert (out / "handlers" / "import_.py").exists()

    def test_colliding_parameters_renamed(self, tmp_path):
        out = tmp_path / "py"
        source = Embedded("mcp/server/python")
        config = GenerationConfig(project_name="edge", output_dir=out, template_kind="python")
        generate(parse(_EDGE_CASES["same_name_two_locations"]), source, load_manifest(source), config)

        handler = (out / "handlers" / "lookup.py").read_text()
        assert '"id": id,' in handler
        assert '"id": id_header,' in handler

    def test_cookies_forwarded(self, tmp_path):
        out = tmp_path / "py"
        source = Embedded("mcp/server/python")
        config = GenerationConfig(project_name="edge", output_dir=out, template_kind="python")
        generate(parse(_EDGE_CASES["cookie_parameter"]), source, load_manifest(source), config)

        handler = (out / "handlers" / "whoami.py").read_text()
        assert "cookies={" in handler
        assert '"session": session,' in handler

    def test_colliding_component_names_suffixed(self, tmp_path):
        out = tmp_path / "py"
        source = Embedded("mcp/server/python")
        config = GenerationConfig(project_name="edge", output_dir=out, template_kind="python")
        generate(parse(_EDGE_CASES["colliding_component_names"]), source, load_manifest(source), config)

        models = (out / "models.py").read_text()
        assert models.count("PetStatus = TypedDict(") == 1
        assert "PetStatus2: TypeAlias = Literal['available', 'sold']" in models

    def test_rust_module_names(self, tmp_path):
        spec = _edge_spec("type")
        spec["paths"]["/2fa"] = {"post": {"operationId": "2fa", "responses": {"204": {"description": "ok"}}}}
        out = tmp_path / "rs"
        source = Embedded("mcp/server/rust")
        config = GenerationConfig(project_name="edge", output_dir=out, template_kind="rust")
        generate(parse(spec), source, load_manifest(source), config)

        handlers_mod = (out / "src" / "handlers" / "mod.rs").read_text()
        assert '#[path = "2fa.rs"]\npub mod _2fa;' in handlers_mod
        assert '#[path = "type.rs"]\npub mod type_;' in handlers_mod
