"""Build Jinja2 template contexts from a SchemaModel.

One builder per target language. Builders are pure: they read the model
and return plain dicts, so they can be called from any worker thread.

Referenced component schemas are always emitted as named types, never
inlined, which keeps self-referential schemas finite in the context.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import TYPE_CHECKING, Any

from .config import TemplateKind, resolve_base_url
from .errors import InvalidKindError
from .logging_config import get_logger
from .naming import (
    PYTHON_KEYWORDS,
    RUST_KEYWORDS,
    TYPESCRIPT_KEYWORDS,
    escape_keyword,
    to_camel_case,
    to_identifier,
    to_proper_case,
    to_snake_case,
)
from .schema_parser import (
    Array,
    Composed,
    Object,
    Operation,
    Parameter,
    Primitive,
    Reference,
    SchemaModel,
    SchemaNode,
)

if TYPE_CHECKING:
    from .config import GenerationConfig
    from .templates import Manifest

logger = get_logger(__name__)

# HTTP methods considered mutations
_MUTATION_METHODS = {"post", "put", "patch", "delete"}

# Integers >= 2^53 are unsafe for JSON serialization
MAX_SAFE_INT = 2**53

_SMART_PUNCTUATION = {
    "\u2018": "'",
    "\u2019": "'",
    "\u201c": '"',
    "\u201d": '"',
    "\u2013": "-",
    "\u2014": "-",
}


class TargetLanguage(str, Enum):
    RUST = "rust"
    PYTHON = "python"
    TYPESCRIPT = "typescript"


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------

def strip_html(text: str) -> str:
    """Strip HTML tags and collapse whitespace."""
    text = re.sub(r"<[^>]+>", "", text)
    return re.sub(r"\s+", " ", text).strip()


def sanitize_text(text: str | None) -> str:
    """Make spec prose safe for single-line docstrings and comments."""
    if not text:
        return ""
    for src, dst in _SMART_PUNCTUATION.items():
        text = text.replace(src, dst)
    return strip_html(text.replace("\t", " "))


def _sanitize_default(value: Any) -> Any:
    """Sanitize default values: replace unsafe large integers with None."""
    if isinstance(value, int) and not isinstance(value, bool) and abs(value) >= MAX_SAFE_INT:
        return None
    return value


def _make_description(op: Operation, response_kind: str) -> str:
    """Build a one-line tool description."""
    if op.summary:
        doc = sanitize_text(op.summary)
    elif op.description:
        doc = sanitize_text(op.description).split(". ")[0]
    else:
        doc = f"{op.method.upper()} {op.path}"

    doc = doc.rstrip(". ")
    if response_kind == "array":
        doc += ". Returns a list."
    return doc


def endpoint_names(operations: list[Operation]) -> dict[str, str]:
    """Map operation id -> normalized endpoint name, unique across the run.

    Ids that normalize to the same name get a numeric suffix in id order.
    """
    names: dict[str, str] = {}
    taken: dict[str, int] = {}
    for op in sorted(operations, key=lambda o: o.id):
        name = to_snake_case(op.id) or "operation"
        if name in taken:
            taken[name] += 1
            name = f"{name}_{taken[name]}"
        else:
            taken[name] = 1
        names[op.id] = name
    return names


def unique_field_names(params: list[dict[str, Any]], reserved: set[str]) -> None:
    """Rename colliding parameter identifiers in place.

    A clash gets the parameter location appended, then a numeric suffix.
    """
    taken = set(reserved)
    for param in params:
        name = param["field_name"]
        if name in taken:
            base = name = f"{name}_{param['location']}"
            n = 2
            while name in taken:
                name = f"{base}_{n}"
                n += 1
            param["field_name"] = name
        taken.add(name)


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

class ContextBuilder:
    """Shared context assembly; subclasses supply the type vocabulary."""

    language: TargetLanguage
    keywords: frozenset[str] = frozenset()

    any_type = "Any"
    object_type = "dict"
    none_type = "None"

    # -- type vocabulary (overridden per language) --------------------------

    def primitive_type(self, node: Primitive) -> str:
        raise NotImplementedError

    def array_type(self, item: str) -> str:
        raise NotImplementedError

    def map_type(self, value: str) -> str:
        raise NotImplementedError

    def optional_type(self, inner: str, is_ref: bool = False) -> str:
        raise NotImplementedError

    def union_type(self, members: list[str]) -> str:
        raise NotImplementedError

    def named_type(self, key: str, model: SchemaModel) -> str:
        return model.type_names.get(key) or to_proper_case(key)

    def ident(self, name: str) -> str:
        """Make an already-normalized name usable as a module or function name."""
        if not name:
            return "operation"
        if name[0].isdigit():
            name = f"_{name}"
        return escape_keyword(name, self.keywords)

    def fn_name(self, name: str) -> str:
        return self.ident(to_snake_case(name))

    # -- schema -> type ------------------------------------------------------

    def type_for(
        self,
        node: SchemaNode | None,
        model: SchemaModel,
        seen: frozenset[str] = frozenset(),
    ) -> str:
        """Map a schema node to a type expression in the target language."""
        if node is None:
            return self.any_type

        if isinstance(node, Reference):
            target = model.resolve(node)
            if node.key in seen or _is_named(target):
                return self.named_type(node.key, model)
            return self.type_for(target, model, seen | {node.key})

        if isinstance(node, Array):
            return self.array_type(self.type_for(node.item, model, seen))

        if isinstance(node, Object):
            extra = node.additional_properties
            if not node.properties and isinstance(extra, SchemaNode):
                return self.map_type(self.type_for(extra, model, seen))
            return self.object_type

        if isinstance(node, Composed):
            if node.kind == "allOf":
                if len(node.members) == 1:
                    return self.type_for(node.members[0], model, seen)
                return self.object_type
            members: list[str] = []
            for member in node.members:
                t = self.type_for(member, model, seen)
                if t not in members:
                    members.append(t)
            if not members:
                return self.any_type
            if len(members) == 1:
                return members[0]
            return self.union_type(members)

        return self.primitive_type(node)

    def field_type(self, node: SchemaNode | None, model: SchemaModel, required: bool) -> str:
        base = self.type_for(node, model)
        if required and not is_nullable(node, model):
            return base
        return self.optional_type(base, is_ref=isinstance(node, Reference))

    # -- properties / parameters ---------------------------------------------

    def property_info(
        self,
        name: str,
        node: SchemaNode,
        model: SchemaModel,
        required: bool,
    ) -> dict[str, Any]:
        target = model.resolve(node)
        description = node.description or target.description
        nullable = is_nullable(node, model)
        return {
            "name": name,
            "field_name": to_identifier(name, self.keywords),
            "type": self.field_type(node, model, required),
            "base_type": self.type_for(node, model),
            "required": required,
            "nullable": nullable or not required,
            "ref": node.key if isinstance(node, Reference) else None,
            "description": sanitize_text(description),
            "enum": get_enum_values(node, model),
            "default": _sanitize_default(node.default if node.default is not None else target.default),
            "read_only": node.read_only or target.read_only,
        }

    def parameter_info(self, param: Parameter, model: SchemaModel) -> dict[str, Any]:
        info = self.property_info(param.name, param.schema, model, param.required)
        info["location"] = param.location
        if param.description:
            info["description"] = sanitize_text(param.description)
        return info

    def body_properties(self, op: Operation, model: SchemaModel) -> list[dict[str, Any]]:
        """Flatten the request body's object schema; readOnly fields are dropped."""
        if op.request_body is None or op.request_body.schema is None:
            return []
        flattened = flatten_object(op.request_body.schema, model)
        if flattened is None:
            return []
        properties, required = flattened
        return [
            self.property_info(name, node, model, name in required)
            for name, node in properties.items()
            if not (node.read_only or model.resolve(node).read_only)
        ]

    # -- endpoint context ------------------------------------------------------

    def transform(
        self,
        op: Operation,
        model: SchemaModel,
        extra_context: dict[str, Any] | None = None,
        name: str | None = None,
    ) -> dict[str, Any]:
        """Per-operation context for one endpoint."""
        endpoint = name or to_snake_case(op.id)
        params = [self.parameter_info(p, model) for p in op.parameters]

        body = op.request_body
        unique_field_names(params, reserved={"body"} if body is not None else set())
        body_schema = body.schema if body is not None else None
        resolved_body = model.resolve(body_schema) if body_schema is not None else None

        response = op.success_response()
        response_schema = response.schema if response is not None else None
        response_kind = _response_kind(response_schema, model)
        resolved_response = model.resolve(response_schema) if response_schema is not None else None

        response_item_type = self.any_type
        response_properties: list[dict[str, Any]] = []
        if isinstance(resolved_response, Array):
            response_item_type = self.type_for(resolved_response.item, model)
            flattened = flatten_object(resolved_response.item, model)
        elif response_schema is not None:
            flattened = flatten_object(response_schema, model)
        else:
            flattened = None
        if flattened is not None:
            props, required = flattened
            response_properties = [
                self.property_info(n, node, model, n in required) for n, node in props.items()
            ]

        context: dict[str, Any] = {
            "operation_id": op.id,
            "endpoint": endpoint,
            "endpoint_fs": endpoint,
            "endpoint_ident": self.ident(endpoint),
            "endpoint_cap": to_proper_case(op.id),
            "fn_name": self.fn_name(endpoint),
            "method": op.method,
            "http_method": op.method.upper(),
            "path": op.path,
            "summary": sanitize_text(op.summary),
            "description": _make_description(op, response_kind),
            "tags": [t.strip() for t in op.tags],
            "deprecated": op.deprecated,
            "is_mutation": op.method in _MUTATION_METHODS,
            "parameters": params,
            "path_params": [p for p in params if p["location"] == "path"],
            "query_params": [p for p in params if p["location"] == "query"],
            "header_params": [p for p in params if p["location"] == "header"],
            "cookie_params": [p for p in params if p["location"] == "cookie"],
            "has_body": body is not None,
            "body_required": bool(body and body.required),
            "body_content_type": body.content_type if body is not None else None,
            "body_type": self.type_for(body_schema, model) if body is not None else None,
            "is_array_body": isinstance(resolved_body, Array),
            "properties": self.body_properties(op, model),
            "response_status": response.status_code if response is not None else None,
            "response_kind": response_kind,
            "response_type": (
                self.type_for(response_schema, model) if response_schema is not None else self.none_type
            ),
            "response_is_array": response_kind == "array",
            "response_is_object": response_kind == "object",
            "response_is_primitive": response_kind == "primitive",
            "response_item_type": response_item_type,
            "response_properties": response_properties,
        }
        context.update(self.endpoint_extras(op, endpoint))
        if extra_context:
            context.update(extra_context)
        return context

    def endpoint_extras(self, op: Operation, endpoint: str) -> dict[str, Any]:
        return {}

    # -- models ---------------------------------------------------------------

    def build_models(self, model: SchemaModel) -> list[dict[str, Any]]:
        """One entry per component schema, sorted by type name."""
        models = []
        for key, node in model.components.items():
            entry: dict[str, Any] = {
                "key": key,
                "type_name": self.named_type(key, model),
                "description": sanitize_text(node.description),
                "is_object": False,
                "is_enum": False,
                "is_alias": False,
                "properties": [],
                "values": [],
                "alias_type": None,
            }
            flattened = flatten_object(node, model) if _is_named(node) else None
            if isinstance(node, Primitive) and node.enum:
                entry["is_enum"] = True
                entry["values"] = [
                    {"value": v, "name": to_identifier(str(v), self.keywords).upper()}
                    for v in node.enum
                ]
            elif flattened is not None:
                props, required = flattened
                entry["is_object"] = True
                entry["properties"] = [
                    self.property_info(n, p, model, n in required) for n, p in props.items()
                ]
            else:
                entry["is_alias"] = True
                entry["alias_type"] = self.type_for(node, model, frozenset({key}))
            models.append(entry)
        return sorted(models, key=lambda m: (m["type_name"], m["key"]))

    # -- global context -------------------------------------------------------

    def build_global(
        self,
        model: SchemaModel,
        config: "GenerationConfig",
        manifest: "Manifest",
        operations: list[Operation],
        names: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Context shared by every rendered file."""
        names = names or endpoint_names(operations)
        endpoints = [self.transform(op, model, name=names.get(op.id)) for op in operations]
        endpoints.sort(key=lambda e: (e["endpoint"], e["operation_id"]))
        logger.debug("%s builder produced %d endpoint contexts", self.language.value, len(endpoints))

        context: dict[str, Any] = {
            "project_name": config.project_name,
            "version": config.project_version,
            "project_version": config.project_version,
            "description": config.description or sanitize_text(model.info.description),
            "protocol": str(config.protocol),
            "role": str(config.role),
            "language": self.language.value,
            "api_title": model.info.title,
            "api_version": model.version,
            "api_info_version": model.info.version,
            "api_description": sanitize_text(model.info.description),
            "api_servers": [{"url": s.url, "description": s.description} for s in model.servers],
            "base_api_url": resolve_base_url(model, config.base_url),
            "endpoints": endpoints,
            "endpoint_count": len(endpoints),
            "models": self.build_models(model),
            "template_name": manifest.name,
            "template_version": manifest.version,
            "template_description": manifest.description,
        }
        context.update(self.project_extras(config.project_name))

        for key, value in manifest.variables.items():
            context.setdefault(key, value)
        context.update(config.extra_context)
        return context

    def project_extras(self, project_name: str) -> dict[str, Any]:
        return {}


class RustContextBuilder(ContextBuilder):
    language = TargetLanguage.RUST
    keywords = RUST_KEYWORDS

    any_type = "serde_json::Value"
    object_type = "serde_json::Value"
    none_type = "()"

    def primitive_type(self, node: Primitive) -> str:
        if node.kind == "string":
            return "String"
        if node.kind == "integer":
            return "i64" if node.format == "int64" else "i32"
        if node.kind == "number":
            return "f32" if node.format == "float" else "f64"
        if node.kind == "boolean":
            return "bool"
        return self.any_type

    def array_type(self, item: str) -> str:
        return f"Vec<{item}>"

    def map_type(self, value: str) -> str:
        return f"std::collections::HashMap<String, {value}>"

    def optional_type(self, inner: str, is_ref: bool = False) -> str:
        if is_ref and inner[:1].isupper() and "<" not in inner:
            return f"Option<Box<{inner}>>"
        return f"Option<{inner}>"

    def union_type(self, members: list[str]) -> str:
        return self.any_type

    def endpoint_extras(self, op: Operation, endpoint: str) -> dict[str, Any]:
        return {
            "parameters_type": to_proper_case(f"{op.id}_params"),
            "properties_type": to_proper_case(f"{op.id}_properties"),
            "response_type_name": to_proper_case(f"{op.id}_response"),
        }

    def project_extras(self, project_name: str) -> dict[str, Any]:
        crate_name = to_snake_case(project_name)
        return {
            "crate_name": crate_name,
            "module_name": crate_name,
            "struct_name": to_proper_case(project_name),
            "cli_binary_name": crate_name,
        }


class PythonContextBuilder(ContextBuilder):
    language = TargetLanguage.PYTHON
    keywords = PYTHON_KEYWORDS

    def primitive_type(self, node: Primitive) -> str:
        if node.kind == "string":
            return "bytes" if node.format == "binary" else "str"
        if node.kind == "integer":
            return "int"
        if node.kind == "number":
            return "float"
        if node.kind == "boolean":
            return "bool"
        return self.any_type

    def array_type(self, item: str) -> str:
        return f"list[{item}]"

    def map_type(self, value: str) -> str:
        return f"dict[str, {value}]"

    def optional_type(self, inner: str, is_ref: bool = False) -> str:
        if inner == self.any_type:
            return inner
        return f"{inner} | None"

    def union_type(self, members: list[str]) -> str:
        return " | ".join(members)

    def endpoint_extras(self, op: Operation, endpoint: str) -> dict[str, Any]:
        return {"handler_class": to_proper_case(f"{op.id}_handler")}

    def project_extras(self, project_name: str) -> dict[str, Any]:
        package_name = to_snake_case(project_name)
        return {
            "package_name": package_name,
            "module_name": package_name,
            "class_name": to_proper_case(project_name),
            "cli_script_name": project_name,
        }


class TypeScriptContextBuilder(ContextBuilder):
    language = TargetLanguage.TYPESCRIPT
    keywords = TYPESCRIPT_KEYWORDS

    any_type = "unknown"
    object_type = "Record<string, unknown>"
    none_type = "void"

    def primitive_type(self, node: Primitive) -> str:
        if node.enum and node.kind == "string":
            return " | ".join(f'"{v}"' for v in node.enum)
        if node.kind == "string":
            return "string"
        if node.kind in ("integer", "number"):
            return "number"
        if node.kind == "boolean":
            return "boolean"
        return self.any_type

    def array_type(self, item: str) -> str:
        if " " in item:
            return f"Array<{item}>"
        return f"{item}[]"

    def map_type(self, value: str) -> str:
        return f"Record<string, {value}>"

    def optional_type(self, inner: str, is_ref: bool = False) -> str:
        if inner == self.any_type:
            return inner
        return f"{inner} | null"

    def union_type(self, members: list[str]) -> str:
        return " | ".join(members)

    def fn_name(self, name: str) -> str:
        return self.ident(to_camel_case(name))

    def project_extras(self, project_name: str) -> dict[str, Any]:
        return {
            "package_name": to_snake_case(project_name).replace("_", "-"),
            "module_name": to_camel_case(project_name),
            "class_name": to_proper_case(project_name),
        }


_BUILDERS: dict[TargetLanguage, ContextBuilder] = {
    TargetLanguage.RUST: RustContextBuilder(),
    TargetLanguage.PYTHON: PythonContextBuilder(),
    TargetLanguage.TYPESCRIPT: TypeScriptContextBuilder(),
}


def get_builder(language: TargetLanguage | str) -> ContextBuilder:
    """Return the builder for a target language; unknown languages fail."""
    value = language.value if isinstance(language, Enum) else str(language)
    try:
        key = TargetLanguage(value.lower())
    except ValueError:
        available = ", ".join(lang.value for lang in TargetLanguage)
        raise InvalidKindError(
            f"No context builder for language {language!r} (available: {available})"
        ) from None
    return _BUILDERS[key]


def language_for(kind: TemplateKind, manifest: "Manifest") -> TargetLanguage:
    """Target language for a template kind; custom templates name it in the manifest."""
    if kind is TemplateKind.CUSTOM:
        if not manifest.language:
            raise InvalidKindError("Custom templates must declare 'language' in manifest.yml")
        value = manifest.language
    else:
        value = kind.value
    return get_builder(value).language


# ---------------------------------------------------------------------------
# Schema helpers
# ---------------------------------------------------------------------------

def _is_named(node: SchemaNode) -> bool:
    """Schemas that become named types when referenced."""
    if isinstance(node, (Object, Composed)):
        return True
    return isinstance(node, Primitive) and bool(node.enum)


def is_nullable(node: SchemaNode | None, model: SchemaModel) -> bool:
    if node is None:
        return True
    return node.nullable or model.resolve(node).nullable


def get_enum_values(node: SchemaNode, model: SchemaModel) -> list[str] | None:
    """Extract enum values from a schema, resolving $ref and allOf."""
    target = model.resolve(node)
    if isinstance(target, Primitive) and target.enum:
        return [str(v) for v in target.enum]
    if isinstance(target, Composed) and target.kind == "allOf":
        for member in target.members:
            resolved = model.resolve(member)
            if isinstance(resolved, Primitive) and resolved.enum:
                return [str(v) for v in resolved.enum]
    return None


def flatten_object(
    node: SchemaNode,
    model: SchemaModel,
    seen: frozenset[str] = frozenset(),
) -> tuple[dict[str, SchemaNode], set[str]] | None:
    """Merge an object (or allOf of objects) into properties + required.

    Returns None when the schema is not object-shaped.
    """
    if isinstance(node, Reference):
        if node.key in seen:
            return None
        return flatten_object(model.components[node.key], model, seen | {node.key})

    if isinstance(node, Object):
        return dict(node.properties), set(node.required)

    if isinstance(node, Composed) and node.kind == "allOf":
        properties: dict[str, SchemaNode] = {}
        required: set[str] = set()
        found = False
        for member in node.members:
            part = flatten_object(member, model, seen)
            if part is None:
                continue
            found = True
            properties.update(part[0])
            required |= part[1]
        return (properties, required) if found else None

    return None


def _response_kind(node: SchemaNode | None, model: SchemaModel) -> str:
    if node is None:
        return "none"
    target = model.resolve(node)
    if isinstance(target, Array):
        return "array"
    if isinstance(target, (Object, Composed)):
        return "object"
    if isinstance(target, Primitive) and target.kind != "any":
        return "primitive"
    return "none"
