"""Parse an OpenAPI / Swagger document into a SchemaModel.

Handles:
- Version detection (Swagger 2.0, OpenAPI 3.0.x, OpenAPI 3.1.x)
- Swagger 2.0 body / formData parameters -> one RequestBody shape
- Path-level + operation-level parameter merging
- $ref resolution for schemas, parameters, request bodies, responses
- Self-referential and mutually recursive component schemas
- OpenAPI 3.1 type arrays (["string", "null"]) -> nullable
- Deterministic operation order (sorted by id)

Component schemas live in an arena keyed by component name. A schema
position holding a $ref becomes Reference(key); the component body is
resolved into the arena once, so cycles are plain back-edges.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import cached_property
from enum import Enum
from typing import Any

from .errors import MalformedSpecError, UnresolvedRefError, UnsupportedVersionError
from .logging_config import get_logger
from .naming import build_operation_id, to_proper_case

logger = get_logger(__name__)

HTTP_METHODS = ("get", "put", "post", "delete", "options", "head", "patch", "trace")
PARAMETER_LOCATIONS = ("path", "query", "header", "cookie")
PRIMITIVE_KINDS = ("string", "integer", "number", "boolean")

# Inline Swagger 2.0 parameter keys that describe the parameter's type
_V2_INLINE_SCHEMA_KEYS = (
    "type", "format", "items", "enum", "default", "minimum", "maximum",
    "minLength", "maxLength", "pattern", "x-nullable",
)


class SpecVersion(str, Enum):
    SWAGGER_2 = "2.0"
    OPENAPI_3_0 = "3.0"
    OPENAPI_3_1 = "3.1"


# ---------------------------------------------------------------------------
# Schema graph
# ---------------------------------------------------------------------------

@dataclass(kw_only=True)
class SchemaNode:
    description: str = ""
    title: str | None = None
    nullable: bool = False
    read_only: bool = False
    write_only: bool = False
    default: Any = None
    example: Any = None


@dataclass
class Primitive(SchemaNode):
    kind: str = "any"
    format: str | None = None
    enum: list[Any] | None = None


@dataclass
class Array(SchemaNode):
    item: SchemaNode


@dataclass
class Object(SchemaNode):
    properties: dict[str, SchemaNode] = field(default_factory=dict)
    required: set[str] = field(default_factory=set)
    additional_properties: SchemaNode | bool | None = None


@dataclass
class Reference(SchemaNode):
    key: str


@dataclass
class Composed(SchemaNode):
    kind: str  # allOf | oneOf | anyOf
    members: list[SchemaNode] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

@dataclass
class Parameter:
    name: str
    location: str
    required: bool
    schema: SchemaNode
    description: str = ""


@dataclass
class RequestBody:
    content_type: str
    schema: SchemaNode | None
    required: bool = False
    description: str = ""


@dataclass
class Response:
    status_code: str
    description: str = ""
    content_type: str | None = None
    schema: SchemaNode | None = None


@dataclass
class Operation:
    id: str
    method: str
    path: str
    parameters: list[Parameter] = field(default_factory=list)
    request_body: RequestBody | None = None
    responses: dict[str, Response] = field(default_factory=dict)
    summary: str = ""
    description: str = ""
    tags: list[str] = field(default_factory=list)
    deprecated: bool = False

    def success_response(self) -> Response | None:
        """First 2xx response in status-code order, if any."""
        for code in sorted(self.responses):
            if code.startswith("2"):
                return self.responses[code]
        return None


@dataclass
class ApiInfo:
    title: str
    version: str
    description: str = ""


@dataclass
class Server:
    url: str
    description: str = ""


@dataclass
class SchemaModel:
    version: str
    spec_version: SpecVersion
    info: ApiInfo
    servers: list[Server] = field(default_factory=list)
    components: dict[str, SchemaNode] = field(default_factory=dict)
    operations: list[Operation] = field(default_factory=list)

    @cached_property
    def type_names(self) -> dict[str, str]:
        """Component key -> PascalCase type name, unique across the model.

        Keys that normalize to the same name get a numeric suffix in key order.
        """
        names: dict[str, str] = {}
        taken: dict[str, int] = {}
        for key in sorted(self.components):
            name = to_proper_case(key) or "Model"
            if name in taken:
                taken[name] += 1
                name = f"{name}{taken[name]}"
            else:
                taken[name] = 1
            names[key] = name
        return names

    def resolve(self, node: SchemaNode) -> SchemaNode:
        """Follow Reference nodes until a concrete schema is reached."""
        while isinstance(node, Reference):
            node = self.components[node.key]
        return node

    def get_operation(self, op_id: str) -> Operation | None:
        for op in self.operations:
            if op.id == op_id:
                return op
        return None


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

def detect_version(document: dict[str, Any]) -> tuple[str, SpecVersion]:
    """Return the raw version string and its normalized SpecVersion."""
    raw = document.get("openapi")
    field_name = "openapi"
    if raw is None:
        raw = document.get("swagger")
        field_name = "swagger"
    if raw is None:
        raise MalformedSpecError("Missing 'openapi' or 'swagger' version field")

    value = str(raw)
    if field_name == "swagger":
        if value == "2.0":
            return value, SpecVersion.SWAGGER_2
    elif value.startswith("3.0"):
        return value, SpecVersion.OPENAPI_3_0
    elif value.startswith("3.1"):
        return value, SpecVersion.OPENAPI_3_1
    raise UnsupportedVersionError(value)


def _unescape_pointer(token: str) -> str:
    return token.replace("~1", "/").replace("~0", "~")


def _as_dict(value: Any, where: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise MalformedSpecError(f"{where} must be an object, got {type(value).__name__}")
    return value


def _as_list(value: Any, where: str) -> list[Any]:
    if not isinstance(value, list):
        raise MalformedSpecError(f"{where} must be a list, got {type(value).__name__}")
    return value


def _first(value: Any, default: str, where: str) -> str:
    """First entry of an optional list field such as schemes or consumes."""
    if not value:
        return default
    return str(_as_list(value, where)[0])


def _pick_media_type(content: dict[str, Any]) -> str | None:
    """Prefer application/json, then any +json type, then the first entry."""
    if not content:
        return None
    if "application/json" in content:
        return "application/json"
    for media_type in content:
        if media_type.endswith("+json") or media_type.endswith("/json"):
            return media_type
    return next(iter(content))


class SpecParser:
    """Single-use parser holding the component arena and resolution stack."""

    def __init__(self, document: dict[str, Any]) -> None:
        self.document = document
        self.version, self.spec_version = detect_version(document)
        self.is_v2 = self.spec_version is SpecVersion.SWAGGER_2

        if self.is_v2:
            self._schema_prefix = "#/definitions/"
            table = document.get("definitions", {})
        else:
            self._schema_prefix = "#/components/schemas/"
            table = _as_dict(document.get("components", {}), "components").get("schemas", {})
        self._table: dict[str, Any] = _as_dict(table or {}, "component schemas")
        self._arena: dict[str, SchemaNode] = {}
        self._resolving: list[str] = []

    # -- entry point -------------------------------------------------------

    def parse(self) -> SchemaModel:
        for key in sorted(self._table):
            if key not in self._arena:
                self._resolve_component(key)
        components = {key: self._arena[key] for key in sorted(self._arena)}
        self._check_alias_cycles(components)

        operations = self._parse_operations()
        logger.debug("Parsed %d operations and %d component schemas", len(operations), len(components))

        return SchemaModel(
            version=self.version,
            spec_version=self.spec_version,
            info=self._parse_info(),
            servers=self._parse_servers(),
            components=components,
            operations=operations,
        )

    # -- references --------------------------------------------------------

    def _follow_pointer(self, ref: str) -> Any:
        """Resolve a local JSON pointer ("#/a/b") against the document."""
        if not ref.startswith("#/"):
            raise UnresolvedRefError(ref)
        node: Any = self.document
        for token in ref[2:].split("/"):
            token = _unescape_pointer(token)
            if isinstance(node, dict) and token in node:
                node = node[token]
            else:
                raise UnresolvedRefError(ref)
        return node

    def _deref(self, value: Any, where: str) -> dict[str, Any]:
        """Follow $ref chains for parameters, bodies and responses."""
        seen: set[str] = set()
        value = _as_dict(value, where)
        while "$ref" in value:
            ref = value["$ref"]
            if ref in seen:
                raise MalformedSpecError(f"Circular reference at {ref}")
            seen.add(ref)
            value = _as_dict(self._follow_pointer(ref), ref)
        return value

    def _reference(self, ref: str) -> Reference:
        if not isinstance(ref, str) or not ref.startswith(self._schema_prefix):
            raise UnresolvedRefError(str(ref))
        key = _unescape_pointer(ref[len(self._schema_prefix):])
        if key not in self._table:
            raise UnresolvedRefError(key)
        if key in self._resolving:
            logger.debug("Back edge to %s while resolving %s", key, " -> ".join(self._resolving))
        elif key not in self._arena:
            self._resolve_component(key)
        return Reference(key=key)

    def _resolve_component(self, key: str) -> None:
        self._resolving.append(key)
        try:
            self._arena[key] = self.parse_schema(self._table[key])
        finally:
            self._resolving.pop()

    def _check_alias_cycles(self, components: dict[str, SchemaNode]) -> None:
        """Reject components that only alias each other in a loop."""
        for key, node in components.items():
            seen = {key}
            while isinstance(node, Reference):
                if node.key in seen:
                    raise MalformedSpecError(f"Component {key!r} is a circular alias")
                seen.add(node.key)
                node = components[node.key]

    # -- schemas -----------------------------------------------------------

    def parse_schema(self, raw: Any) -> SchemaNode:
        if raw is True or raw == {}:
            return Primitive(kind="any")
        raw = _as_dict(raw, "schema")

        if "$ref" in raw:
            return self._reference(raw["$ref"])

        meta: dict[str, Any] = {
            "description": raw.get("description", "") or "",
            "title": raw.get("title"),
            "nullable": bool(raw.get("nullable", False) or raw.get("x-nullable", False)),
            "read_only": bool(raw.get("readOnly", False)),
            "write_only": bool(raw.get("writeOnly", False)),
            "default": raw.get("default"),
            "example": raw.get("example"),
        }

        schema_type = raw.get("type")
        if isinstance(schema_type, list):
            types = [t for t in schema_type if t != "null"]
            if len(types) != len(schema_type):
                meta["nullable"] = True
            if len(types) > 1:
                members = [self.parse_schema({**raw, "type": t}) for t in types]
                return Composed(kind="anyOf", members=members, **meta)
            schema_type = types[0] if types else None

        for kind in ("allOf", "oneOf", "anyOf"):
            if kind in raw:
                members = [self.parse_schema(sub) for sub in _as_list(raw[kind], kind)]
                if "properties" in raw:
                    members.append(self._parse_object(raw, {}))
                return Composed(kind=kind, members=members, **meta)

        if "enum" in raw:
            return Primitive(
                kind=schema_type if schema_type in PRIMITIVE_KINDS else "string",
                format=raw.get("format"),
                enum=list(_as_list(raw["enum"], "enum")),
                **meta,
            )

        if schema_type == "array" or (schema_type is None and "items" in raw):
            items = raw.get("items")
            item = self.parse_schema(items) if items is not None else Primitive(kind="any")
            return Array(item=item, **meta)

        if schema_type == "object" or (
            schema_type is None and ("properties" in raw or "additionalProperties" in raw)
        ):
            return self._parse_object(raw, meta)

        if schema_type in PRIMITIVE_KINDS:
            return Primitive(kind=schema_type, format=raw.get("format"), **meta)
        if schema_type == "file":
            return Primitive(kind="string", format="binary", **meta)
        return Primitive(kind="any", **meta)

    def _parse_object(self, raw: dict[str, Any], meta: dict[str, Any]) -> Object:
        properties = {
            name: self.parse_schema(prop)
            for name, prop in _as_dict(raw.get("properties", {}), "properties").items()
        }
        required = set(_as_list(raw.get("required", []), "required"))

        additional = raw.get("additionalProperties")
        if isinstance(additional, dict):
            additional = self.parse_schema(additional)
        elif additional is not None:
            additional = bool(additional)

        return Object(
            properties=properties,
            required=required,
            additional_properties=additional,
            **meta,
        )

    # -- document sections -------------------------------------------------

    def _parse_info(self) -> ApiInfo:
        info = _as_dict(self.document.get("info", {}), "info")
        return ApiInfo(
            title=str(info.get("title", "")),
            version=str(info.get("version", "")),
            description=info.get("description", "") or "",
        )

    def _parse_servers(self) -> list[Server]:
        if self.is_v2:
            host = self.document.get("host")
            base_path = self.document.get("basePath", "") or ""
            if host:
                scheme = _first(self.document.get("schemes"), "https", "schemes")
                return [Server(url=f"{scheme}://{host}{base_path}")]
            if base_path:
                return [Server(url=base_path)]
            return []

        servers = []
        for entry in _as_list(self.document.get("servers", []), "servers"):
            entry = _as_dict(entry, "server")
            if "url" not in entry:
                continue
            url = str(entry["url"])
            variables = _as_dict(entry.get("variables") or {}, "server variables")
            for name, variable in variables.items():
                default = _as_dict(variable or {}, f"server variable {name!r}").get("default")
                if default is not None:
                    url = url.replace("{" + name + "}", str(default))
            servers.append(Server(url=url, description=entry.get("description", "") or ""))
        return servers

    def _parse_operations(self) -> list[Operation]:
        if "paths" not in self.document and self.spec_version is SpecVersion.OPENAPI_3_1:
            paths: dict[str, Any] = {}
        elif "paths" not in self.document:
            raise MalformedSpecError("Missing 'paths' object")
        else:
            paths = _as_dict(self.document["paths"], "paths")

        operations: list[Operation] = []
        seen_ids: dict[str, str] = {}
        for path, path_item in paths.items():
            path_item = _as_dict(path_item, f"path item {path!r}")
            shared = _as_list(path_item.get("parameters", []), f"{path} parameters")
            for method in HTTP_METHODS:
                if method not in path_item:
                    continue
                raw_op = _as_dict(path_item[method], f"{method.upper()} {path}")
                op = self._build_operation(path, method, shared, raw_op)
                where = f"{method.upper()} {path}"
                if op.id in seen_ids:
                    raise MalformedSpecError(
                        f"Duplicate operation id {op.id!r} ({seen_ids[op.id]} and {where})"
                    )
                seen_ids[op.id] = where
                operations.append(op)

        return sorted(operations, key=lambda op: op.id)

    def _build_operation(
        self,
        path: str,
        method: str,
        shared_params: list[Any],
        raw_op: dict[str, Any],
    ) -> Operation:
        op_id = raw_op.get("operationId") or build_operation_id(method, path)
        where = f"{method.upper()} {path}"

        # (name, location) -> raw parameter; operation-level entries replace path-level ones
        merged: dict[tuple[str, str], dict[str, Any]] = {}
        own = _as_list(raw_op.get("parameters", []), f"{where} parameters")
        for raw_param in [*shared_params, *own]:
            param = self._deref(raw_param, f"{where} parameter")
            if not isinstance(param.get("name"), str):
                raise MalformedSpecError(f"{where}: parameter missing name")
            merged[(param["name"], param.get("in", ""))] = param

        parameters: list[Parameter] = []
        body_param: dict[str, Any] | None = None
        form_params: list[dict[str, Any]] = []
        for (name, location), param in merged.items():
            if self.is_v2 and location == "body":
                body_param = param
            elif self.is_v2 and location == "formData":
                form_params.append(param)
            elif location in PARAMETER_LOCATIONS:
                parameters.append(self._parse_parameter(param))
            else:
                raise MalformedSpecError(f"{where}: parameter {name!r} has invalid location {location!r}")

        if self.is_v2:
            request_body = self._v2_request_body(raw_op, body_param, form_params)
        elif "requestBody" in raw_op:
            request_body = self._v3_request_body(raw_op["requestBody"], where)
        else:
            request_body = None

        responses: dict[str, Response] = {}
        raw_responses = _as_dict(raw_op.get("responses", {}), f"{where} responses")
        for code, raw_response in raw_responses.items():
            responses[str(code)] = self._parse_response(str(code), raw_response, raw_op, where)

        tags = [str(t) for t in _as_list(raw_op.get("tags", []), f"{where} tags")]

        return Operation(
            id=str(op_id),
            method=method,
            path=path,
            parameters=parameters,
            request_body=request_body,
            responses=responses,
            summary=raw_op.get("summary", "") or "",
            description=raw_op.get("description", "") or "",
            tags=tags,
            deprecated=bool(raw_op.get("deprecated", False)),
        )

    def _parse_parameter(self, param: dict[str, Any]) -> Parameter:
        location = param["in"]
        if "schema" in param:
            schema = self.parse_schema(param["schema"])
        elif "content" in param:
            content = _as_dict(param["content"], "parameter content")
            media_type = _pick_media_type(content)
            media = (content.get(media_type) or {}) if media_type else {}
            schema = self.parse_schema(media.get("schema", {}))
        elif self.is_v2:
            schema = self.parse_schema(
                {k: v for k, v in param.items() if k in _V2_INLINE_SCHEMA_KEYS}
            )
        else:
            schema = Primitive(kind="any")

        return Parameter(
            name=param["name"],
            location=location,
            required=location == "path" or bool(param.get("required", False)),
            schema=schema,
            description=param.get("description", "") or "",
        )

    def _v3_request_body(self, raw_body: Any, where: str) -> RequestBody:
        body = self._deref(raw_body, f"{where} requestBody")
        content = _as_dict(body.get("content", {}), f"{where} requestBody content")
        media_type = _pick_media_type(content)
        schema = None
        if media_type is not None:
            media = _as_dict(content[media_type] or {}, f"{where} {media_type}")
            if "schema" in media:
                schema = self.parse_schema(media["schema"])
        return RequestBody(
            content_type=media_type or "application/json",
            schema=schema,
            required=bool(body.get("required", False)),
            description=body.get("description", "") or "",
        )

    def _v2_request_body(
        self,
        raw_op: dict[str, Any],
        body_param: dict[str, Any] | None,
        form_params: list[dict[str, Any]],
    ) -> RequestBody | None:
        consumes = _first(
            raw_op.get("consumes") or self.document.get("consumes"), "application/json", "consumes"
        )

        if body_param is not None:
            return RequestBody(
                content_type=consumes,
                schema=self.parse_schema(body_param.get("schema", {})),
                required=bool(body_param.get("required", False)),
                description=body_param.get("description", "") or "",
            )

        if form_params:
            properties: dict[str, SchemaNode] = {}
            required: set[str] = set()
            has_file = False
            for param in form_params:
                inline = {k: v for k, v in param.items() if k in _V2_INLINE_SCHEMA_KEYS}
                if param.get("description"):
                    inline["description"] = param["description"]
                has_file = has_file or param.get("type") == "file"
                properties[param["name"]] = self.parse_schema(inline)
                if param.get("required"):
                    required.add(param["name"])
            content_type = (
                "multipart/form-data" if has_file else "application/x-www-form-urlencoded"
            )
            return RequestBody(
                content_type=content_type,
                schema=Object(properties=properties, required=required),
                required=bool(required),
            )

        return None

    def _parse_response(
        self,
        code: str,
        raw_response: Any,
        raw_op: dict[str, Any],
        where: str,
    ) -> Response:
        response = self._deref(raw_response, f"{where} response {code}")
        description = response.get("description", "") or ""

        if self.is_v2:
            if "schema" not in response:
                return Response(status_code=code, description=description)
            produces = _first(
                raw_op.get("produces") or self.document.get("produces"), "application/json", "produces"
            )
            return Response(
                status_code=code,
                description=description,
                content_type=produces,
                schema=self.parse_schema(response["schema"]),
            )

        content = _as_dict(response.get("content", {}) or {}, f"{where} response {code} content")
        media_type = _pick_media_type(content)
        schema = None
        if media_type is not None:
            media = content[media_type] or {}
            if "schema" in media:
                schema = self.parse_schema(media["schema"])
        return Response(
            status_code=code,
            description=description,
            content_type=media_type,
            schema=schema,
        )


def parse(document: Any) -> SchemaModel:
    """Build a SchemaModel from a loaded (JSON/YAML) document."""
    if not isinstance(document, dict):
        raise MalformedSpecError("Spec document must be a mapping at the top level")
    return SpecParser(document).parse()
