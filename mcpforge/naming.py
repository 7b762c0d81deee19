"""Identifier normalization for generated code.

Every name that ends up in a generated file or path goes through here so
that repeated runs produce the same identifiers.

Examples:
  to_snake_case("findPetsByStatus")     -> find_pets_by_status
  to_snake_case("FindPetsByStatus")     -> find_pets_by_status
  to_snake_case("get HTTP Response")    -> get_http_response
  to_snake_case("HTTPResponse")         -> httpresponse
  to_proper_case("find-pets-by-status") -> FindPetsByStatus
  to_camel_case("find_pets_by_status")  -> findPetsByStatus
  build_operation_id("get", "/pets/{petId}") -> get_pets_petId

Uppercase runs are not split: "getHTTPResponse" becomes
"get_httpresponse", never "get_http_response".
"""

from __future__ import annotations

import keyword
import re

_SEPARATORS = {"-", "_", " "}

RUST_KEYWORDS: frozenset[str] = frozenset({
    "as", "break", "const", "continue", "crate", "else", "enum", "extern",
    "false", "fn", "for", "if", "impl", "in", "let", "loop", "match", "mod",
    "move", "mut", "pub", "ref", "return", "self", "Self", "static",
    "struct", "super", "trait", "true", "type", "unsafe", "use", "where",
    "while", "async", "await", "dyn", "abstract", "become", "box", "do",
    "final", "macro", "override", "priv", "typeof", "unsized", "virtual",
    "yield", "try",
})

PYTHON_KEYWORDS: frozenset[str] = frozenset(keyword.kwlist) | frozenset(keyword.softkwlist)

TYPESCRIPT_KEYWORDS: frozenset[str] = frozenset({
    "break", "case", "catch", "class", "const", "continue", "debugger",
    "default", "delete", "do", "else", "enum", "export", "extends", "false",
    "finally", "for", "function", "if", "import", "in", "instanceof", "new",
    "null", "return", "super", "switch", "this", "throw", "true", "try",
    "typeof", "var", "void", "while", "with", "implements", "interface",
    "let", "package", "private", "protected", "public", "static", "yield",
})


def to_snake_case(name: str) -> str:
    """Convert camelCase, PascalCase, kebab-case or spaced text to snake_case."""
    chars: list[str] = []
    prev_is_lower = False

    for i, ch in enumerate(name):
        if ch.isupper():
            if i > 0 and prev_is_lower:
                chars.append("_")
            chars.append(ch.lower())
            prev_is_lower = False
        elif ch.isalnum():
            chars.append(ch)
            prev_is_lower = ch.islower()
        elif ch in _SEPARATORS:
            if chars and chars[-1] != "_":
                chars.append("_")
            prev_is_lower = False

    result = re.sub(r"_+", "_", "".join(chars))
    return result.strip("_")


def to_proper_case(name: str) -> str:
    """Convert to PascalCase by way of snake_case."""
    return "".join(
        segment[0].upper() + segment[1:]
        for segment in to_snake_case(name).split("_")
        if segment
    )


def to_camel_case(name: str) -> str:
    """Convert to camelCase by way of PascalCase."""
    proper = to_proper_case(name)
    if not proper:
        return proper
    return proper[0].lower() + proper[1:]


def escape_keyword(name: str, keywords: frozenset[str]) -> str:
    """Append an underscore when ``name`` collides with a reserved word."""
    if name in keywords:
        return f"{name}_"
    return name


def to_identifier(name: str, keywords: frozenset[str] = PYTHON_KEYWORDS) -> str:
    """Snake-case ``name`` and make it usable as a field or variable name."""
    ident = to_snake_case(name)
    if not ident:
        return "value"
    if ident[0].isdigit():
        ident = f"_{ident}"
    return escape_keyword(ident, keywords)


def _extract_path_parts(path: str) -> list[str]:
    """Split a path template into segments, unwrapping {params}."""
    return [p.strip("{}") for p in path.split("/") if p and p.strip("{}")]


def build_operation_id(method: str, path: str) -> str:
    """Build a fallback operation id from HTTP method and path.

    Used for operations that carry no explicit operationId.
    """
    method_lower = method.lower()
    parts = _extract_path_parts(path)
    if not parts:
        return f"{method_lower}_root"
    clean = [re.sub(r"[^A-Za-z0-9_]", "_", p) for p in parts]
    return f"{method_lower}_{'_'.join(clean)}"
