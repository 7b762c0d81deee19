"""mcpforge: generate MCP servers from OpenAPI / Swagger specs."""

from .codegen import GeneratedFileSet, generate, generate_project
from .config import GenerationConfig, Protocol, Role, TemplateKind
from .errors import GenerationError
from .schema_parser import SchemaModel, parse

__version__ = "0.1.0"

__all__ = [
    "GeneratedFileSet",
    "GenerationConfig",
    "GenerationError",
    "Protocol",
    "Role",
    "SchemaModel",
    "TemplateKind",
    "__version__",
    "generate",
    "generate_project",
    "parse",
]
