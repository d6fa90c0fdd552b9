"""
Catalog cache: the last fetched tools, prompts and resources of one server.

Descriptors are frozen value objects built from the list replies. Each
successful list fetch replaces the corresponding sequence as a whole; there
is no merge and no automatic invalidation, so callers re-list to refresh.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from .errors import ProtocolError
from .schema import InputSchema


class ToolDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    input_schema: InputSchema = InputSchema()

    @classmethod
    def from_dict(cls, d: dict) -> "ToolDescriptor":
        schema = d.get('inputSchema', d.get('input_schema')) or {}
        return cls(
            name=d['name'],
            description=d.get('description') or '',
            input_schema=InputSchema.from_json_schema(schema),
        )


class PromptArgument(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    required: bool = False


class PromptDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    arguments: tuple[PromptArgument, ...] = ()

    @classmethod
    def from_dict(cls, d: dict) -> "PromptDescriptor":
        return cls(
            name=d['name'],
            description=d.get('description') or '',
            arguments=tuple(
                PromptArgument(
                    name=a['name'],
                    description=a.get('description') or '',
                    required=bool(a.get('required', False)),
                )
                for a in d.get('arguments') or ()
            ),
        )


class ResourceDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    uri: str
    name: str
    description: str = ""
    mime_type: Optional[str] = None

    @classmethod
    def from_dict(cls, d: dict) -> "ResourceDescriptor":
        return cls(
            uri=d['uri'],
            name=d.get('name') or d['uri'],
            description=d.get('description') or '',
            mime_type=d.get('mimeType'),
        )


class ResourceTemplateDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    uri_template: str
    name: str
    description: str = ""
    mime_type: Optional[str] = None

    @classmethod
    def from_dict(cls, d: dict) -> "ResourceTemplateDescriptor":
        return cls(
            uri_template=d['uriTemplate'],
            name=d.get('name') or d['uriTemplate'],
            description=d.get('description') or '',
            mime_type=d.get('mimeType'),
        )


# list method -> (result key, descriptor type, cache attribute)
CATALOGS = {
    'tools/list': ('tools', ToolDescriptor, 'tools'),
    'prompts/list': ('prompts', PromptDescriptor, 'prompts'),
    'resources/list': ('resources', ResourceDescriptor, 'resources'),
    'resources/templates/list': ('resourceTemplates', ResourceTemplateDescriptor, 'resource_templates'),
}


def parse_items(method: str, items: Any) -> tuple:
    """
    Build descriptors from the item list of a list reply.

    Raises:
        ProtocolError: If the list or any entry is malformed.
    """
    key, descriptor, _ = CATALOGS[method]
    if not isinstance(items, list):
        raise ProtocolError(f"{method} '{key}' must be a list, got {type(items).__name__}")
    try:
        return tuple(descriptor.from_dict(item) for item in items)
    except (KeyError, TypeError, AttributeError, ValidationError) as e:
        raise ProtocolError(f"Malformed entry in {method} result: {e}") from e


class CatalogCache:
    """Snapshot of a server's catalogs, owned by one Connection."""

    def __init__(self) -> None:
        self.tools: tuple[ToolDescriptor, ...] = ()
        self.prompts: tuple[PromptDescriptor, ...] = ()
        self.resources: tuple[ResourceDescriptor, ...] = ()
        self.resource_templates: tuple[ResourceTemplateDescriptor, ...] = ()

    def replace(self, method: str, items: tuple) -> None:
        _, _, attr = CATALOGS[method]
        setattr(self, attr, tuple(items))

    def find_tool(self, name: str) -> Optional[ToolDescriptor]:
        return next((t for t in self.tools if t.name == name), None)

    def find_prompt(self, name: str) -> Optional[PromptDescriptor]:
        return next((p for p in self.prompts if p.name == name), None)

    def find_resource(self, name_or_uri: str) -> Optional[ResourceDescriptor]:
        return next(
            (r for r in self.resources if r.uri == name_or_uri or r.name == name_or_uri),
            None,
        )

    def find_resource_template(self, name: str) -> Optional[ResourceTemplateDescriptor]:
        return next(
            (t for t in self.resource_templates if t.name == name or t.uri_template == name),
            None,
        )

    def clear(self) -> None:
        self.tools = ()
        self.prompts = ()
        self.resources = ()
        self.resource_templates = ()
