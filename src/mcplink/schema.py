"""
Tool input schemas.

MCP tools describe their arguments with a JSON-Schema object:

    {"type": "object",
     "properties": {"path": {"type": "string", "description": "..."},
                    "limit": {"type": "integer", "default": 10},
                    "rows": {"type": "array",
                             "items": {"type": "object",
                                       "properties": {"id": {"type": "integer"}},
                                       "required": ["id"]}}},
     "required": ["path"]}

InputSchema keeps the properties in declaration order, since positional
arguments are matched against that order, and records required-ness as a
set. Array item schemas are reduced to ArrayItems, the three-part shape
(type, properties, required) that tool-calling registries consume.
"""

from __future__ import annotations

import re
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, create_model

# JSON Schema type -> Python type, for building pydantic tool models
TYPE_MAP = {
    'string': str,
    'integer': int,
    'number': float,
    'boolean': bool,
    'array': list,
    'object': dict,
}


def _schema_type(schema: dict, fallback: str = 'string') -> str:
    """Pick the JSON type of a property, tolerating ["string", "null"] unions."""
    t = schema.get('type')
    if isinstance(t, list):
        t = next((x for x in t if x != 'null'), None)
    if isinstance(t, str):
        return t
    if 'properties' in schema:
        return 'object'
    if 'items' in schema:
        return 'array'
    return fallback


class ItemProperty(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str
    description: str = ""


class ArrayItems(BaseModel):
    """Normalized item schema of an array-typed property."""
    model_config = ConfigDict(frozen=True)

    type: str = 'string'
    properties: dict[str, ItemProperty] = Field(default_factory=dict)
    required: tuple[str, ...] = ()

    @classmethod
    def from_json_schema(cls, items: Any) -> "ArrayItems":
        if not isinstance(items, dict):
            return cls()
        props = items.get('properties') or {}
        return cls(
            type=_schema_type(items),
            properties={
                name: ItemProperty(
                    type=_schema_type(p) if isinstance(p, dict) else 'string',
                    description=(p.get('description') or '') if isinstance(p, dict) else '',
                )
                for name, p in props.items()
            },
            required=tuple(items.get('required') or ()),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            'type': self.type,
            'properties': {
                name: {'type': p.type, 'description': p.description}
                for name, p in self.properties.items()
            },
            'required': list(self.required),
        }


class PropertySchema(BaseModel):
    """One declared tool argument."""
    model_config = ConfigDict(frozen=True)

    name: str
    type: str = 'string'
    description: str = ""
    default: Any = None
    has_default: bool = False
    enum: Optional[tuple[Any, ...]] = None
    items: Optional[ArrayItems] = None

    @classmethod
    def from_json_schema(cls, name: str, schema: Any) -> "PropertySchema":
        if not isinstance(schema, dict):
            schema = {}
        ptype = _schema_type(schema)
        enum = schema.get('enum')
        return cls(
            name=name,
            type=ptype,
            description=schema.get('description') or '',
            default=schema.get('default'),
            has_default='default' in schema,
            enum=tuple(enum) if isinstance(enum, list) else None,
            items=ArrayItems.from_json_schema(schema.get('items')) if ptype == 'array' else None,
        )


class InputSchema(BaseModel):
    """Ordered property list plus the set of required names."""
    model_config = ConfigDict(frozen=True)

    properties: tuple[PropertySchema, ...] = ()
    required: frozenset[str] = frozenset()

    @classmethod
    def from_json_schema(cls, schema: Any) -> "InputSchema":
        if not isinstance(schema, dict):
            return cls()
        props = schema.get('properties') or {}
        return cls(
            properties=tuple(
                PropertySchema.from_json_schema(name, p) for name, p in props.items()
            ),
            required=frozenset(schema.get('required') or ()),
        )

    @property
    def names(self) -> list[str]:
        return [p.name for p in self.properties]

    @property
    def required_names(self) -> list[str]:
        """Required names in declaration order; undeclared ones sorted at the end."""
        declared = [p.name for p in self.properties if p.name in self.required]
        return declared + sorted(self.required - set(declared))

    def is_required(self, name: str) -> bool:
        return name in self.required

    def get(self, name: str) -> Optional[PropertySchema]:
        for p in self.properties:
            if p.name == name:
                return p
        return None


# === DESCRIPTORS FOR EXTERNAL TOOL REGISTRIES ===

def describe_property(schema: InputSchema, prop: PropertySchema) -> dict[str, Any]:
    param: dict[str, Any] = {
        'name': prop.name,
        'type': prop.type,
        'description': prop.description,
        'required': schema.is_required(prop.name),
    }
    if prop.has_default:
        param['default'] = prop.default
    if prop.enum is not None:
        param['enum'] = list(prop.enum)
    if prop.items is not None:
        param['items'] = prop.items.to_dict()
    return param


def describe_tool(tool) -> dict[str, Any]:
    """
    Normalized description of a tool for a tool-calling registry.

    Returns:
        {'name', 'description', 'parameters': [{'name', 'type', 'description',
        'required', and when declared 'default', 'enum', 'items'}]}
    """
    schema = tool.input_schema
    return {
        'name': tool.name,
        'description': tool.description,
        'parameters': [describe_property(schema, p) for p in schema.properties],
    }


def _model_name(tool_name: str) -> str:
    words = [w for w in re.split(r'[^0-9a-zA-Z]+', tool_name) if w]
    name = ''.join(w[0].upper() + w[1:] for w in words) or 'Tool'
    return name if not name[0].isdigit() else f"Tool{name}"


def tool_model(tool, model_name: Optional[str] = None) -> type[BaseModel]:
    """Convert a tool's input schema to a pydantic model (docstring = description)."""
    schema = tool.input_schema
    fields = {}
    for prop in schema.properties:
        ptype = TYPE_MAP.get(prop.type, str)
        if prop.enum:
            ptype = Literal[prop.enum]
        elif prop.type == 'array' and prop.items is not None and not prop.items.properties:
            ptype = list[TYPE_MAP.get(prop.items.type, Any)]
        if schema.is_required(prop.name):
            fields[prop.name] = (ptype, Field(..., description=prop.description))
        elif prop.has_default:
            fields[prop.name] = (Optional[ptype], Field(prop.default, description=prop.description))
        else:
            fields[prop.name] = (Optional[ptype], Field(None, description=prop.description))

    model = create_model(model_name or _model_name(tool.name), **fields)
    model.__doc__ = tool.description or tool.name
    return model
