"""
Widget Configuration
====================
The unit of work handed to the build loop: a declarative description of a
pluggable widget (name, typed properties, events).

Configs are frozen dataclasses.  The build loop receives them by value and
never mutates them; a deploy target is applied with
:func:`dataclasses.replace`.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from widget_agent.errors import WidgetConfigError


class PropertyType(Enum):
    """Property kinds supported by the widget definition XML."""
    STRING = "string"
    BOOLEAN = "boolean"
    INTEGER = "integer"
    DECIMAL = "decimal"
    ENUMERATION = "enumeration"
    TEXT_TEMPLATE = "textTemplate"
    EXPRESSION = "expression"
    ACTION = "action"
    ATTRIBUTE = "attribute"
    DATASOURCE = "datasource"
    WIDGETS = "widgets"
    IMAGE = "image"
    ICON = "icon"
    ASSOCIATION = "association"
    OBJECT = "object"

    @classmethod
    def parse(cls, value: Any) -> "PropertyType":
        """Accept an enum member, its value, or a loose alias."""
        if isinstance(value, cls):
            return value
        text = str(value).strip()
        aliases = {
            "text": cls.STRING,
            "enum": cls.ENUMERATION,
            "template-text": cls.TEXT_TEMPLATE,
            "texttemplate": cls.TEXT_TEMPLATE,
            "list-datasource": cls.DATASOURCE,
            "child-widgets": cls.WIDGETS,
            "nested-object": cls.OBJECT,
        }
        if text.lower() in aliases:
            return aliases[text.lower()]
        try:
            return cls(text)
        except ValueError:
            raise WidgetConfigError(f"Unknown property type: {value!r}") from None


@dataclass(frozen=True)
class WidgetProperty:
    """A single configurable widget property.

    Attributes:
        key: Property key, unique within a config.
        type: One of :class:`PropertyType`.
        caption: Label shown in the modeler.
        description: Help text.
        required: Whether the property must be set.
        default_value: Default value as a string (optional).
        enum_values: Keys for ``enumeration`` properties.
        attribute_types: Allowed attribute kinds for ``attribute`` properties.
        return_type: Return type for ``expression`` properties.
        data_source: Datasource key for ``widgets``/``attribute`` properties
            bound to a list.
    """

    key: str
    type: PropertyType
    caption: str
    description: str = ""
    required: bool = False
    default_value: Optional[str] = None
    enum_values: Tuple[str, ...] = ()
    attribute_types: Tuple[str, ...] = ()
    return_type: Optional[str] = None
    data_source: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WidgetProperty":
        enum_values = data.get("enum_values", data.get("enumValues")) or ()
        # The form intake emits {"key", "caption"} pairs, the CLI emits bare keys
        enum_keys = tuple(
            v["key"] if isinstance(v, dict) else str(v) for v in enum_values
        )
        default = data.get("default_value", data.get("defaultValue"))
        return cls(
            key=data["key"],
            type=PropertyType.parse(data.get("type", "string")),
            caption=data.get("caption") or data["key"],
            description=data.get("description") or "",
            required=bool(data.get("required", False)),
            default_value=None if default is None else str(default),
            enum_values=enum_keys,
            attribute_types=tuple(
                data.get("attribute_types", data.get("attributeTypes")) or ()
            ),
            return_type=data.get("return_type", data.get("returnType")),
            data_source=data.get("data_source", data.get("dataSource")),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "key": self.key,
            "type": self.type.value,
            "caption": self.caption,
            "description": self.description,
            "required": self.required,
        }
        if self.default_value is not None:
            data["defaultValue"] = self.default_value
        if self.enum_values:
            data["enumValues"] = list(self.enum_values)
        if self.attribute_types:
            data["attributeTypes"] = list(self.attribute_types)
        if self.return_type:
            data["returnType"] = self.return_type
        if self.data_source:
            data["dataSource"] = self.data_source
        return data


@dataclass(frozen=True)
class WidgetEvent:
    """An action property exposed as a widget event."""

    key: str
    caption: str
    description: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WidgetEvent":
        return cls(
            key=data["key"],
            caption=data.get("caption") or data["key"],
            description=data.get("description") or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "caption": self.caption,
            "description": self.description,
        }


@dataclass(frozen=True)
class WidgetConfig:
    """Declarative description of a widget to generate.

    Attributes:
        name: PascalCase widget name (also the component name).
        display_name: Name shown in the toolbox (defaults to ``name``).
        description: Widget description.
        category: Toolbox category.
        company: Organisation prefix used in the widget id.
        properties: Configurable properties.
        events: Action properties exposed as events.
        target_project_path: Resolved project folder to deploy into.
    """

    name: str
    display_name: str = ""
    description: str = ""
    category: str = "Display"
    company: str = "mycompany"
    properties: Tuple[WidgetProperty, ...] = ()
    events: Tuple[WidgetEvent, ...] = ()
    target_project_path: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.display_name:
            object.__setattr__(self, "display_name", self.name)
        if not self.description:
            object.__setattr__(
                self, "description", f"A custom {self.display_name} widget"
            )
        object.__setattr__(self, "properties", tuple(self.properties))
        object.__setattr__(self, "events", tuple(self.events))

        seen = set()
        for prop in self.properties:
            if prop.key in seen:
                raise WidgetConfigError(
                    f"Duplicate property key '{prop.key}' in widget '{self.name}'"
                )
            seen.add(prop.key)

    @property
    def name_lower(self) -> str:
        return self.name.lower()

    @property
    def widget_id(self) -> str:
        return f"{self.company}.{self.name_lower}.{self.name}"

    def with_target(self, target_project_path: Optional[str]) -> "WidgetConfig":
        """Return a copy bound to a deploy target."""
        return replace(self, target_project_path=target_project_path)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WidgetConfig":
        """Build a config from the flat or the nested ``{"widget": ...}`` form."""
        widget = data.get("widget", data)
        if not widget.get("name"):
            raise WidgetConfigError("Widget config requires a name")
        return cls(
            name=widget["name"],
            display_name=widget.get("display_name", widget.get("displayName")) or "",
            description=widget.get("description") or "",
            category=widget.get("category") or "Display",
            company=widget.get("company") or "mycompany",
            properties=tuple(
                WidgetProperty.from_dict(p) for p in data.get("properties", [])
            ),
            events=tuple(WidgetEvent.from_dict(e) for e in data.get("events", [])),
            target_project_path=data.get(
                "target_project_path",
                data.get("mendixProjectPath", widget.get("mendixProjectPath")),
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialise to the nested form written next to the generated widget."""
        return {
            "widget": {
                "name": self.name,
                "displayName": self.display_name,
                "description": self.description,
                "category": self.category,
                "company": self.company,
            },
            "properties": [p.to_dict() for p in self.properties],
            "events": [e.to_dict() for e in self.events],
            "mendixProjectPath": self.target_project_path,
        }
