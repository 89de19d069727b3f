"""Tests for WidgetConfig, WidgetProperty and PropertyType parsing."""

import pytest

from widget_agent.errors import WidgetConfigError
from widget_agent.widget_config import (
    PropertyType,
    WidgetConfig,
    WidgetEvent,
    WidgetProperty,
)


class TestPropertyType:
    @pytest.mark.parametrize("value, expected", [
        ("string", PropertyType.STRING),
        ("textTemplate", PropertyType.TEXT_TEMPLATE),
        ("enum", PropertyType.ENUMERATION),
        ("Template-Text", PropertyType.TEXT_TEMPLATE),
        (PropertyType.ICON, PropertyType.ICON),
    ])
    def test_parse(self, value, expected):
        assert PropertyType.parse(value) is expected

    def test_unknown_type(self):
        with pytest.raises(WidgetConfigError):
            PropertyType.parse("spaceship")


class TestWidgetConfig:
    def test_defaults(self):
        config = WidgetConfig(name="Gauge")
        assert config.display_name == "Gauge"
        assert config.description == "A custom Gauge widget"
        assert config.widget_id == "mycompany.gauge.Gauge"
        assert config.name_lower == "gauge"

    def test_duplicate_keys_rejected(self):
        prop = WidgetProperty(key="value", type=PropertyType.STRING, caption="Value")
        with pytest.raises(WidgetConfigError):
            WidgetConfig(name="Gauge", properties=(prop, prop))

    def test_is_frozen(self, widget_config):
        with pytest.raises(AttributeError):
            widget_config.name = "Other"

    def test_with_target_copies(self, widget_config):
        bound = widget_config.with_target("/app")
        assert bound.target_project_path == "/app"
        assert widget_config.target_project_path is None
        assert bound.properties == widget_config.properties

    def test_dict_round_trip(self, widget_config):
        restored = WidgetConfig.from_dict(widget_config.to_dict())
        assert restored == widget_config


class TestFromDict:
    """Configs arrive flat from the CLI or nested from the form intake."""

    def test_nested_form(self):
        config = WidgetConfig.from_dict({
            "widget": {"name": "Rating", "displayName": "Star Rating", "category": "Input"},
            "properties": [
                {"key": "stars", "type": "integer", "defaultValue": 5},
                {"key": "mode", "type": "enumeration",
                 "enumValues": [{"key": "full", "caption": "Full"}, {"key": "half"}]},
            ],
            "events": [{"key": "onChange"}],
            "mendixProjectPath": "/projects/app",
        })
        assert config.display_name == "Star Rating"
        assert config.category == "Input"
        assert config.properties[0].default_value == "5"
        assert config.properties[0].caption == "stars"
        assert config.properties[1].enum_values == ("full", "half")
        assert config.events == (WidgetEvent(key="onChange", caption="onChange"),)
        assert config.target_project_path == "/projects/app"

    def test_flat_form(self):
        config = WidgetConfig.from_dict({
            "name": "Badge",
            "properties": [{"key": "color", "type": "text", "enum_values": ["red"]}],
        })
        assert config.properties[0].type == PropertyType.STRING
        assert config.properties[0].enum_values == ("red",)

    def test_missing_name(self):
        with pytest.raises(WidgetConfigError):
            WidgetConfig.from_dict({"widget": {}})
