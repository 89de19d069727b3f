"""
Widget Scaffolder
=================
Deterministic templates for a pluggable widget project.  No LLM calls:
the output is plain scaffolding the packaging toolchain can build, and the
fix strategies can edit in place.

Generated layout (``<output_dir>`` is usually ``<work>/<name lower>``)::

    package.json
    tsconfig.json
    src/<Name>.xml
    src/<Name>.tsx
    src/<Name>.editorPreview.tsx
    src/package.xml
    src/ui/<Name>.css
"""

import json
import logging
from datetime import date
from pathlib import Path
from typing import Dict, List
from xml.sax.saxutils import escape, quoteattr

from widget_agent.errors import GenerationError
from widget_agent.widget_config import PropertyType, WidgetConfig, WidgetEvent, WidgetProperty

logger = logging.getLogger("widget_agent.scaffolder")

_INDENT = " " * 12

WIDGET_TOOLS_VERSION = "~10.21.2"
REACT_TYPES_VERSION = "~18.2.0"


class WidgetScaffolder:
    """Renders and writes the files of a widget project.

    Files that already exist are never overwritten, so edits made by the
    fix chain survive the next attempt's regeneration.
    """

    def render_project(self, config: WidgetConfig) -> Dict[str, str]:
        """Render every project file.

        Returns:
            Dict mapping path relative to the project root to content.
        """
        name = config.name
        return {
            "package.json": self._gen_package_json(config),
            "tsconfig.json": self._gen_tsconfig(),
            f"src/{name}.xml": self._gen_widget_xml(config),
            f"src/{name}.tsx": self._gen_component(config),
            f"src/{name}.editorPreview.tsx": self._gen_preview(config),
            "src/package.xml": self._gen_package_xml(config),
            f"src/ui/{name}.css": self._gen_styles(config),
        }

    def generate(self, config: WidgetConfig, output_dir: Path,
                 preserve_existing: bool = False) -> List[Path]:
        """Write the project under ``output_dir``.

        Args:
            config: Widget definition to render.
            output_dir: Project folder.
            preserve_existing: Leave files that already exist untouched, so
                repairs made between build attempts survive.

        Returns:
            Paths of the files written this call.

        Raises:
            GenerationError: If a file cannot be written.
        """
        output_dir = Path(output_dir)
        written = []
        try:
            for relative, content in self.render_project(config).items():
                path = output_dir / relative
                if preserve_existing and path.exists():
                    logger.debug("Keeping existing %s", path)
                    continue
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(content, encoding="utf-8")
                written.append(path)
        except OSError as e:
            raise GenerationError(f"Could not write widget files to {output_dir}: {e}") from e

        logger.info("Scaffolded %s (%d new files) in %s", config.name, len(written), output_dir)
        return written

    # --- Individual file generators ---

    @staticmethod
    def _gen_package_json(config: WidgetConfig) -> str:
        pkg = {
            "name": config.name_lower,
            "widgetName": config.name,
            "version": "1.0.0",
            "description": config.description,
            "copyright": f"© {date.today().year} {config.company}",
            "license": "MIT",
            "scripts": {
                "build": f"cross-env MPKOUTPUT={config.name}.mpk "
                         "pluggable-widgets-tools build:web",
                "dev": "pluggable-widgets-tools start:web",
            },
            "devDependencies": {
                "@mendix/pluggable-widgets-tools": WIDGET_TOOLS_VERSION,
                "@types/react": REACT_TYPES_VERSION,
                "cross-env": "^7.0.3",
            },
            "dependencies": {
                "classnames": "^2.3.2",
            },
            "overrides": {
                "react": "18.2.0",
                "react-dom": "18.2.0",
                "@types/react": REACT_TYPES_VERSION,
            },
        }
        return json.dumps(pkg, indent=2, ensure_ascii=False) + "\n"

    @staticmethod
    def _gen_tsconfig() -> str:
        tsconfig = {
            "compilerOptions": {
                "allowSyntheticDefaultImports": True,
                "esModuleInterop": True,
                "forceConsistentCasingInFileNames": True,
                "jsx": "react-jsx",
                "lib": ["ES2022", "DOM"],
                "module": "ES2022",
                "moduleResolution": "bundler",
                "noUnusedLocals": True,
                "noUnusedParameters": True,
                "outDir": "./dist",
                "resolveJsonModule": True,
                "skipLibCheck": True,
                "strict": True,
                "target": "ES2022",
            },
            "include": ["src/**/*"],
        }
        return json.dumps(tsconfig, indent=2) + "\n"

    def _gen_widget_xml(self, config: WidgetConfig) -> str:
        props_xml = "\n".join(self._property_xml(p) for p in config.properties)
        events_xml = "\n".join(self._event_xml(e) for e in config.events)

        return f"""<?xml version="1.0" encoding="utf-8"?>
<widget id="{config.widget_id}" pluginWidget="true" needsEntityContext="false"
        supportedPlatform="Web" offlineCapable="true"
        xmlns="http://www.mendix.com/widget/1.0/" xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance"
        xsi:schemaLocation="http://www.mendix.com/widget/1.0/ ../node_modules/mendix/custom_widget.xsd">
    <name>{escape(config.display_name)}</name>
    <description>{escape(config.description)}</description>
    <icon/>
    <properties>
        <propertyGroup caption="General">
{props_xml}
        </propertyGroup>
        <propertyGroup caption="Events">
{events_xml}
        </propertyGroup>
        <propertyGroup caption="Common">
            <systemProperty key="Name" />
            <systemProperty key="Visibility" />
        </propertyGroup>
    </properties>
</widget>
"""

    @staticmethod
    def _property_xml(prop: WidgetProperty) -> str:
        """One ``<property>`` element; extras depend on the property type."""
        attrs = [f'key="{prop.key}"', f'type="{prop.type.value}"']
        children = []
        required = f'required="{str(prop.required).lower()}"'

        if prop.type == PropertyType.STRING:
            attrs.append(required)
            if prop.default_value:
                attrs.append(f"defaultValue={quoteattr(prop.default_value)}")
        elif prop.type == PropertyType.BOOLEAN:
            value = (prop.default_value or "true").lower() != "false"
            attrs.append(f'defaultValue="{str(value).lower()}"')
        elif prop.type in (PropertyType.INTEGER, PropertyType.DECIMAL):
            attrs.append(f"defaultValue={quoteattr(prop.default_value or '0')}")
        elif prop.type == PropertyType.ENUMERATION:
            values = prop.enum_values or ("option1",)
            attrs.append(f"defaultValue={quoteattr(prop.default_value or values[0])}")
            children.append(f"{_INDENT}    <enumerationValues>")
            for value in values:
                children.append(
                    f'{_INDENT}        <enumerationValue key="{value}">'
                    f"{escape(value[:1].upper() + value[1:])}</enumerationValue>"
                )
            children.append(f"{_INDENT}    </enumerationValues>")
        elif prop.type == PropertyType.EXPRESSION:
            attrs.append(required)
            children.append(f'{_INDENT}    <returnType type="{prop.return_type or "String"}" />')
        elif prop.type == PropertyType.ATTRIBUTE:
            attrs.append(required)
            if prop.data_source:
                attrs.append(f'dataSource="{prop.data_source}"')
            children.append(f"{_INDENT}    <attributeTypes>")
            for kind in prop.attribute_types or ("String",):
                children.append(f'{_INDENT}        <attributeType name="{kind}" />')
            children.append(f"{_INDENT}    </attributeTypes>")
        elif prop.type == PropertyType.DATASOURCE:
            attrs.append('isList="true"')
            attrs.append(required)
        elif prop.type == PropertyType.WIDGETS:
            attrs.append(required)
            if prop.data_source:
                attrs.append(f'dataSource="{prop.data_source}"')
        else:
            attrs.append(required)

        lines = [
            f"{_INDENT}<property {' '.join(attrs)}>",
            f"{_INDENT}    <caption>{escape(prop.caption)}</caption>",
            f"{_INDENT}    <description>{escape(prop.description)}</description>",
            *children,
            f"{_INDENT}</property>",
        ]
        return "\n".join(lines)

    @staticmethod
    def _event_xml(event: WidgetEvent) -> str:
        return (
            f'{_INDENT}<property key="{event.key}" type="action" required="false">\n'
            f"{_INDENT}    <caption>{escape(event.caption)}</caption>\n"
            f"{_INDENT}    <description>{escape(event.description or 'Event handler')}</description>\n"
            f"{_INDENT}</property>"
        )

    @staticmethod
    def _gen_component(config: WidgetConfig) -> str:
        name = config.name
        return f"""import {{ ReactElement, createElement }} from "react";
import {{ {name}ContainerProps }} from "../typings/{name}Props";
import classNames from "classnames";

import "./ui/{name}.css";

export function {name}({{ class: className, name }}: {name}ContainerProps): ReactElement {{
    const rootClass = classNames("widget-{config.name_lower}", className);

    return (
        <div className={{rootClass}} data-testid={{name}}>
            <span>{name} Widget</span>
        </div>
    );
}}
"""

    @staticmethod
    def _gen_preview(config: WidgetConfig) -> str:
        name = config.name
        css_class = f"widget-{config.name_lower}-preview"
        return f"""import {{ ReactElement, createElement }} from "react";
import {{ {name}PreviewProps }} from "../typings/{name}Props";

export function preview(_props: {name}PreviewProps): ReactElement {{
    return <div className="{css_class}">{escape(config.display_name)}</div>;
}}

export function getPreviewCss(): string {{
    return `
.{css_class} {{
    padding: 8px 12px;
    background: #f5f5f5;
    border: 1px dashed #ccc;
    border-radius: 4px;
    font-size: 12px;
    color: #666;
}}
`;
}}
"""

    @staticmethod
    def _gen_styles(config: WidgetConfig) -> str:
        root = f"widget-{config.name_lower}"
        return f""".{root} {{
    /* Widget container styles */
}}

.{root}--loading {{
    opacity: 0.6;
}}

.{root}--error {{
    color: #e74c3c;
}}
"""

    @staticmethod
    def _gen_package_xml(config: WidgetConfig) -> str:
        return f"""<?xml version="1.0" encoding="utf-8"?>
<package xmlns="http://www.mendix.com/package/1.0/">
    <clientModule name="{config.name}" version="1.0.0" xmlns="http://www.mendix.com/clientModule/1.0/">
        <widgetFiles>
            <widgetFile path="{config.name}.xml" />
        </widgetFiles>
    </clientModule>
</package>
"""
