"""Component registry."""

from typing import Dict, Type

from kforge.components.base import Component, ComponentMetadata
from kforge.components.helm_chart import HelmChartComponent
from kforge.config import ComponentConfig
from kforge.errors import ConfigError

DEFAULT_TYPE = HelmChartComponent.type_name

COMPONENT_TYPES: Dict[str, Type[Component]] = {
    HelmChartComponent.type_name: HelmChartComponent,
}


def get_component(config: ComponentConfig) -> Component:
    """Create the component described by a configuration entry, with its config loaded."""
    type_name = config.get("type", DEFAULT_TYPE)
    component_cls = COMPONENT_TYPES.get(type_name)
    if component_cls is None:
        raise ConfigError(
            f"component '{config.name}': unknown type '{type_name}'. "
            f"Available: {', '.join(sorted(COMPONENT_TYPES))}"
        )

    component = component_cls(config.name)
    component.load_config({k: v for k, v in config.data.items() if k != "type"})
    return component


__all__ = ["Component", "ComponentMetadata", "HelmChartComponent", "get_component"]
