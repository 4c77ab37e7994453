"""Platform registry."""

from typing import Callable, Dict

from kforge.errors import ConfigError
from kforge.platforms.base import Platform, PlatformMeta, PostApplyHook, post_apply_hook_of
from kforge.platforms.generic import GenericPlatform, ManagedPlatform

_PLATFORMS: Dict[str, Callable[[], Platform]] = {}


def register_platform(name: str, factory: Callable[[], Platform]) -> None:
    if name in _PLATFORMS:
        raise ValueError(f"platform with name '{name}' registered already")
    _PLATFORMS[name] = factory


def platform_names():
    return sorted(_PLATFORMS)


def get_platform(name: str) -> Platform:
    """Create a new instance of the named platform."""
    factory = _PLATFORMS.get(name)
    if factory is None:
        raise ConfigError(
            f"no platform with name '{name}' found. Available: {', '.join(platform_names())}"
        )
    return factory()


register_platform(GenericPlatform.name, GenericPlatform)
register_platform(ManagedPlatform.name, ManagedPlatform)

__all__ = [
    "GenericPlatform",
    "ManagedPlatform",
    "Platform",
    "PlatformMeta",
    "PostApplyHook",
    "get_platform",
    "platform_names",
    "post_apply_hook_of",
    "register_platform",
]
