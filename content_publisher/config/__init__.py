"""Configuration module for Content Publisher"""

from content_publisher.config.settings import (
    DEFAULT_METADATA_FORMATS,
    LinkTemplates,
    MetadataFormat,
    MetadataRule,
    Settings,
    clear_settings_cache,
    get_settings,
    override_settings,
)

__all__ = [
    "DEFAULT_METADATA_FORMATS",
    "LinkTemplates",
    "MetadataFormat",
    "MetadataRule",
    "Settings",
    "get_settings",
    "clear_settings_cache",
    "override_settings",
]
