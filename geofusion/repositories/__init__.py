"""Repository classes for raw resource access."""

from .resources import (
    FileResourceLoader,
    HttpResourceLoader,
    ResourceLoader,
    StaticResourceLoader,
    loader_from_config,
)

__all__ = [
    "ResourceLoader",
    "FileResourceLoader",
    "HttpResourceLoader",
    "StaticResourceLoader",
    "loader_from_config",
]
