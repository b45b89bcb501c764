"""Resource loaders: where the fusion engine gets its raw JSON from."""

import copy
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Mapping, Optional, Union

import requests
from loguru import logger

from ..errors import UnavailableResource


class ResourceLoader(ABC):
    """
    Capability injected into the orchestrator to fetch raw resources.

    Subclasses implement ``_read`` and raise UnavailableResource for anything
    that is an expected per-resource failure (not found, bad status, broken
    JSON). ``fetch_json`` turns those into None so a single missing dataset
    never fails the load cycle. Any other exception propagates.

    Example:
        loader = FileResourceLoader("public/resources")
        municipalities = loader.fetch_json("geo/municipis.geojson")
    """

    def fetch_json(self, path: str) -> Optional[Any]:
        """Decoded JSON for ``path``, or None if the resource is unavailable."""
        try:
            data = self._read(path)
        except UnavailableResource as e:
            logger.error(f"❌ {e}")
            return None
        logger.debug(f"   📥 Loaded {path}")
        return data

    @abstractmethod
    def _read(self, path: str) -> Any:
        """Fetch and decode one resource."""

    def describe(self) -> str:
        return type(self).__name__


class FileResourceLoader(ResourceLoader):
    """Reads resources from a local directory tree."""

    def __init__(self, root: Union[str, Path]):
        """Initialize the loader.

        Args:
            root: Directory the relative resource paths are resolved against
        """
        self.root = Path(root)

    def _read(self, path: str) -> Any:
        full_path = self.root / path.lstrip("/")
        if not full_path.is_file():
            raise UnavailableResource(path, f"no such file under {self.root}")
        try:
            with open(full_path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise UnavailableResource(path, str(e)) from e

    def describe(self) -> str:
        return f"directory {self.root}"


class HttpResourceLoader(ResourceLoader):
    """Fetches resources over HTTP relative to a base URL."""

    def __init__(self, base_url: str, timeout: float = 30, session: Optional[requests.Session] = None):
        """Initialize the loader.

        Args:
            base_url: URL prefix of the resource store
            timeout: Per-request timeout in seconds
            session: Optional pre-configured requests session
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.headers = {"Accept": "application/json"}

    def resource_url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _read(self, path: str) -> Any:
        url = self.resource_url(path)
        try:
            response = self.session.get(url, headers=self.headers, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise UnavailableResource(path, f"request failed: {e}") from e

        if not response.ok:
            raise UnavailableResource(path, f"HTTP {response.status_code}")

        try:
            return response.json()
        except ValueError as e:
            raise UnavailableResource(path, f"invalid JSON: {e}") from e

    def describe(self) -> str:
        return f"HTTP {self.base_url}"


class StaticResourceLoader(ResourceLoader):
    """Serves resources from an in-memory mapping of path -> decoded JSON.

    A value that is an exception instance is raised when its path is read.
    """

    def __init__(self, resources: Mapping[str, Any]):
        self.resources = dict(resources)

    def _read(self, path: str) -> Any:
        if path not in self.resources:
            raise UnavailableResource(path, "not in fixture set")
        value = self.resources[path]
        if isinstance(value, BaseException):
            raise value
        return copy.deepcopy(value)

    def describe(self) -> str:
        return f"{len(self.resources)} in-memory resources"


def loader_from_config(config, resources_dir: Optional[Union[str, Path]] = None, base_url: Optional[str] = None) -> ResourceLoader:
    """Pick the loader for a run: explicit arguments first, then config.yaml.

    A base URL (argument or ``loader.base_url``) selects HTTP; otherwise the
    local resource directory is used.
    """
    if resources_dir is not None:
        return FileResourceLoader(resources_dir)

    base_url = base_url or config.get("loader.base_url")
    if base_url:
        return HttpResourceLoader(base_url, timeout=config.get("loader.timeout_seconds", 30))

    return FileResourceLoader(config.get_resources_dir())
