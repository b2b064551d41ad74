"""
npm registry lookups.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

import requests

from .interfaces import VersionLookup


logger = logging.getLogger(__name__)

DEFAULT_REGISTRY_URL = "https://registry.npmjs.org"
ABBREVIATED_METADATA = "application/vnd.npm.install-v1+json"


class LookupFailed(RuntimeError):
    """Raised when the registry cannot answer a lookup."""


@dataclass
class RegistryCache:
    """Per-run in-memory cache for registry operations."""

    latest_cache: Dict[str, Optional[str]] = field(default_factory=dict)
    session: requests.Session = field(default_factory=requests.Session)


class NpmRegistryLookup(VersionLookup):
    """Latest-version lookup against an npm-compatible registry."""

    def __init__(
        self,
        registry_url: str = DEFAULT_REGISTRY_URL,
        cache: Optional[RegistryCache] = None,
        timeout: float = 10,
    ) -> None:
        self.registry_url = registry_url.rstrip("/")
        self.cache = cache or RegistryCache()
        self.timeout = timeout

    def package_url(self, package_name: str) -> str:
        return f"{self.registry_url}/{package_name.replace('/', '%2F')}"

    def fetch_package_metadata(self, package_name: str) -> Dict:
        url = self.package_url(package_name)
        logger.debug("Fetching metadata for %s", package_name)
        try:
            with self.cache.session.get(
                url,
                headers={"Accept": ABBREVIATED_METADATA},
                timeout=self.timeout,
            ) as response:
                response.raise_for_status()
                return response.json()
        except requests.RequestException as e:
            raise LookupFailed(f"Registry lookup failed for {package_name}: {e}") from e
        except ValueError as e:
            raise LookupFailed(f"Registry returned invalid JSON for {package_name}") from e

    def latest_version(self, package_name: str) -> Optional[str]:
        if package_name in self.cache.latest_cache:
            logger.debug("Cache hit: latest %s", package_name)
            return self.cache.latest_cache[package_name]

        metadata = self.fetch_package_metadata(package_name)
        latest = (metadata.get("dist-tags") or {}).get("latest")
        self.cache.latest_cache[package_name] = latest
        return latest
