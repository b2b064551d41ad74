"""
Interfaces for pluggable collaborators.
"""

from __future__ import annotations

from typing import Optional, Protocol


class VersionLookup(Protocol):
    """Provide the latest published version of a package."""

    def latest_version(self, package_name: str) -> Optional[str]:
        ...
