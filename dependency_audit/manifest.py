"""
Declared dependencies from the project manifest.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .models import AnalysisWarning, DeclarationType, DeclaredDependency


logger = logging.getLogger(__name__)

# First bucket wins when a name is declared more than once.
DECLARATION_ORDER = (
    DeclarationType.PRODUCTION,
    DeclarationType.DEVELOPMENT,
    DeclarationType.PEER,
)


class ManifestError(RuntimeError):
    """The project manifest is absent or unusable."""

    def __init__(self, message: str, path: str) -> None:
        super().__init__(message)
        self.path = path


@dataclass
class Manifest:
    path: str
    name: Optional[str]
    version: Optional[str]
    declared: Dict[str, DeclaredDependency] = field(default_factory=dict)
    scripts: Dict[str, str] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict)
    warnings: List[AnalysisWarning] = field(default_factory=list)

    def get(self, name: str) -> Optional[DeclaredDependency]:
        return self.declared.get(name)

    def is_declared(self, name: str) -> bool:
        return name in self.declared

    def of_type(self, declaration_type: DeclarationType) -> List[DeclaredDependency]:
        return [dep for dep in self.declared.values() if dep.declaration_type == declaration_type]

    def all_dependencies(self) -> List[DeclaredDependency]:
        return list(self.declared.values())


def load_manifest(project_root: str) -> Manifest:
    """Load ``package.json`` from ``project_root``.

    Raises:
        ManifestError: when the file is missing, unreadable, not JSON or not
            a JSON object.
    """
    path = os.path.join(project_root, "package.json")
    if not os.path.isfile(path):
        raise ManifestError(f"package.json not found in {project_root}", path)
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except OSError as e:
        raise ManifestError(f"Cannot read {path}: {e}", path) from e
    except ValueError as e:
        raise ManifestError(f"Invalid JSON in {path}: {e}", path) from e
    if not isinstance(data, dict):
        raise ManifestError(f"{path} does not contain a JSON object", path)

    manifest = Manifest(
        path=path,
        name=data.get("name") if isinstance(data.get("name"), str) else None,
        version=data.get("version") if isinstance(data.get("version"), str) else None,
        raw=data,
    )
    scripts = data.get("scripts")
    if isinstance(scripts, dict):
        manifest.scripts = {k: v for k, v in scripts.items() if isinstance(v, str)}

    for declaration_type in DECLARATION_ORDER:
        bucket = data.get(declaration_type.manifest_key)
        if bucket is None:
            continue
        if not isinstance(bucket, dict):
            manifest.warnings.append(AnalysisWarning(
                "invalid-manifest",
                f"{declaration_type.manifest_key} is not an object",
                path,
            ))
            continue
        for name, version_range in bucket.items():
            existing = manifest.declared.get(name)
            if existing is not None:
                manifest.warnings.append(AnalysisWarning(
                    "duplicate-declaration",
                    f"{name} is declared in both {existing.declaration_type.manifest_key} "
                    f"and {declaration_type.manifest_key}",
                    path,
                ))
                continue
            manifest.declared[name] = DeclaredDependency(
                name=name,
                version_range=str(version_range),
                declaration_type=declaration_type,
            )

    for warning in manifest.warnings:
        logger.warning("%s: %s", warning.kind, warning.message)
    logger.info("Loaded %d declared dependencies from %s", len(manifest.declared), path)
    return manifest
