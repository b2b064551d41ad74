"""
Installed package tree under ``node_modules``.
"""

from __future__ import annotations

import json
import logging
import os
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from .models import AnalysisWarning, InstalledPackage, PeerRequirement
from .npm_semver import npm_semver_key


logger = logging.getLogger(__name__)


def version_sort_key(version: str) -> tuple:
    """Semver order, with unparseable versions last."""
    key = npm_semver_key(version)
    return (key is None, key or (), version)


def _dict_of(data: Dict, key: str) -> Dict:
    value = data.get(key)
    return dict(value) if isinstance(value, dict) else {}


@dataclass
class InstalledRegistry:
    """Index over every installed package record."""

    root: str
    present: bool = False
    packages: List[InstalledPackage] = field(default_factory=list)
    warnings: List[AnalysisWarning] = field(default_factory=list)
    by_name: Dict[str, List[InstalledPackage]] = field(default_factory=dict)
    by_location: Dict[str, InstalledPackage] = field(default_factory=dict)

    def add(self, package: InstalledPackage) -> None:
        self.packages.append(package)
        self.by_name.setdefault(package.name, []).append(package)
        self.by_location[os.path.normpath(package.location)] = package

    def has(self, name: str) -> bool:
        return name in self.by_name

    def versions(self, name: str) -> List[str]:
        found = {package.version for package in self.by_name.get(name, [])}
        return sorted(found, key=version_sort_key)

    def primary(self, name: str) -> Optional[InstalledPackage]:
        """Shallowest install of ``name``."""
        candidates = self.by_name.get(name)
        if not candidates:
            return None
        return min(candidates, key=lambda package: (package.depth, package.location))

    def resolve_from(self, name: str, location: str) -> Optional[InstalledPackage]:
        """Install of ``name`` that Node would load from ``location``."""
        directory = os.path.normpath(location)
        while True:
            candidate = os.path.join(directory, "node_modules", name)
            if candidate in self.by_location:
                return self.by_location[candidate]
            parent = os.path.dirname(directory)
            if parent == directory:
                break
            directory = parent
        return self.primary(name)

    def provider_chain(self, name: str, declared: Iterable[str]) -> List[str]:
        """Declared package chain through which ``name`` gets installed."""
        queue = deque()
        parents: Dict[str, Optional[str]] = {}
        for root_name in sorted(declared):
            if root_name in self.by_name and root_name not in parents:
                parents[root_name] = None
                queue.append(root_name)

        while queue:
            current = queue.popleft()
            if current == name:
                chain = []
                node: Optional[str] = current
                while node is not None:
                    chain.append(node)
                    node = parents[node]
                return list(reversed(chain))
            package = self.primary(current)
            if package is None:
                continue
            for dependency in sorted(package.dependencies):
                if dependency not in parents and dependency in self.by_name:
                    parents[dependency] = current
                    queue.append(dependency)
        return []

    def peer_requirements(self) -> List[PeerRequirement]:
        requirements = []
        for package in self.packages:
            for peer_name, required_range in sorted(package.peer_dependencies.items()):
                meta = package.peer_dependencies_meta.get(peer_name) or {}
                requirements.append(PeerRequirement(
                    requiring_package=package.name,
                    requiring_version=package.version,
                    requiring_location=package.location,
                    peer_name=peer_name,
                    required_range=str(required_range),
                    optional=bool(meta.get("optional", False)) if isinstance(meta, dict) else False,
                ))
        return requirements


def _package_dirs(node_modules: str, warnings: List[AnalysisWarning]) -> List[str]:
    try:
        with os.scandir(node_modules) as iterator:
            entries = sorted(iterator, key=lambda entry: entry.name)
    except OSError as e:
        warnings.append(AnalysisWarning("permission-denied", f"Cannot list {node_modules}: {e}", node_modules))
        return []

    dirs = []
    for entry in entries:
        if entry.name.startswith("."):
            continue
        if entry.name.startswith("@"):
            try:
                with os.scandir(entry.path) as scoped:
                    dirs.extend(
                        sub.path for sub in sorted(scoped, key=lambda e: e.name)
                        if not sub.name.startswith(".") and sub.is_dir()
                    )
            except OSError as e:
                warnings.append(AnalysisWarning("permission-denied", f"Cannot list {entry.path}: {e}", entry.path))
            continue
        if entry.is_dir():
            dirs.append(entry.path)
    return dirs


def _read_package(path: str, warnings: List[AnalysisWarning]) -> Optional[Dict]:
    manifest_path = os.path.join(path, "package.json")
    if not os.path.isfile(manifest_path):
        return None
    try:
        with open(manifest_path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (OSError, ValueError) as e:
        warnings.append(AnalysisWarning(
            "invalid-installed-manifest", f"Cannot load {manifest_path}: {e}", manifest_path
        ))
        return None
    if not isinstance(data, dict):
        warnings.append(AnalysisWarning(
            "invalid-installed-manifest", f"{manifest_path} is not an object", manifest_path
        ))
        return None
    return data


def load_installed(project_root: str, max_depth: int = 5) -> InstalledRegistry:
    """Walk ``node_modules`` and load every package manifest.

    Nested ``node_modules`` directories are followed up to ``max_depth``
    levels. A (name, real path) pair is loaded once, so symlinked workspaces
    cannot loop.
    """
    root = os.path.abspath(project_root)
    registry = InstalledRegistry(root=root)
    top = os.path.join(root, "node_modules")
    if not os.path.isdir(top):
        logger.info("No node_modules directory under %s", root)
        return registry
    registry.present = True

    visited = set()
    queue: deque = deque([(top, 0)])
    while queue:
        node_modules, depth = queue.popleft()
        for package_dir in _package_dirs(node_modules, registry.warnings):
            data = _read_package(package_dir, registry.warnings)
            if data is None:
                continue
            relative_name = os.path.relpath(package_dir, node_modules).replace(os.sep, "/")
            name = data.get("name") if isinstance(data.get("name"), str) else relative_name
            key = (name, os.path.realpath(package_dir))
            if key in visited:
                continue
            visited.add(key)

            registry.add(InstalledPackage(
                name=name,
                version=str(data.get("version", "0.0.0")),
                location=os.path.normpath(package_dir),
                depth=depth,
                dependencies=_dict_of(data, "dependencies"),
                peer_dependencies=_dict_of(data, "peerDependencies"),
                peer_dependencies_meta=_dict_of(data, "peerDependenciesMeta"),
            ))

            nested = os.path.join(package_dir, "node_modules")
            if os.path.isdir(nested):
                if depth + 1 <= max_depth:
                    queue.append((nested, depth + 1))
                else:
                    logger.debug("Not descending into %s beyond depth %d", nested, max_depth)

    for warning in registry.warnings:
        logger.warning("%s: %s", warning.kind, warning.message)
    logger.info("Loaded %d installed packages", len(registry.packages))
    return registry
