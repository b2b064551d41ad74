"""
Core dependency analyzer: runs the whole pipeline for one project.
"""

from __future__ import annotations

import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from tqdm import tqdm

from .classifier import DependencyClassifier, categorize_dependencies
from .config import AnalysisOptions, load_resolver_config
from .extractor import ImportExtractor
from .graph import ImportGraph, cycle_severity
from .installed import load_installed
from .interfaces import VersionLookup
from .manifest import Manifest, load_manifest
from .models import (
    AnalysisReport,
    AnalysisWarning,
    DeclaredDependency,
    DependencyIssue,
    ExternalModule,
    ImportKind,
    ImportReference,
    IssueKind,
    OutdatedDependency,
    SourceFile,
    Usage,
)
from .npm_semver import InvalidRange, InvalidVersion, min_version, parse_range, parse_version, update_type
from .path_resolver import PathResolver, is_builtin
from .peers import PeerResolver
from .registry import LookupFailed, NpmRegistryLookup
from .scanner import language_of, scan_project


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileResult:
    """Per-file output of a worker."""

    source: SourceFile
    warnings: Tuple[AnalysisWarning, ...] = ()


def health_score(unused: int, missing: int, peer_conflicts: int, cycles: int) -> Dict[str, Any]:
    """Score the dependency health of a project from 0 to 100."""
    score = 100
    issues = []
    if unused:
        score -= min(30, unused * 2)
        issues.append(f"Remove {unused} unused dependencies")
    if missing:
        score -= min(25, missing * 3)
        issues.append(f"Add {missing} missing dependencies")
    if peer_conflicts:
        score -= min(20, peer_conflicts * 5)
        issues.append(f"Resolve {peer_conflicts} peer dependency conflicts")
    if cycles:
        score -= min(10, cycles * 5)
        issues.append(f"Break {cycles} circular import chains")
    return {"score": max(0, score), "issues": issues}


def generate_recommendations(
    issues: Dict[IssueKind, List[DependencyIssue]],
    outdated: List[OutdatedDependency],
) -> Dict[str, List[Dict[str, Any]]]:
    """Project-level recommendations grouped by priority."""
    recommendations: List[Dict[str, Any]] = []

    missing = issues.get(IssueKind.MISSING, [])
    if missing:
        recommendations.append({
            "priority": "high",
            "type": "errors",
            "title": "Install Missing Dependencies",
            "description": f"Found {len(missing)} missing dependencies that will cause runtime errors",
            "action": "Install missing packages",
            "packages": [issue.name for issue in missing],
        })

    unused = issues.get(IssueKind.UNUSED, [])
    if unused:
        recommendations.append({
            "priority": "medium",
            "type": "cleanup",
            "title": "Remove Unused Dependencies",
            "description": f"Found {len(unused)} unused dependencies",
            "action": "Remove unused packages to reduce install size",
            "packages": [issue.name for issue in unused],
        })

    if outdated:
        recommendations.append({
            "priority": "medium",
            "type": "updates",
            "title": "Update Outdated Packages",
            "description": f"Found {len(outdated)} outdated packages",
            "action": "Update to latest versions for new features and bug fixes",
            "packages": [entry.name for entry in outdated],
        })

    duplicates = issues.get(IssueKind.DUPLICATE, [])
    if duplicates:
        recommendations.append({
            "priority": "low",
            "type": "optimization",
            "title": "Consolidate Duplicate Dependencies",
            "description": f"Found {len(duplicates)} sets of functionally duplicate packages",
            "action": "Consider consolidating to reduce maintenance overhead",
            "packages": [
                package["name"]
                for issue in duplicates
                for package in issue.details.get("packages", [])
            ],
        })

    return {
        priority: [entry for entry in recommendations if entry["priority"] == priority]
        for priority in ("high", "medium", "low")
    }


class DependencyAnalyzer:
    """Analyze declared, imported and installed dependencies of a project."""

    def __init__(
        self,
        project_root: str,
        options: Optional[AnalysisOptions] = None,
        version_lookup: Optional[VersionLookup] = None,
    ):
        """Initialize dependency analyzer.

        Args:
            project_root: Directory containing ``package.json``
            options: Analysis options (defaults when omitted)
            version_lookup: Source of latest versions for the outdated check;
                the npm registry is used when omitted
        """
        self.project_root = os.path.abspath(project_root)
        self.options = options or AnalysisOptions()
        self.version_lookup = version_lookup
        self.extractor = ImportExtractor()

    def _relative(self, path: str) -> str:
        return os.path.relpath(path, self.project_root).replace(os.sep, "/")

    def _max_workers(self) -> int:
        if self.options.max_workers:
            return self.options.max_workers
        return min(32, (os.cpu_count() or 1) + 4)

    def process_file(self, path: str, resolver: PathResolver) -> FileResult:
        """Read, extract and resolve one file.

        Args:
            path: Absolute path of the source file
            resolver: Resolver bound to the run's configuration

        Returns:
            FileResult with resolved references and per-file warnings
        """
        language = language_of(path)
        try:
            with open(path, "r", encoding="utf-8", errors="replace") as handle:
                content = handle.read()
        except OSError as e:
            logger.warning("Cannot read %s: %s", path, e)
            return FileResult(
                SourceFile(path=path, language=language),
                (AnalysisWarning("unreadable-file", f"Cannot read file: {e}", self._relative(path)),),
            )

        result = self.extractor.extract(content, path, language)
        warnings: List[AnalysisWarning] = []
        if result.degraded:
            logger.warning("Degraded extraction for %s", path)
            warnings.append(AnalysisWarning(
                "degraded-extraction",
                "Syntax errors prevented structural parsing; used pattern extraction",
                self._relative(path),
            ))

        resolved: List[ImportReference] = []
        for reference in result.references:
            try:
                target = resolver.resolve(
                    reference.specifier,
                    path,
                    stylesheet=reference.kind is ImportKind.STYLESHEET_IMPORT,
                )
            except Exception as e:
                logger.warning("Cannot resolve %r in %s: %s", reference.specifier, path, e)
                warnings.append(AnalysisWarning(
                    "resolution-failed",
                    f"Cannot resolve {reference.specifier!r} (line {reference.line}): {e}",
                    self._relative(path),
                ))
                resolved.append(reference)
                continue
            resolved.append(replace(reference, resolved=target))
        references = tuple(resolved)
        logger.debug("%s: %d references (%s)", path, len(references), result.strategy.value)
        return FileResult(
            SourceFile(path=path, language=language, references=references, strategy=result.strategy),
            tuple(warnings),
        )

    def _collect_usages(
        self, sources: List[SourceFile]
    ) -> Tuple[Dict[str, List[Usage]], bool]:
        usages: Dict[str, List[Usage]] = {}
        builtin_imported = False
        for source in sources:
            for reference in source.references:
                target = reference.resolved
                if not isinstance(target, ExternalModule):
                    continue
                if target.builtin:
                    builtin_imported = builtin_imported or is_builtin(target.name)
                    continue
                usages.setdefault(target.name, []).append(
                    Usage(self._relative(reference.file), reference.line, reference.kind)
                )
        return usages, builtin_imported

    def _cycle_issues(self, graph: ImportGraph, cycles: List[List[str]]) -> List[DependencyIssue]:
        issues = []
        for cycle in cycles:
            relative = [self._relative(path) for path in cycle]
            issues.append(DependencyIssue(
                kind=IssueKind.CIRCULAR_IMPORT,
                name=" -> ".join(relative + [relative[0]]),
                severity=cycle_severity(len(cycle)),
                cycle=tuple(relative),
                remediation="Extract the shared code into a module both sides can import",
                details={
                    "length": len(cycle),
                    "entry_points": [self._relative(path) for path in graph.entry_points(cycle)],
                },
            ))
        return issues

    def check_outdated(
        self, declared: List[DeclaredDependency]
    ) -> Tuple[List[OutdatedDependency], List[AnalysisWarning]]:
        """Compare declared ranges against the latest published versions."""
        lookup = self.version_lookup or NpmRegistryLookup(
            self.options.registry_url, timeout=self.options.lookup_timeout
        )
        candidates = []
        for dep in declared:
            try:
                candidates.append((dep, parse_range(dep.version_range)))
            except InvalidRange:
                logger.debug("Skipping outdated check for %s (%s)", dep.name, dep.version_range)

        outdated: List[OutdatedDependency] = []
        warnings: List[AnalysisWarning] = []
        if not candidates:
            return outdated, warnings

        with ThreadPoolExecutor(max_workers=min(8, len(candidates))) as executor:
            future_to_dep = {
                executor.submit(lookup.latest_version, dep.name): (dep, version_range)
                for dep, version_range in candidates
            }
            for future in as_completed(future_to_dep):
                dep, version_range = future_to_dep[future]
                try:
                    latest = future.result()
                except LookupFailed as e:
                    logger.warning("Version lookup failed for %s: %s", dep.name, e)
                    warnings.append(AnalysisWarning("lookup-failed", str(e)))
                    continue
                if not latest:
                    continue
                try:
                    latest_version = parse_version(latest)
                except InvalidVersion:
                    continue
                current = min_version(version_range)
                if current is None or version_range.test(latest_version) or latest_version < current:
                    continue
                outdated.append(OutdatedDependency(
                    name=dep.name,
                    current=dep.version_range,
                    latest=latest,
                    update_type=update_type(current, latest_version),
                    declaration_type=dep.declaration_type,
                ))

        outdated.sort(key=lambda entry: entry.name)
        return outdated, warnings

    def analyze(self) -> AnalysisReport:
        """Run complete analysis.

        Returns:
            AnalysisReport with issues, graph, peer analysis and metadata

        Raises:
            ManifestError: if ``package.json`` is missing or invalid
        """
        started = time.monotonic()
        analyzed_at = datetime.now(timezone.utc).isoformat()
        logger.info("Analyzing %s", self.project_root)

        manifest: Manifest = load_manifest(self.project_root)
        warnings: List[AnalysisWarning] = list(manifest.warnings)

        config, config_warnings = load_resolver_config(self.project_root, self.options)
        warnings.extend(config_warnings)

        scan = scan_project(
            self.project_root,
            exclude_patterns=self.options.exclude_patterns,
            max_depth=self.options.max_scan_depth,
        )
        warnings.extend(scan.warnings)

        resolver = PathResolver(config)
        results: List[Optional[FileResult]] = [None] * len(scan.files)
        with ThreadPoolExecutor(max_workers=self._max_workers()) as executor:
            installed_future = executor.submit(
                load_installed, self.project_root, self.options.max_traversal_depth
            )
            future_to_index = {
                executor.submit(self.process_file, path, resolver): index
                for index, path in enumerate(scan.files)
            }
            for future in tqdm(
                as_completed(future_to_index),
                total=len(future_to_index),
                desc="Extracting imports",
                unit="file",
                disable=not self.options.show_progress,
            ):
                results[future_to_index[future]] = future.result()
            installed = installed_future.result()
        warnings.extend(installed.warnings)

        # Aggregate in scan order so output never depends on completion order.
        sources: List[SourceFile] = []
        for result in results:
            sources.append(result.source)
            warnings.extend(result.warnings)

        usages, builtin_imported = self._collect_usages(sources)
        classification = DependencyClassifier(
            manifest, installed, self.options, self.project_root
        ).classify(usages, builtin_imported)
        warnings.extend(classification.warnings)

        graph = ImportGraph.from_sources(sources)
        cycles = graph.find_cycles()

        issues: Dict[IssueKind, List[DependencyIssue]] = {kind: [] for kind in IssueKind}
        issues.update(classification.issues)
        issues[IssueKind.CIRCULAR_IMPORT] = self._cycle_issues(graph, cycles)

        peer_analysis = None
        if self.options.check_peer_dependencies and installed.present:
            peers = PeerResolver(installed).analyze()
            issues[IssueKind.PEER_CONFLICT] = list(peers.conflicts)
            issues[IssueKind.PEER_MISSING] = list(peers.missing)
            warnings.extend(peers.warnings)
            peer_analysis = peers.to_dict()

        outdated: List[OutdatedDependency] = []
        if self.options.check_outdated:
            in_scope = [
                dep for dep in manifest.all_dependencies()
                if self.options.declaration_in_scope(dep.declaration_type.value)
            ]
            outdated, lookup_warnings = self.check_outdated(in_scope)
            warnings.extend(lookup_warnings)

        health = health_score(
            unused=len(issues[IssueKind.UNUSED]),
            missing=len(issues[IssueKind.MISSING]),
            peer_conflicts=len(issues[IssueKind.PEER_CONFLICT]),
            cycles=len(cycles),
        )

        degraded = sum(1 for warning in warnings if warning.kind == "degraded-extraction")
        metadata = {
            "analyzed_at": analyzed_at,
            "duration_seconds": round(time.monotonic() - started, 3),
            "scope": self.options.scope,
            "files_analyzed": len(sources),
            "degraded_files": degraded,
            "project_name": manifest.name,
            "node_modules_present": installed.present,
            "used": sorted(classification.used),
        }

        report = AnalysisReport(
            project_root=self.project_root,
            issues=issues,
            graph=graph.to_dict(self.project_root),
            cycles=[[self._relative(path) for path in cycle] for cycle in cycles],
            peer_analysis=peer_analysis,
            declared=manifest.all_dependencies(),
            outdated=outdated,
            health=health,
            metadata=metadata,
            warnings=warnings,
            categories=categorize_dependencies(manifest.all_dependencies()),
            recommendations=generate_recommendations(issues, outdated),
        )
        logger.info(
            "Analysis finished in %.2fs: %d files, health score %d",
            metadata["duration_seconds"], len(sources), health["score"],
        )
        return report


def analyze_project(
    project_root: str,
    options: Optional[AnalysisOptions] = None,
    version_lookup: Optional[VersionLookup] = None,
) -> AnalysisReport:
    return DependencyAnalyzer(project_root, options, version_lookup).analyze()
