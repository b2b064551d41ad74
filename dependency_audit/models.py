"""
Core data models for dependency analysis.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union


class LanguageKind(str, Enum):
    """Kind of source file, which decides the extraction path."""

    SCRIPT = "script"
    MARKUP = "markup"
    STYLESHEET = "stylesheet"


class ImportKind(str, Enum):
    """How a module specifier was referenced."""

    STATIC_IMPORT = "static-import"
    DYNAMIC_IMPORT = "dynamic-import"
    RE_EXPORT = "re-export"
    REQUIRE_CALL = "require-call"
    REQUIRE_RESOLVE = "require-resolve"
    STYLESHEET_IMPORT = "stylesheet-import"


class ExtractionStrategy(str, Enum):
    """Strategy that produced the references of a file."""

    STRUCTURAL = "structural"
    PATTERN = "pattern"


class DeclarationType(str, Enum):
    """Manifest bucket a dependency is declared in."""

    PRODUCTION = "production"
    DEVELOPMENT = "development"
    PEER = "peer"

    @property
    def manifest_key(self) -> str:
        return {
            DeclarationType.PRODUCTION: "dependencies",
            DeclarationType.DEVELOPMENT: "devDependencies",
            DeclarationType.PEER: "peerDependencies",
        }[self]


class IssueKind(str, Enum):
    """Kinds of problems reported by the analysis."""

    UNUSED = "unused"
    MISSING = "missing"
    PHANTOM = "phantom"
    MISPLACED = "misplaced"
    DUPLICATE = "duplicate"
    CIRCULAR_IMPORT = "circular-import"
    PEER_CONFLICT = "peer-conflict"
    PEER_MISSING = "peer-missing"


@dataclass(frozen=True)
class ExternalModule:
    """A package identity; ``builtin`` marks runtime modules and URLs."""

    name: str
    builtin: bool = False


@dataclass(frozen=True)
class LocalModule:
    """A file identity inside the project, by absolute normalized path."""

    path: str


ModuleIdentity = Union[ExternalModule, LocalModule]


@dataclass(frozen=True)
class ImportReference:
    """A raw module specifier found in a source file."""

    specifier: str
    kind: ImportKind
    file: str
    line: int
    resolved: Optional[ModuleIdentity] = None


@dataclass(frozen=True)
class SourceFile:
    """A scanned file with its extracted references."""

    path: str
    language: LanguageKind
    references: Tuple[ImportReference, ...] = ()
    strategy: ExtractionStrategy = ExtractionStrategy.STRUCTURAL


@dataclass(frozen=True)
class Usage:
    """One call site of a module, relative to the project root."""

    file: str
    line: int
    kind: ImportKind

    def to_dict(self) -> Dict[str, Any]:
        return {"file": self.file, "line": self.line, "type": self.kind.value}


@dataclass(frozen=True)
class DeclaredDependency:
    """Dependency as declared by the project manifest."""

    name: str
    version_range: str
    declaration_type: DeclarationType


@dataclass(frozen=True)
class InstalledPackage:
    """A package found on disk under node_modules."""

    name: str
    version: str
    location: str
    depth: int = 0
    dependencies: Dict[str, str] = field(default_factory=dict)
    peer_dependencies: Dict[str, str] = field(default_factory=dict)
    peer_dependencies_meta: Dict[str, Dict[str, Any]] = field(default_factory=dict)


@dataclass(frozen=True)
class PeerRequirement:
    """A peer dependency declared by an installed package."""

    requiring_package: str
    requiring_version: str
    requiring_location: str
    peer_name: str
    required_range: str
    optional: bool = False


@dataclass(frozen=True)
class DependencyIssue:
    """A single reported problem with its evidence."""

    kind: IssueKind
    name: str
    severity: str
    confidence: str = "high"
    evidence: Tuple[Usage, ...] = ()
    cycle: Tuple[str, ...] = ()
    remediation: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "kind": self.kind.value,
            "name": self.name,
            "severity": self.severity,
            "confidence": self.confidence,
            "remediation": self.remediation,
        }
        if self.evidence:
            data["evidence"] = [usage.to_dict() for usage in self.evidence]
        if self.cycle:
            data["cycle"] = list(self.cycle)
        data.update(self.details)
        return data


@dataclass(frozen=True)
class AnalysisWarning:
    """A non-fatal problem recorded during analysis."""

    kind: str
    message: str
    path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": self.message, "path": self.path}


@dataclass(frozen=True)
class OutdatedDependency:
    """A declared dependency whose range does not admit the latest release."""

    name: str
    current: str
    latest: str
    update_type: str
    declaration_type: DeclarationType

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "current": self.current,
            "latest": self.latest,
            "update_type": self.update_type,
            "type": self.declaration_type.value,
        }


@dataclass
class AnalysisReport:
    """Aggregated result of one analysis run.

    This structure is the only contract toward report renderers.
    """

    project_root: str
    issues: Dict[IssueKind, List[DependencyIssue]]
    graph: Dict[str, Any]
    cycles: List[List[str]]
    peer_analysis: Optional[Dict[str, Any]]
    declared: List[DeclaredDependency]
    outdated: List[OutdatedDependency] = field(default_factory=list)
    health: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    warnings: List[AnalysisWarning] = field(default_factory=list)
    categories: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    recommendations: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)

    def issues_of(self, kind: IssueKind) -> List[DependencyIssue]:
        return self.issues.get(kind, [])

    def names_of(self, kind: IssueKind) -> List[str]:
        return [issue.name for issue in self.issues_of(kind)]

    @property
    def summary(self) -> Dict[str, int]:
        counts = {kind.value: len(self.issues_of(kind)) for kind in IssueKind}
        counts["total"] = len(self.declared)
        counts["outdated"] = len(self.outdated)
        counts["files_analyzed"] = self.metadata.get("files_analyzed", 0)
        return counts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project_root": self.project_root,
            "summary": self.summary,
            "issues": {
                kind.value: [issue.to_dict() for issue in self.issues_of(kind)]
                for kind in IssueKind
            },
            "dependencies": {
                dep.name: {"version": dep.version_range, "type": dep.declaration_type.value}
                for dep in self.declared
            },
            "graph": self.graph,
            "cycles": self.cycles,
            "peer_dependencies": self.peer_analysis,
            "outdated": [entry.to_dict() for entry in self.outdated],
            "categories": self.categories,
            "recommendations": self.recommendations,
            "health": self.health,
            "metadata": self.metadata,
            "warnings": [warning.to_dict() for warning in self.warnings],
        }
