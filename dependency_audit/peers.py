"""
Peer dependency checks over the installed package tree.
"""

from __future__ import annotations

import logging
import os
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .installed import InstalledRegistry
from .models import AnalysisWarning, DependencyIssue, IssueKind, PeerRequirement
from .npm_semver import (
    InvalidRange,
    InvalidVersion,
    coarse_major,
    coarse_majors,
    intersect_ranges,
    parse_range,
    satisfies,
)


logger = logging.getLogger(__name__)


def check_compatibility(required_range: str, installed_version: str) -> Tuple[bool, str]:
    """Return (compatible, confidence) for an installed peer version.

    Ranges or versions the semver engine rejects fall back to comparing
    major versions only, with ``low`` confidence.
    """
    try:
        return satisfies(installed_version, required_range), "high"
    except (InvalidRange, InvalidVersion):
        majors = coarse_majors(required_range)
        major = coarse_major(installed_version)
        compatible = major is not None and (not majors or major in majors)
        return compatible, "low"


def suggest_version(required_range: str) -> str:
    major = coarse_major(required_range)
    if required_range.startswith("^") and major:
        return f"^{major}.0.0"
    return required_range


def find_compatible_version(ranges: List[str]) -> str:
    majors = {coarse_major(value) for value in ranges}
    majors.discard(None)
    majors.discard(0)
    if len(majors) == 1:
        return f"^{majors.pop()}.0.0"
    return "Manual resolution required"


@dataclass
class PeerAnalysis:
    packages: List[Dict[str, Any]] = field(default_factory=list)
    conflicts: List[DependencyIssue] = field(default_factory=list)
    missing: List[DependencyIssue] = field(default_factory=list)
    alignments: List[Dict[str, Any]] = field(default_factory=list)
    recommendations: List[Dict[str, Any]] = field(default_factory=list)
    summary: Dict[str, int] = field(default_factory=dict)
    warnings: List[AnalysisWarning] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary,
            "packages": self.packages,
            "conflicts": [issue.to_dict() for issue in self.conflicts],
            "missing": [issue.to_dict() for issue in self.missing],
            "alignments": self.alignments,
            "recommendations": self.recommendations,
        }


class PeerResolver:
    """Check declared peer requirements of every installed package."""

    def __init__(self, installed: InstalledRegistry) -> None:
        self.installed = installed

    def _relative(self, location: str) -> str:
        return os.path.relpath(location, self.installed.root).replace(os.sep, "/")

    def _low_confidence(self, analysis: PeerAnalysis, requirement: PeerRequirement) -> None:
        message = (
            f"Cannot parse range {requirement.required_range!r} for {requirement.peer_name} "
            f"required by {requirement.requiring_package}; compared major versions only"
        )
        if any(w.message == message for w in analysis.warnings):
            return
        logger.warning("low-confidence-range: %s", message)
        analysis.warnings.append(AnalysisWarning(
            "low-confidence-range", message, requirement.requiring_location
        ))

    def analyze(self) -> PeerAnalysis:
        analysis = PeerAnalysis()
        requirements = self.installed.peer_requirements()

        by_package: "OrderedDict[str, List[PeerRequirement]]" = OrderedDict()
        for requirement in requirements:
            by_package.setdefault(requirement.requiring_location, []).append(requirement)

        compatible_count = 0
        for location, package_requirements in by_package.items():
            first = package_requirements[0]
            entry = {
                "name": first.requiring_package,
                "version": first.requiring_version,
                "location": self._relative(location),
                "peer_dependencies": [],
            }
            for requirement in package_requirements:
                row = self._check_requirement(analysis, requirement)
                compatible_count += 1 if row["compatible"] else 0
                entry["peer_dependencies"].append(row)
            analysis.packages.append(entry)

        analysis.conflicts.extend(self._cross_package(analysis, requirements))
        analysis.recommendations = self._recommendations(analysis)
        analysis.summary = {
            "total_packages": len(self.installed.packages),
            "packages_with_peer_deps": len(by_package),
            "total_peer_deps": len(requirements),
            "conflicts": len(analysis.conflicts),
            "missing": len(analysis.missing),
            "compatible": compatible_count,
        }
        logger.info(
            "Peer analysis: %d requirements, %d conflicts, %d missing",
            len(requirements), len(analysis.conflicts), len(analysis.missing),
        )
        return analysis

    def _check_requirement(
        self, analysis: PeerAnalysis, requirement: PeerRequirement
    ) -> Dict[str, Any]:
        peer = self.installed.resolve_from(requirement.peer_name, requirement.requiring_location)
        row: Dict[str, Any] = {
            "name": requirement.peer_name,
            "required": requirement.required_range,
            "optional": requirement.optional,
            "installed": peer is not None,
            "installed_version": peer.version if peer else None,
            "compatible": False,
            "confidence": "high",
            "all_versions": self.installed.versions(requirement.peer_name),
        }

        if peer is None:
            if not requirement.optional:
                analysis.missing.append(DependencyIssue(
                    kind=IssueKind.PEER_MISSING,
                    name=requirement.peer_name,
                    severity="high",
                    remediation=(
                        f"npm install {requirement.peer_name}@{suggest_version(requirement.required_range)}"
                    ),
                    details={
                        "package": requirement.requiring_package,
                        "package_version": requirement.requiring_version,
                        "required": requirement.required_range,
                    },
                ))
            return row

        compatible, confidence = check_compatibility(requirement.required_range, peer.version)
        if confidence == "low":
            self._low_confidence(analysis, requirement)
        row["compatible"] = compatible
        row["confidence"] = confidence
        if not compatible:
            analysis.conflicts.append(DependencyIssue(
                kind=IssueKind.PEER_CONFLICT,
                name=requirement.peer_name,
                severity="medium" if requirement.optional else "high",
                confidence=confidence,
                remediation=(
                    f"Install a version of {requirement.peer_name} matching "
                    f"{requirement.required_range}"
                ),
                details={
                    "type": "direct",
                    "package": requirement.requiring_package,
                    "package_version": requirement.requiring_version,
                    "required": requirement.required_range,
                    "installed": peer.version,
                },
            ))
        return row

    def _cross_package(
        self, analysis: PeerAnalysis, requirements: List[PeerRequirement]
    ) -> List[DependencyIssue]:
        grouped: Dict[str, List[PeerRequirement]] = {}
        for requirement in requirements:
            grouped.setdefault(requirement.peer_name, []).append(requirement)

        conflicts = []
        for peer_name in sorted(grouped):
            distinct: "OrderedDict[Tuple[str, str], PeerRequirement]" = OrderedDict()
            for requirement in grouped[peer_name]:
                distinct.setdefault(
                    (requirement.requiring_package, requirement.required_range), requirement
                )
            requirers = sorted({requirement.requiring_package for requirement in distinct.values()})
            if len(requirers) < 2:
                continue
            entries = list(distinct.values())
            ranges = [requirement.required_range for requirement in entries]

            confidence = "high"
            suggestion: Optional[str] = None
            try:
                intervals = intersect_ranges([parse_range(value) for value in ranges])
                overlap = bool(intervals)
                if overlap:
                    suggestion = intervals[0].to_expression()
            except InvalidRange:
                confidence = "low"
                for requirement in entries:
                    try:
                        parse_range(requirement.required_range)
                    except InvalidRange:
                        self._low_confidence(analysis, requirement)
                major_sets = [coarse_majors(value) for value in ranges]
                major_sets = [majors for majors in major_sets if majors]
                overlap = not major_sets or bool(set.intersection(*major_sets))

            if overlap:
                if len(set(ranges)) > 1:
                    analysis.alignments.append({
                        "peer": peer_name,
                        "packages": requirers,
                        "ranges": sorted(set(ranges)),
                        "suggestion": suggestion or find_compatible_version(ranges),
                        "confidence": confidence,
                    })
                continue

            conflicts.append(DependencyIssue(
                kind=IssueKind.PEER_CONFLICT,
                name=peer_name,
                severity="medium",
                confidence=confidence,
                remediation=f"Align the {peer_name} requirements of {', '.join(requirers)}",
                details={
                    "type": "cross-package",
                    "packages": requirers,
                    "requirements": [
                        {
                            "package": requirement.requiring_package,
                            "version": requirement.requiring_version,
                            "required": requirement.required_range,
                        }
                        for requirement in entries
                    ],
                    "suggestion": find_compatible_version(ranges),
                },
            ))
        return conflicts

    def _recommendations(self, analysis: PeerAnalysis) -> List[Dict[str, Any]]:
        recommendations = []
        if analysis.missing:
            recommendations.append({
                "priority": "high",
                "type": "install-missing",
                "message": f"Install {len(analysis.missing)} missing peer dependencies",
                "dependencies": [
                    {
                        "name": issue.name,
                        "version": suggest_version(issue.details["required"]),
                        "reason": f"Required by {issue.details['package']}",
                    }
                    for issue in analysis.missing
                ],
            })
        if analysis.conflicts:
            recommendations.append({
                "priority": "medium",
                "type": "resolve-conflicts",
                "message": f"Resolve {len(analysis.conflicts)} peer dependency conflicts",
                "conflicts": [issue.name for issue in analysis.conflicts],
            })
        duplicated = sorted({
            row["name"]
            for entry in analysis.packages
            for row in entry["peer_dependencies"]
            if len(row["all_versions"]) > 1
        })
        if duplicated:
            recommendations.append({
                "priority": "low",
                "type": "deduplicate",
                "message": "Consider deduplicating packages with multiple versions",
                "packages": duplicated,
            })
        return recommendations
