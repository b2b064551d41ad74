"""
Reporting and export utilities.
"""

from __future__ import annotations

import json
import logging
import shlex
from pathlib import Path
from typing import Dict, List

import pandas as pd

from .models import AnalysisReport, IssueKind


logger = logging.getLogger(__name__)

ISSUE_COLUMNS = [
    "kind",
    "name",
    "severity",
    "confidence",
    "usages",
    "files",
    "remediation",
]


def print_summary(report: AnalysisReport) -> None:
    summary = report.summary
    logger.info("\n" + "=" * 60)
    logger.info("DEPENDENCY ANALYSIS")
    logger.info("=" * 60)
    logger.info("Project: %s", report.metadata.get("project_name") or report.project_root)
    logger.info("Scope: %s", report.metadata.get("scope", "all"))
    logger.info("Files analyzed: %s", summary["files_analyzed"])
    logger.info("Declared dependencies: %s", summary["total"])
    logger.info("-" * 60)
    for kind in IssueKind:
        logger.info("%-16s %d", kind.value + ":", summary[kind.value])
    if report.outdated:
        logger.info("%-16s %d", "outdated:", summary["outdated"])
    logger.info("-" * 60)
    logger.info("Health score: %s/100", report.health.get("score", 100))
    for issue in report.health.get("issues", []):
        logger.info("  - %s", issue)
    if report.categories:
        logger.info(
            "Categories: %s",
            ", ".join(
                f"{category} {bucket['count']}"
                for category, bucket in report.categories.items()
                if bucket["count"]
            ) or "-",
        )
    for priority in ("high", "medium", "low"):
        for entry in report.recommendations.get(priority, []):
            logger.info("[%s] %s: %s", priority, entry["title"], ", ".join(entry["packages"]))
    if report.warnings:
        logger.info("Warnings: %d", len(report.warnings))
    logger.info("=" * 60)


def save_report_json(report: AnalysisReport, output_dir: Path, name: str) -> Path:
    output_dir.mkdir(parents=True, exist_ok=True)
    report_file = output_dir / f"{name}_dependency_report.json"
    with open(report_file, "w") as f:
        json.dump(report.to_dict(), f, indent=2, default=str)
    return report_file


def issues_frame(report: AnalysisReport) -> pd.DataFrame:
    """One row per reported issue."""
    rows: List[Dict] = []
    for kind in IssueKind:
        for issue in report.issues_of(kind):
            files = sorted({usage.file for usage in issue.evidence}) or list(issue.cycle)
            rows.append({
                "kind": kind.value,
                "name": issue.name,
                "severity": issue.severity,
                "confidence": issue.confidence,
                "usages": len(issue.evidence),
                "files": ";".join(files),
                "remediation": issue.remediation,
            })
    return pd.DataFrame(rows, columns=ISSUE_COLUMNS)


def export_issues_csv(report: AnalysisReport, output_dir: Path, name: str) -> Path | None:
    df = issues_frame(report)
    if df.empty:
        return None
    output_dir.mkdir(parents=True, exist_ok=True)
    issues_file = output_dir / f"{name}_issues.csv"
    df.to_csv(issues_file, index=False)
    return issues_file


def export_worksheets(report: AnalysisReport, output_dir: Path, name: str) -> Path | None:
    df = issues_frame(report)
    if df.empty:
        return None
    output_dir.mkdir(parents=True, exist_ok=True)
    excel_file = output_dir / f"{name}_worksheets.xlsx"
    with pd.ExcelWriter(excel_file, engine="openpyxl") as writer:
        for kind, kind_df in df.groupby("kind", sort=False):
            # Excel sheet names have a 31 character limit
            kind_df.to_excel(writer, sheet_name=str(kind)[:31], index=False)
        if report.outdated:
            outdated_df = pd.DataFrame([entry.to_dict() for entry in report.outdated])
            outdated_df.to_excel(writer, sheet_name="outdated", index=False)
    return excel_file


def generate_fix_script(report: AnalysisReport) -> str:
    """Render a bash script applying the mechanical fixes of a report.

    Missing packages are installed into the bucket their usages suggest,
    unused packages are removed only when the finding has high confidence.
    """
    commands: List[str] = []

    missing = report.issues_of(IssueKind.MISSING)
    runtime = [issue.name for issue in missing if issue.details.get("suggested_type") != "devDependencies"]
    dev = [issue.name for issue in missing if issue.details.get("suggested_type") == "devDependencies"]
    if runtime or dev:
        commands.append('echo "Installing missing dependencies..."')
        if runtime:
            commands.append("npm install " + " ".join(shlex.quote(name) for name in runtime))
        if dev:
            commands.append("npm install --save-dev " + " ".join(shlex.quote(name) for name in dev))
        commands.append("")

    unused = [issue.name for issue in report.issues_of(IssueKind.UNUSED) if issue.confidence == "high"]
    if unused:
        commands.append('echo "Removing unused dependencies..."')
        commands.append("npm uninstall " + " ".join(shlex.quote(name) for name in unused))
        commands.append("")

    if report.outdated:
        commands.append('echo "Updating outdated packages..."')
        commands.append("npm update")
        commands.append("")

    if not commands:
        commands.append('echo "Nothing to fix."')
        commands.append("")

    header = [
        "#!/bin/bash",
        f"# Dependency fix script for {report.metadata.get('project_name') or report.project_root}",
        f"# Generated on {report.metadata.get('analyzed_at', '')}",
        "",
        "set -e",
        "",
        f"cd {shlex.quote(report.project_root)}",
        "",
    ]
    return "\n".join(header + commands + ['echo "Dependency fixes completed."', ""])


def write_fix_script(report: AnalysisReport, output_dir: Path, name: str) -> Path:
    output_dir.mkdir(parents=True, exist_ok=True)
    script_file = output_dir / f"{name}_fix_dependencies.sh"
    script_file.write_text(generate_fix_script(report))
    script_file.chmod(0o755)
    return script_file
