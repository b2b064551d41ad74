#!/usr/bin/env python3
"""
Example script showing how to use the dependency-audit tool.
"""

from pathlib import Path

from dependency_audit.analyzer import DependencyAnalyzer
from dependency_audit.config import AnalysisOptions
from dependency_audit.models import IssueKind
from dependency_audit.reporting import export_worksheets, save_report_json, write_fix_script


def example_basic_analysis(project: str):
    """Example: Full analysis with default options."""
    print("="*60)
    print("Example 1: Basic Analysis")
    print("="*60)

    report = DependencyAnalyzer(project).analyze()

    print(f"\nProject: {report.metadata['project_name']}")
    print(f"Files analyzed: {report.summary['files_analyzed']}")
    print(f"Unused: {', '.join(report.names_of(IssueKind.UNUSED)) or '-'}")
    print(f"Missing: {', '.join(report.names_of(IssueKind.MISSING)) or '-'}")
    print(f"Phantom: {', '.join(report.names_of(IssueKind.PHANTOM)) or '-'}")
    print(f"Health score: {report.health['score']}/100")


def example_production_scope(project: str):
    """Example: Only report unused production dependencies, skip peers."""
    print("\n" + "="*60)
    print("Example 2: Production Scope")
    print("="*60)

    options = AnalysisOptions(
        scope="production",
        check_peer_dependencies=False,
        exclude_patterns=("examples", "**/__fixtures__/**"),
    )
    report = DependencyAnalyzer(project, options).analyze()

    for issue in report.issues_of(IssueKind.UNUSED):
        print(f"  {issue.name} ({issue.details['version']}): {issue.remediation}")


def example_cycles_and_peers(project: str):
    """Example: Inspect import cycles and peer dependency conflicts."""
    print("\n" + "="*60)
    print("Example 3: Import Cycles and Peer Dependencies")
    print("="*60)

    report = DependencyAnalyzer(project).analyze()

    for issue in report.issues_of(IssueKind.CIRCULAR_IMPORT):
        print(f"  [{issue.severity}] {issue.name}")
    for issue in report.issues_of(IssueKind.PEER_CONFLICT):
        print(f"  [{issue.severity}] {issue.name}: {issue.remediation}")


def example_outdated_with_exports(project: str):
    """Example: Check the npm registry for outdated dependencies and export reports."""
    print("\n" + "="*60)
    print("Example 4: Outdated Dependencies")
    print("="*60)

    options = AnalysisOptions(check_outdated=True, show_progress=True)
    report = DependencyAnalyzer(project, options).analyze()

    for entry in report.outdated:
        print(f"  {entry.name}: {entry.current} -> {entry.latest} ({entry.update_type})")

    output_dir = Path("./output/example4")
    print(f"\nReport: {save_report_json(report, output_dir, 'example')}")
    print(f"Worksheets: {export_worksheets(report, output_dir, 'example')}")


def example_recommendations_and_fix_script(project: str):
    """Example: Prioritized recommendations and a generated fix script."""
    print("\n" + "="*60)
    print("Example 5: Recommendations")
    print("="*60)

    report = DependencyAnalyzer(project).analyze()

    for category, bucket in report.categories.items():
        if bucket["count"]:
            print(f"  {category}: {bucket['count']}")
    for priority in ("high", "medium", "low"):
        for entry in report.recommendations[priority]:
            print(f"  [{priority}] {entry['title']}: {', '.join(entry['packages'])}")

    script = write_fix_script(report, Path("./output/example5"), "example")
    print(f"\nFix script: {script}")


if __name__ == "__main__":
    import sys

    project = sys.argv[1] if len(sys.argv) > 1 else "."

    print("Dependency Audit - Example Usage")
    print("="*60)
    print("\nNOTE: Example 4 requires network access to the npm registry.")

    try:
        example_basic_analysis(project)
        example_production_scope(project)
        example_cycles_and_peers(project)
        example_outdated_with_exports(project)
        example_recommendations_and_fix_script(project)

        print("\n" + "="*60)
        print("Examples completed successfully!")
        print("Check the ./output directory for detailed results.")
        print("="*60)

    except Exception as e:
        print(f"\nError running examples: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        sys.exit(1)
