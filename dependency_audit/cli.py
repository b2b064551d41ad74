"""
Command-line interface for the dependency audit tool.
"""

import argparse
import logging
import os
import re
import sys
from pathlib import Path

from .analyzer import DependencyAnalyzer
from .config import SCOPE_ALIASES, AnalysisOptions
from .manifest import ManifestError
from .reporting import (
    export_issues_csv,
    export_worksheets,
    print_summary,
    save_report_json,
    write_fix_script,
)


def main():
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Analyze declared, imported and installed dependencies of a JavaScript/TypeScript project"
    )

    parser.add_argument(
        "project_path",
        help="Path to the project directory containing package.json"
    )

    parser.add_argument(
        "--scope",
        choices=sorted(SCOPE_ALIASES),
        default="all",
        help="Dependency types to check for unused entries. Default: all"
    )

    parser.add_argument(
        "--no-dev",
        action="store_true",
        help="Do not report unused devDependencies"
    )

    parser.add_argument(
        "--no-peer",
        action="store_true",
        help="Skip the peer dependency analysis"
    )

    parser.add_argument(
        "--max-depth",
        type=int,
        default=5,
        help="Maximum nesting depth when walking node_modules. Default: 5"
    )

    parser.add_argument(
        "--exclude",
        nargs="*",
        default=[],
        help="Paths, directory names or glob patterns to exclude from scanning"
    )

    parser.add_argument(
        "--check-outdated",
        action="store_true",
        help="Query the npm registry for outdated dependencies"
    )

    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Number of worker threads. Default: min(32, CPUs + 4)"
    )

    parser.add_argument(
        "--output-dir",
        default="./output",
        help="Output directory for reports. Default: ./output"
    )

    parser.add_argument(
        "--csv",
        action="store_true",
        help="Export the issue table as CSV"
    )

    parser.add_argument(
        "--worksheets",
        action="store_true",
        help="Export issues to an Excel file with one sheet per issue kind"
    )

    parser.add_argument(
        "--fix-script",
        action="store_true",
        help="Write a shell script that installs missing and removes unused dependencies"
    )

    parser.add_argument(
        "--progress",
        action="store_true",
        help="Show a progress bar while extracting imports"
    )

    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging"
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(message)s" if not args.verbose else "%(levelname)s %(name)s: %(message)s",
    )

    if args.workers is not None and args.workers < 1:
        parser.error("--workers must be at least 1")
    if args.max_depth < 0:
        parser.error("--max-depth must not be negative")

    options = AnalysisOptions(
        scope=args.scope,
        include_dev=not args.no_dev,
        check_peer_dependencies=not args.no_peer,
        max_traversal_depth=args.max_depth,
        exclude_patterns=tuple(args.exclude),
        check_outdated=args.check_outdated,
        max_workers=args.workers,
        show_progress=args.progress,
    )

    output_dir = Path(args.output_dir)
    analyzer = DependencyAnalyzer(args.project_path, options)

    try:
        report = analyzer.analyze()
    except ManifestError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"\nError during analysis: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        sys.exit(1)

    print_summary(report)

    name = report.metadata.get("project_name") or os.path.basename(analyzer.project_root)
    name = re.sub(r"[^\w.-]+", "_", name).strip("_") or "project"

    report_file = save_report_json(report, output_dir, name)
    print(f"\nReport saved to: {report_file}")

    if args.csv:
        csv_file = export_issues_csv(report, output_dir, name)
        if csv_file is not None:
            print(f"Issues saved to: {csv_file}")

    if args.worksheets:
        excel_file = export_worksheets(report, output_dir, name)
        if excel_file is not None:
            print(f"Worksheets saved to: {excel_file}")

    if args.fix_script:
        script_file = write_fix_script(report, output_dir, name)
        print(f"Fix script saved to: {script_file}")


if __name__ == "__main__":
    main()
