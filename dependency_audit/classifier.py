"""
Classification of external packages against the manifest and install tree.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .config import AnalysisOptions
from .installed import InstalledRegistry
from .manifest import Manifest
from .models import (
    AnalysisWarning,
    DeclarationType,
    DeclaredDependency,
    DependencyIssue,
    IssueKind,
    Usage,
)


logger = logging.getLogger(__name__)


TOOL_CONFIG_PATTERNS = (
    ".babelrc", ".babelrc.*", "babel.config.*",
    ".eslintrc", ".eslintrc.*", "eslint.config.*",
    ".prettierrc", ".prettierrc.*", "prettier.config.*",
    "postcss.config.*", "tailwind.config.*",
    "jest.config.*", "vitest.config.*",
    "webpack.config.*", "vite.config.*", "rollup.config.*",
    "tsconfig.json", "tsconfig.*.json",
)

# Prefixes under which tools refer to plugins by their short name.
SHORT_NAME_PREFIXES = (
    "eslint-plugin-", "eslint-config-", "prettier-plugin-",
    "@babel/preset-", "@babel/plugin-", "babel-preset-", "babel-plugin-",
)

TOOLING_NAMES = frozenset({
    "typescript", "eslint", "prettier", "jest", "vitest", "mocha", "chai",
    "karma", "ava", "cypress", "playwright", "@playwright/test", "ts-node",
    "tsx", "nodemon", "husky", "lint-staged", "webpack", "webpack-cli",
    "vite", "rollup", "esbuild", "parcel", "babel", "@babel/core",
    "postcss", "autoprefixer", "tailwindcss", "stylelint", "concurrently",
    "rimraf", "cross-env", "npm-run-all", "semantic-release", "commitizen",
    "nyc", "c8", "standard", "xo", "turbo", "lerna", "nx", "storybook",
})

TOOLING_MARKERS = ("plugin", "preset", "loader", "-cli", "@commitlint/", "@storybook/")

DEV_NAME_PREFIXES = (
    "@types/", "eslint", "prettier", "jest", "vitest", "@testing-library/",
    "mocha", "chai", "sinon", "cypress", "playwright", "@playwright/",
    "typescript", "ts-node", "webpack", "vite", "rollup", "@babel/", "babel-",
    "stylelint", "@storybook/", "husky", "lint-staged",
)

# First matching category wins.
CATEGORY_KEYWORDS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("frontend", (
        "react", "vue", "angular", "svelte", "preact", "solid-js",
        "next", "nuxt", "remix", "gatsby", "astro",
    )),
    ("backend", (
        "express", "koa", "fastify", "hapi", "nest", "loopback",
        "mongoose", "sequelize", "typeorm", "prisma",
    )),
    ("devtools", (
        "eslint", "prettier", "webpack", "vite", "rollup", "parcel",
        "babel", "postcss", "autoprefixer", "tailwindcss",
    )),
    ("testing", (
        "jest", "vitest", "mocha", "chai", "cypress", "playwright",
        "testing-library", "test", "spec",
    )),
    ("build", (
        "typescript", "@types/", "ts-node", "tsx", "esbuild",
        "terser", "uglify", "clean-css",
    )),
)

CATEGORIES = tuple(category for category, _ in CATEGORY_KEYWORDS) + ("other",)

# Packages that fill the same role; declaring several is usually an accident.
DUPLICATE_GROUPS: Tuple[Tuple[str, ...], ...] = (
    ("lodash", "underscore", "ramda"),
    ("moment", "date-fns", "dayjs", "luxon"),
    ("axios", "node-fetch", "request", "superagent", "got"),
    ("react-router", "@reach/router"),
    ("styled-components", "@emotion/styled", "glamorous"),
)

_TEST_OR_CONFIG_RE = re.compile(
    r"(^|/)(__tests__|__mocks__|tests?|specs?|e2e|cypress|\.storybook|stories)(/|$)"
    r"|\.(test|spec|stories|story|cy|e2e)\.[^/]+$"
    r"|(^|/)[^/]*\.config\.[^/]+$"
    r"|(^|/)(setupTests|jest\.setup|vitest\.setup)\.[^/]+$"
)


def is_test_or_config_file(relative_path: str) -> bool:
    return bool(_TEST_OR_CONFIG_RE.search(relative_path.replace(os.sep, "/")))


def is_tooling_like(name: str) -> bool:
    if name in TOOLING_NAMES or name.split("/")[-1] in TOOLING_NAMES:
        return True
    return any(marker in name for marker in TOOLING_MARKERS)


def types_target(name: str) -> Optional[str]:
    """Package a ``@types/*`` name describes: ``@types/a__b`` is ``@a/b``."""
    if not name.startswith("@types/"):
        return None
    base = name[len("@types/"):]
    if "__" in base:
        scope, _, rest = base.partition("__")
        return f"@{scope}/{rest}"
    return base


def suggested_type(name: str, usages: Iterable[Usage]) -> str:
    usages = list(usages)
    if name.startswith(DEV_NAME_PREFIXES):
        return "devDependencies"
    if usages and all(is_test_or_config_file(usage.file) for usage in usages):
        return "devDependencies"
    return "dependencies"


def categorize_dependency(name: str) -> str:
    for category, keywords in CATEGORY_KEYWORDS:
        if any(keyword in name for keyword in keywords):
            return category
    return "other"


def categorize_dependencies(declared: Iterable[DeclaredDependency]) -> Dict[str, Dict[str, Any]]:
    """Group declared packages by category, every category present."""
    categories: Dict[str, Dict[str, Any]] = {
        category: {"count": 0, "packages": []} for category in CATEGORIES
    }
    for dep in declared:
        bucket = categories[categorize_dependency(dep.name)]
        bucket["count"] += 1
        bucket["packages"].append({
            "name": dep.name,
            "version": dep.version_range,
            "type": dep.declaration_type.value,
        })
    return categories


def phantom_risk(file_count: int) -> str:
    if file_count > 10:
        return "high"
    if file_count > 5:
        return "medium"
    return "low"


def load_tool_configs(project_root: str) -> List[Tuple[str, str]]:
    """Read the text of known tool configuration files at the root."""
    try:
        names = sorted(os.listdir(project_root))
    except OSError:
        return []
    configs = []
    for name in names:
        if not any(fnmatch.fnmatch(name, pattern) for pattern in TOOL_CONFIG_PATTERNS):
            continue
        path = os.path.join(project_root, name)
        if not os.path.isfile(path):
            continue
        try:
            with open(path, "r", encoding="utf-8", errors="replace") as handle:
                configs.append((name, handle.read()))
        except OSError as e:
            logger.warning("Cannot read %s: %s", path, e)
    return configs


def _mentions(text: str, name: str) -> bool:
    return re.search(rf"(?<![\w@/.-]){re.escape(name)}(?![\w-])", text) is not None


CLASSIFIED_KINDS = (
    IssueKind.UNUSED,
    IssueKind.MISSING,
    IssueKind.PHANTOM,
    IssueKind.MISPLACED,
    IssueKind.DUPLICATE,
)


@dataclass
class Classification:
    used: List[str] = field(default_factory=list)
    issues: Dict[IssueKind, List[DependencyIssue]] = field(default_factory=dict)
    warnings: List[AnalysisWarning] = field(default_factory=list)


class DependencyClassifier:
    """Label external package names as used, unused, missing, phantom or misplaced."""

    def __init__(
        self,
        manifest: Manifest,
        installed: InstalledRegistry,
        options: Optional[AnalysisOptions] = None,
        project_root: Optional[str] = None,
    ) -> None:
        self.manifest = manifest
        self.installed = installed
        self.options = options or AnalysisOptions()
        self.project_root = project_root or os.path.dirname(manifest.path)
        self._tool_configs: Optional[List[Tuple[str, str]]] = None

    @property
    def tool_configs(self) -> List[Tuple[str, str]]:
        if self._tool_configs is None:
            self._tool_configs = load_tool_configs(self.project_root)
        return self._tool_configs

    def classify(
        self, usages: Dict[str, List[Usage]], builtin_imported: bool = False
    ) -> Classification:
        """Classify every referenced and declared package.

        Args:
            usages: Package name to its usages, builtins excluded.
            builtin_imported: Whether any runtime built-in was imported.
        """
        result = Classification()
        for kind in CLASSIFIED_KINDS:
            result.issues[kind] = []

        if not self.installed.present:
            warning = AnalysisWarning(
                "missing-context",
                "node_modules not found; undeclared imports are reported as missing",
                self.project_root,
            )
            logger.warning("%s: %s", warning.kind, warning.message)
            result.warnings.append(warning)

        for dep in self.manifest.all_dependencies():
            if self.is_used(dep, usages, builtin_imported):
                result.used.append(dep.name)
            elif self.options.declaration_in_scope(dep.declaration_type.value):
                result.issues[IssueKind.UNUSED].append(self._unused_issue(dep))

        for name in sorted(usages):
            found = usages[name]
            if name == self.manifest.name:
                continue
            declared = self.manifest.get(name)
            if declared is not None:
                misplaced = self._dev_only_issue(declared, found)
                if misplaced is not None:
                    result.issues[IssueKind.MISPLACED].append(misplaced)
                continue
            if name.startswith("@types/"):
                continue
            if self.installed.present and self.installed.has(name):
                result.issues[IssueKind.PHANTOM].append(self._phantom_issue(name, found))
            else:
                result.issues[IssueKind.MISSING].append(self._missing_issue(name, found))
            if self.manifest.is_declared(f"@types/{_types_name(name)}"):
                result.issues[IssueKind.MISPLACED].append(self._types_only_issue(name, found))

        result.issues[IssueKind.DUPLICATE] = self.duplicate_issues()

        logger.info(
            "Classified %d declared packages: %d used, %d unused, %d missing, %d phantom, "
            "%d duplicate groups",
            len(self.manifest.declared),
            len(result.used),
            len(result.issues[IssueKind.UNUSED]),
            len(result.issues[IssueKind.MISSING]),
            len(result.issues[IssueKind.PHANTOM]),
            len(result.issues[IssueKind.DUPLICATE]),
        )
        return result

    def duplicate_issues(self) -> List[DependencyIssue]:
        """One issue per group of declared packages with the same role."""
        issues = []
        for group in DUPLICATE_GROUPS:
            found = [self.manifest.get(name) for name in group if self.manifest.is_declared(name)]
            if len(found) < 2:
                continue
            names = [dep.name for dep in found]
            issues.append(DependencyIssue(
                kind=IssueKind.DUPLICATE,
                name=" + ".join(names),
                severity="medium",
                confidence="medium",
                remediation=f"Consolidate on one of {', '.join(names)}",
                details={
                    "type": "functional",
                    "category": categorize_dependency(names[0]),
                    "packages": [
                        {
                            "name": dep.name,
                            "version": dep.version_range,
                            "type": dep.declaration_type.manifest_key,
                        }
                        for dep in found
                    ],
                },
            ))
        return issues

    def is_used(
        self, dep: DeclaredDependency, usages: Dict[str, List[Usage]], builtin_imported: bool
    ) -> bool:
        name = dep.name
        if name in usages:
            return True
        target = types_target(name)
        if target is not None:
            if target == "node":
                return builtin_imported
            return target in usages
        for rule in self.options.indirect_usage_rules:
            if rule.matches(name) and any(trigger in usages for trigger in rule.triggers):
                return True
        return self.used_in_scripts(name) or self.used_in_config_files(name)

    def used_in_scripts(self, name: str) -> bool:
        candidates = {name, name.split("/")[-1]}
        for command in self.manifest.scripts.values():
            tokens = set(re.split(r"[\s;&|()=]+", command))
            if candidates & tokens:
                return True
        return False

    def used_in_config_files(self, name: str) -> bool:
        forms = [name]
        for prefix in SHORT_NAME_PREFIXES:
            if name.startswith(prefix) and len(name) > len(prefix):
                forms.append(name[len(prefix):])
        for config_name, text in self.tool_configs:
            for form in forms:
                if form == name and _mentions(text, form):
                    logger.debug("%s referenced by %s", name, config_name)
                    return True
                if form != name and re.search(rf"""['"](?:plugin:)?{re.escape(form)}['"/]""", text):
                    logger.debug("%s referenced by %s as %s", name, config_name, form)
                    return True
        return False

    def _unused_issue(self, dep: DeclaredDependency) -> DependencyIssue:
        name = dep.name
        if name.startswith("@types/"):
            confidence = "high"
        elif is_tooling_like(name):
            confidence = "medium"
        else:
            confidence = "high"

        if dep.declaration_type is DeclarationType.DEVELOPMENT:
            if name.startswith("@types/"):
                reason = "Type definitions for a package that is not imported"
            else:
                reason = "Development dependency not referenced by sources, scripts or tool configs"
        else:
            reason = "Package not imported in any source file"

        return DependencyIssue(
            kind=IssueKind.UNUSED,
            name=name,
            severity="medium" if dep.declaration_type is DeclarationType.PRODUCTION else "low",
            confidence=confidence,
            remediation=f"npm uninstall {name}",
            details={
                "version": dep.version_range,
                "type": dep.declaration_type.manifest_key,
                "reason": reason,
                "category": categorize_dependency(name),
            },
        )

    def _missing_issue(self, name: str, usages: List[Usage]) -> DependencyIssue:
        bucket = suggested_type(name, usages)
        flag = " --save-dev" if bucket == "devDependencies" else ""
        return DependencyIssue(
            kind=IssueKind.MISSING,
            name=name,
            severity="high" if len(usages) > 5 else "medium",
            confidence="high" if len(usages) > 2 else "medium",
            evidence=tuple(usages),
            remediation=f"npm install{flag} {name}",
            details={"suggested_type": bucket, "category": categorize_dependency(name)},
        )

    def _phantom_issue(self, name: str, usages: List[Usage]) -> DependencyIssue:
        files = sorted({usage.file for usage in usages})
        package = self.installed.primary(name)
        bucket = suggested_type(name, usages)
        chain = self.installed.provider_chain(name, self.manifest.declared)
        return DependencyIssue(
            kind=IssueKind.PHANTOM,
            name=name,
            severity=phantom_risk(len(files)),
            evidence=tuple(usages),
            remediation=f"Add {name} to {bucket}",
            details={
                "version": package.version if package else None,
                "used_in": files,
                "provided_by": chain,
                "suggested_type": bucket,
                "category": categorize_dependency(name),
            },
        )

    def _dev_only_issue(
        self, dep: DeclaredDependency, usages: List[Usage]
    ) -> Optional[DependencyIssue]:
        if dep.declaration_type is not DeclarationType.DEVELOPMENT:
            return None
        runtime = [usage for usage in usages if not is_test_or_config_file(usage.file)]
        if not runtime or dep.name.startswith("@types/"):
            return None
        return DependencyIssue(
            kind=IssueKind.MISPLACED,
            name=dep.name,
            severity="low",
            confidence="medium",
            evidence=tuple(runtime),
            remediation=f"Move {dep.name} from devDependencies to dependencies",
            details={
                "declared_in": "devDependencies",
                "suggested_type": "dependencies",
                "category": categorize_dependency(dep.name),
            },
        )

    def _types_only_issue(self, name: str, usages: List[Usage]) -> DependencyIssue:
        return DependencyIssue(
            kind=IssueKind.MISPLACED,
            name=name,
            severity="low",
            confidence="medium",
            evidence=tuple(usages),
            remediation=f"Declare {name} next to @types/{_types_name(name)}",
            details={
                "declared_in": None,
                "types_package": f"@types/{_types_name(name)}",
                "category": categorize_dependency(name),
            },
        )


def _types_name(name: str) -> str:
    if name.startswith("@"):
        return name[1:].replace("/", "__")
    return name
