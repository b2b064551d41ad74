"""Tests for dependency classification."""

import os

import pytest

from dependency_audit.classifier import (
    DependencyClassifier,
    categorize_dependencies,
    categorize_dependency,
    is_test_or_config_file,
    phantom_risk,
    suggested_type,
    types_target,
)
from dependency_audit.config import AnalysisOptions
from dependency_audit.installed import InstalledRegistry
from dependency_audit.manifest import Manifest
from dependency_audit.models import (
    DeclarationType,
    DeclaredDependency,
    ImportKind,
    InstalledPackage,
    IssueKind,
    Usage,
)


def _manifest(root, name="app", scripts=None, **buckets):
    manifest = Manifest(path=os.path.join(str(root), "package.json"), name=name, version="1.0.0")
    for key, declaration_type in (
        ("dependencies", DeclarationType.PRODUCTION),
        ("devDependencies", DeclarationType.DEVELOPMENT),
        ("peerDependencies", DeclarationType.PEER),
    ):
        for dep_name, version_range in buckets.get(key, {}).items():
            manifest.declared[dep_name] = DeclaredDependency(dep_name, version_range, declaration_type)
    manifest.scripts = scripts or {}
    return manifest


def _installed(root, *packages):
    registry = InstalledRegistry(root=str(root), present=True)
    for name, version, dependencies in packages:
        registry.add(InstalledPackage(
            name=name,
            version=version,
            location=os.path.join(str(root), "node_modules", name),
            dependencies=dependencies,
        ))
    return registry


def _uses(*files):
    return [Usage(file, 1, ImportKind.STATIC_IMPORT) for file in files]


def test_helpers():
    assert types_target("@types/react") == "react"
    assert types_target("@types/babel__core") == "@babel/core"
    assert types_target("react") is None
    assert is_test_or_config_file("src/__tests__/a.js")
    assert is_test_or_config_file("src/button.spec.tsx")
    assert is_test_or_config_file("vite.config.ts")
    assert not is_test_or_config_file("src/testing.js")
    assert phantom_risk(11) == "high"
    assert phantom_risk(6) == "medium"
    assert phantom_risk(5) == "low"
    assert suggested_type("@testing-library/react", []) == "devDependencies"
    assert suggested_type("msw", _uses("test/setup.js")) == "devDependencies"
    assert suggested_type("axios", _uses("src/api.js", "test/api.test.js")) == "dependencies"


def test_unused_production_dependency(tmp_path):
    manifest = _manifest(tmp_path, dependencies={"lodash": "^4.17.21"})
    classifier = DependencyClassifier(manifest, _installed(tmp_path))

    result = classifier.classify({})

    [issue] = result.issues[IssueKind.UNUSED]
    assert issue.name == "lodash"
    assert issue.severity == "medium"
    assert issue.confidence == "high"
    assert issue.details["type"] == "dependencies"
    assert result.used == []


def test_missing_without_node_modules(tmp_path):
    manifest = _manifest(tmp_path)
    registry = InstalledRegistry(root=str(tmp_path))
    usages = {"axios": _uses("src/a.js", "src/b.js", "src/c.js")}

    result = DependencyClassifier(manifest, registry).classify(usages)

    [issue] = result.issues[IssueKind.MISSING]
    assert issue.name == "axios"
    assert issue.confidence == "high"
    assert issue.severity == "medium"
    assert issue.remediation == "npm install axios"
    assert [warning.kind for warning in result.warnings] == ["missing-context"]
    assert result.issues[IssueKind.PHANTOM] == []


def test_phantom_with_provider_chain(tmp_path):
    manifest = _manifest(tmp_path, dependencies={"express": "^4.18.0"})
    registry = _installed(
        tmp_path,
        ("express", "4.18.2", {"debug": "2.6.9"}),
        ("debug", "2.6.9", {}),
    )
    usages = {"express": _uses("src/server.js"), "debug": _uses("src/server.js", "src/log.js")}

    result = DependencyClassifier(manifest, registry).classify(usages)

    assert result.used == ["express"]
    [issue] = result.issues[IssueKind.PHANTOM]
    assert issue.name == "debug"
    assert issue.severity == "low"
    assert issue.details["version"] == "2.6.9"
    assert issue.details["used_in"] == ["src/log.js", "src/server.js"]
    assert issue.details["provided_by"] == ["express", "debug"]
    assert result.issues[IssueKind.MISSING] == []


def test_types_packages(tmp_path):
    manifest = _manifest(
        tmp_path,
        devDependencies={"@types/react": "^18.0.0", "@types/node": "^20.0.0", "@types/jquery": "^3.0.0"},
    )
    usages = {"react": _uses("src/App.tsx")}

    result = DependencyClassifier(manifest, _installed(tmp_path)).classify(
        usages, builtin_imported=True
    )

    assert sorted(result.used) == ["@types/node", "@types/react"]
    assert [issue.name for issue in result.issues[IssueKind.UNUSED]] == ["@types/jquery"]
    # react itself is undeclared and only typed
    assert [issue.name for issue in result.issues[IssueKind.MISSING]] == ["react"]
    [misplaced] = result.issues[IssueKind.MISPLACED]
    assert misplaced.details["types_package"] == "@types/react"


def test_indirect_scripts_and_config_usage(tmp_path):
    (tmp_path / ".eslintrc.json").write_text('{"plugins": ["react-hooks"], "extends": ["airbnb"]}')
    manifest = _manifest(
        tmp_path,
        devDependencies={
            "@babel/preset-env": "^7.0.0",
            "@babel/core": "^7.0.0",
            "eslint-plugin-react-hooks": "^4.0.0",
            "eslint-config-airbnb": "^19.0.0",
            "rimraf": "^5.0.0",
            "vite-plugin-pwa": "^0.17.0",
        },
        scripts={"clean": "rimraf dist && echo done"},
    )
    usages = {"@babel/core": _uses("babel.config.js")}

    result = DependencyClassifier(manifest, _installed(tmp_path)).classify(usages)

    assert sorted(result.used) == [
        "@babel/core",
        "@babel/preset-env",
        "eslint-config-airbnb",
        "eslint-plugin-react-hooks",
        "rimraf",
    ]
    [unused] = result.issues[IssueKind.UNUSED]
    assert unused.name == "vite-plugin-pwa"
    assert unused.confidence == "medium"
    assert unused.severity == "low"


@pytest.mark.parametrize("scope,expected", [
    ("all", ["jest", "lodash"]),
    ("production", ["lodash"]),
    ("development", ["jest"]),
])
def test_scope_filters_unused(tmp_path, scope, expected):
    manifest = _manifest(
        tmp_path, dependencies={"lodash": "^4.0.0"}, devDependencies={"jest": "^29.0.0"}
    )
    classifier = DependencyClassifier(manifest, _installed(tmp_path), AnalysisOptions(scope=scope))

    result = classifier.classify({})

    assert sorted(issue.name for issue in result.issues[IssueKind.UNUSED]) == expected


def test_exclude_dev(tmp_path):
    manifest = _manifest(
        tmp_path, dependencies={"lodash": "^4.0.0"}, devDependencies={"jest": "^29.0.0"}
    )
    options = AnalysisOptions(include_dev=False)

    result = DependencyClassifier(manifest, _installed(tmp_path), options).classify({})

    assert [issue.name for issue in result.issues[IssueKind.UNUSED]] == ["lodash"]


def test_dev_dependency_used_at_runtime_is_misplaced(tmp_path):
    manifest = _manifest(tmp_path, devDependencies={"dayjs": "^1.11.0", "vitest": "^1.0.0"})
    usages = {
        "dayjs": _uses("src/date.js", "src/date.test.js"),
        "vitest": _uses("src/date.test.js"),
    }

    result = DependencyClassifier(manifest, _installed(tmp_path)).classify(usages)

    [issue] = result.issues[IssueKind.MISPLACED]
    assert issue.name == "dayjs"
    assert [usage.file for usage in issue.evidence] == ["src/date.js"]


def test_self_reference_is_ignored(tmp_path):
    manifest = _manifest(tmp_path, name="my-lib")
    result = DependencyClassifier(manifest, _installed(tmp_path)).classify(
        {"my-lib": _uses("examples/demo.js")}
    )
    assert result.issues[IssueKind.MISSING] == []
    assert result.issues[IssueKind.PHANTOM] == []


def test_categorize_dependency():
    assert categorize_dependency("react-dom") == "frontend"
    assert categorize_dependency("@types/react") == "frontend"
    assert categorize_dependency("fastify") == "backend"
    assert categorize_dependency("eslint-plugin-import") == "devtools"
    assert categorize_dependency("@testing-library/jest-dom") == "testing"
    assert categorize_dependency("@types/node") == "build"
    assert categorize_dependency("chalk") == "other"


def test_categorize_dependencies_counts_every_category():
    categories = categorize_dependencies([
        DeclaredDependency("express", "^4.18.0", DeclarationType.PRODUCTION),
        DeclaredDependency("koa", "^2.0.0", DeclarationType.PRODUCTION),
        DeclaredDependency("mocha", "^10.0.0", DeclarationType.DEVELOPMENT),
    ])

    assert list(categories) == ["frontend", "backend", "devtools", "testing", "build", "other"]
    assert categories["backend"]["count"] == 2
    assert categories["testing"]["packages"] == [
        {"name": "mocha", "version": "^10.0.0", "type": "development"},
    ]
    assert categories["frontend"] == {"count": 0, "packages": []}


def test_functional_duplicates(tmp_path):
    manifest = _manifest(
        tmp_path,
        dependencies={"dayjs": "^1.11.0", "moment": "^2.29.0", "lodash": "^4.17.21", "axios": "^1.0.0"},
        devDependencies={"date-fns": "^3.0.0"},
    )
    usages = {name: _uses("src/index.js") for name in ("dayjs", "moment", "lodash", "axios", "date-fns")}

    result = DependencyClassifier(manifest, _installed(tmp_path)).classify(usages)

    [issue] = result.issues[IssueKind.DUPLICATE]
    assert issue.name == "moment + date-fns + dayjs"
    assert issue.severity == "medium"
    assert issue.details["category"] == "other"
    assert issue.details["packages"][1] == {
        "name": "date-fns", "version": "^3.0.0", "type": "devDependencies",
    }


def test_issues_carry_category(tmp_path):
    manifest = _manifest(tmp_path, dependencies={"express": "^4.18.0"})
    usages = {"vue": _uses("src/main.js")}

    result = DependencyClassifier(manifest, _installed(tmp_path)).classify(usages)

    assert result.issues[IssueKind.UNUSED][0].details["category"] == "backend"
    assert result.issues[IssueKind.MISSING][0].details["category"] == "frontend"
