"""Tests for manifest loading."""

import json

import pytest

from dependency_audit.manifest import ManifestError, load_manifest
from dependency_audit.models import DeclarationType


def _write(tmp_path, data):
    (tmp_path / "package.json").write_text(
        data if isinstance(data, str) else json.dumps(data)
    )


def test_declarations_by_bucket(tmp_path):
    _write(tmp_path, {
        "name": "web",
        "version": "1.0.0",
        "dependencies": {"react": "^18.2.0"},
        "devDependencies": {"jest": "^29.0.0"},
        "peerDependencies": {"react-dom": ">=17"},
        "scripts": {"test": "jest --coverage", "bad": 3},
    })

    manifest = load_manifest(str(tmp_path))

    assert manifest.name == "web"
    assert manifest.get("react").declaration_type is DeclarationType.PRODUCTION
    assert manifest.get("jest").version_range == "^29.0.0"
    assert [dep.name for dep in manifest.of_type(DeclarationType.PEER)] == ["react-dom"]
    assert manifest.scripts == {"test": "jest --coverage"}
    assert manifest.warnings == []


def test_duplicate_declaration_keeps_first_bucket(tmp_path):
    _write(tmp_path, {
        "dependencies": {"lodash": "^4.17.21"},
        "devDependencies": {"lodash": "^4.0.0"},
    })

    manifest = load_manifest(str(tmp_path))

    assert len(manifest.all_dependencies()) == 1
    assert manifest.get("lodash").declaration_type is DeclarationType.PRODUCTION
    assert [warning.kind for warning in manifest.warnings] == ["duplicate-declaration"]


def test_non_object_bucket_is_a_warning(tmp_path):
    _write(tmp_path, {"dependencies": ["react"], "devDependencies": {"vite": "^5.0.0"}})

    manifest = load_manifest(str(tmp_path))

    assert manifest.is_declared("vite")
    assert not manifest.is_declared("react")
    assert [warning.kind for warning in manifest.warnings] == ["invalid-manifest"]


def test_missing_manifest_raises(tmp_path):
    with pytest.raises(ManifestError) as excinfo:
        load_manifest(str(tmp_path))
    assert excinfo.value.path.endswith("package.json")


@pytest.mark.parametrize("content", ["{ invalid", "[1, 2]"])
def test_unusable_manifest_raises(tmp_path, content):
    _write(tmp_path, content)
    with pytest.raises(ManifestError):
        load_manifest(str(tmp_path))
