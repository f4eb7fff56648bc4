"""Tests for the manifest store and the state detector."""

import tempfile
from pathlib import Path

import pytest
import yaml

from modsync.config import ModsyncConfig
from modsync.errors import ManifestError
from modsync.models.installation import Manifest, ModuleRecord, Origin
from modsync.sources.provider import ModuleSourceProvider
from modsync.state.detector import StateDetector
from modsync.state.manifest_store import (
    MANIFEST_FILE,
    SCHEMA_VERSION,
    load_manifest,
    manifest_from_dict,
    migrate,
    save_manifest,
)


def _manifest() -> Manifest:
    return Manifest(
        version="0.4.0",
        install_date="2026-01-01T00:00:00+00:00",
        last_updated="2026-02-01T00:00:00+00:00",
        modules=[
            ModuleRecord(id="core", version="1.0.0", install_date="2026-01-01", last_updated="2026-02-01"),
            ModuleRecord(id="mine", origin=Origin.CUSTOM, partial=False, source_path="/src/mine"),
        ],
        targets=["claude-code"],
    )


def test_save_and_load_round_trip():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "_config" / MANIFEST_FILE
        save_manifest(path, _manifest())
        assert load_manifest(path) == _manifest()
        assert yaml.safe_load(path.read_text())["schema_version"] == SCHEMA_VERSION


def test_missing_manifest_is_none():
    assert load_manifest("/nonexistent/manifest.yaml") is None


def test_migrate_schema_1_name_list():
    data = {
        "installation": {"version": "6.0.0", "installDate": "2025-05-01T10:00:00Z", "lastUpdated": "2025-06-01T10:00:00Z"},
        "modules": ["core", "bmm"],
        "ides": ["cursor"],
    }
    migrated = migrate(data)
    assert migrated["schema_version"] == SCHEMA_VERSION
    assert migrated["installation"]["install_date"] == "2025-05-01T10:00:00Z"
    assert [m["id"] for m in migrated["modules"]] == ["core", "bmm"]
    assert migrated["modules"][0]["last_updated"] == "2025-06-01T10:00:00Z"
    assert migrated["targets"] == ["cursor"]


def test_migrate_schema_1_module_mappings():
    data = {
        "installation": {"version": "6.0.0", "installDate": "2025-05-01"},
        "modules": [{"name": "mine", "source": "custom", "sourcePath": "/x", "installDate": "2025-04-01"}],
    }
    manifest = manifest_from_dict(migrate(data))
    record = manifest.modules[0]
    assert record.id == "mine"
    assert record.origin is Origin.CUSTOM
    assert record.source_path == "/x"
    assert record.install_date == "2025-04-01"
    assert manifest.last_updated == "2025-05-01"


def test_unquoted_yaml_dates_load_as_text():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / MANIFEST_FILE
        path.write_text(
            "schema_version: 2\ninstallation:\n  version: 0.4.0\n  install_date: 2025-05-01 10:00:00\n"
            "modules: []\ntargets: []\n"
        )
        assert load_manifest(path).install_date.startswith("2025-05-01")


def test_unknown_schema_raises():
    with pytest.raises(ManifestError):
        migrate({"schema_version": 99})


def test_bad_manifest_raises():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / MANIFEST_FILE
        path.write_text("modules: [{origin: built-in}]\nschema_version: 2\n")
        with pytest.raises(ManifestError):
            load_manifest(path)


def test_detect_empty_root():
    with tempfile.TemporaryDirectory() as tmpdir:
        state = StateDetector().detect(Path(tmpdir) / "_modsync")
        assert not state.installed
        assert state.modules == []


def test_detect_from_manifest():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir) / "_modsync"
        save_manifest(root / "_config" / MANIFEST_FILE, _manifest())
        state = StateDetector().detect(root)
        assert state.installed
        assert state.from_manifest
        assert state.version == "0.4.0"
        assert state.module_ids == ["core", "mine"]
        assert state.targets == ["claude-code"]


def test_detect_falls_back_to_directory_scan():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir) / "_modsync"
        (root / "core").mkdir(parents=True)
        (root / "core" / "config.yaml").write_text("user_name: Ada\n")
        (root / "beta").mkdir()
        (root / "beta" / ".partial").write_text("partial")
        (root / "docs").mkdir()

        state = StateDetector().detect(root)
        assert state.installed
        assert not state.from_manifest
        assert state.module_ids == ["beta", "core"]
        assert state.module("beta").partial


def test_detect_survives_corrupt_manifest():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir) / "_modsync"
        (root / "_config").mkdir(parents=True)
        (root / "_config" / MANIFEST_FILE).write_text("{ not yaml")
        (root / "core").mkdir()
        (root / "core" / "config.yaml").write_text("{}\n")

        state = StateDetector().detect(root)
        assert state.manifest_error
        assert state.module_ids == ["core"]


def test_detect_flags_orphaned_modules():
    with tempfile.TemporaryDirectory() as tmpdir:
        tmp = Path(tmpdir)
        sources = tmp / "sources"
        (sources / "core").mkdir(parents=True)
        (sources / "core" / "module.yaml").write_text("code: core\n")
        root = tmp / "_modsync"
        save_manifest(root / "_config" / MANIFEST_FILE, _manifest())

        state = StateDetector(ModsyncConfig(), ModuleSourceProvider(sources)).detect(root)
        assert state.orphaned == ["mine"]
