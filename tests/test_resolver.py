"""Tests for dependency resolution and partial modules."""

import tempfile
from pathlib import Path

import pytest
import yaml

from modsync.errors import SourceError
from modsync.resolver.dependency_resolver import DependencyResolver
from modsync.sources.provider import ModuleSourceProvider


def _write_module(root: Path, module_id: str, files: dict[str, str]) -> Path:
    mod = root / module_id
    mod.mkdir(parents=True)
    (mod / "module.yaml").write_text(yaml.safe_dump({"code": module_id, "name": module_id.title()}))
    for rel, text in files.items():
        path = mod / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text)
    return mod


def _sources(root: Path) -> None:
    _write_module(root, "core", {"tasks/index.xml": '<task name="Index" description="Index docs">'})
    _write_module(
        root,
        "alpha",
        {
            "workflows/build/workflow.yaml": (
                "name: build\ndescription: Build it\n"
                "instructions: '{install-root}/beta/tasks/review.xml'\n"
            ),
            "agents/dev.md": "Load {install-root}/core/tasks/index.xml.",
        },
    )
    _write_module(
        root,
        "beta",
        {
            "tasks/review.xml": '<task name="Review">Uses {install-root}/gamma/workflows/qa/steps/one.md</task>',
            "tasks/other.xml": '<task name="Other">',
            "agents/reviewer.md": "not referenced",
        },
    )
    _write_module(
        root,
        "gamma",
        {
            "workflows/qa/workflow.md": "---\nname: qa\ndescription: QA\n---\n",
            "workflows/qa/steps/one.md": "step one",
            "workflows/other/workflow.md": "---\nname: other\ndescription: Other\n---\n",
        },
    )


def test_requested_modules_get_every_file():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        _sources(root)
        resolution = DependencyResolver(ModuleSourceProvider(root)).resolve(["core"])
        assert resolution.requested_ids == ["core"]
        assert resolution.by_module["core"].files == {"tasks/index.xml"}
        assert resolution.partial_ids == []


def test_cross_module_reference_creates_partial_module():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        _sources(root)
        resolution = DependencyResolver(ModuleSourceProvider(root)).resolve(["core", "alpha"])

        assert resolution.requested_ids == ["alpha", "core"]
        assert resolution.partial_ids == ["beta", "gamma"]
        assert resolution.by_module["beta"].files == {"tasks/review.xml"}
        assert resolution.by_module["beta"].partial


def test_workflow_reference_pulls_whole_workflow_directory():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        _sources(root)
        resolution = DependencyResolver(ModuleSourceProvider(root)).resolve(["alpha"])
        assert resolution.by_module["gamma"].files == {"workflows/qa/workflow.md", "workflows/qa/steps/one.md"}


def test_reference_into_requested_module_adds_nothing():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        _sources(root)
        resolution = DependencyResolver(ModuleSourceProvider(root)).resolve(["alpha", "beta", "gamma"])
        assert resolution.partial_ids == []
        assert "tasks/other.xml" in resolution.by_module["beta"].files


def test_reference_into_installed_module_is_skipped():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        _sources(root)
        resolution = DependencyResolver(ModuleSourceProvider(root)).resolve(["alpha"], installed_full=["beta", "core"])
        assert "beta" not in resolution.by_module
        assert "core" not in resolution.by_module
        assert resolution.partial_ids == []


def test_frontmatter_dependencies():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        _sources(root)
        _write_module(
            root,
            "delta",
            {"agents/a.md": "---\nname: a\ndependencies:\n  - beta/tasks/other.xml\n  - '{install-root}/core/tasks/index.xml'\n---\n"},
        )
        resolution = DependencyResolver(ModuleSourceProvider(root)).resolve(["delta"])
        assert resolution.by_module["beta"].files == {"tasks/other.xml"}
        assert resolution.by_module["core"].files == {"tasks/index.xml"}


def test_dangling_references_are_reported():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        _write_module(
            root,
            "alpha",
            {"agents/a.md": "{install-root}/nowhere/tasks/x.xml and {install-root}/alpha/tasks/missing.xml"},
        )
        resolution = DependencyResolver(ModuleSourceProvider(root)).resolve(["alpha"])
        assert resolution.unresolved == ["nowhere/tasks/x.xml"]
        assert list(resolution.by_module) == ["alpha"]


def test_missing_requested_module_is_fatal():
    with tempfile.TemporaryDirectory() as tmpdir:
        with pytest.raises(SourceError):
            DependencyResolver(ModuleSourceProvider(tmpdir)).resolve(["ghost"])
