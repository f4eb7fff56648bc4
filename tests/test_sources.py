"""Tests for the module source provider and post-install hooks."""

import logging
import tempfile
from pathlib import Path

import pytest
import yaml

from modsync.errors import SourceError
from modsync.models.installation import Origin
from modsync.sources.hooks import HookContext, HookRunner
from modsync.sources.provider import ModuleSource, ModuleSourceProvider, read_descriptor


def _write_module(root: Path, module_id: str, files: dict[str, str], **descriptor) -> Path:
    """Lay out a module source tree under ``root``."""
    mod = root / module_id
    mod.mkdir(parents=True)
    data = {"code": module_id, "name": module_id.title(), "version": "1.0.0"}
    data.update(descriptor)
    (mod / "module.yaml").write_text(yaml.safe_dump(data))
    for rel, text in files.items():
        path = mod / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text)
    return mod


def _context(root: Path, module_id: str) -> HookContext:
    return HookContext(
        project_root=root,
        install_root=root / "_modsync",
        module_id=module_id,
        module_path=root / "_modsync" / module_id,
        module_config={"answer": 42},
    )


def test_list_available_uses_descriptor_code():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        _write_module(root, "core", {})
        _write_module(root, "dir_name", {}, code="bmm", description="Method")
        (root / "not_a_module").mkdir()

        provider = ModuleSourceProvider(root)
        available = provider.list_available()
        assert [s.module_id for s in available] == ["bmm", "core"]
        bmm = provider.get("bmm")
        assert bmm.path == root / "dir_name"
        assert bmm.description == "Method"
        assert bmm.version == "1.0.0"


def test_lookup_order_custom_external_builtin():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        _write_module(root / "builtin", "shared", {})
        custom = _write_module(root / "custom", "shared", {})
        external = _write_module(root / "external", "ext", {})

        provider = ModuleSourceProvider(
            root / "builtin",
            custom_paths={"shared": custom},
            external_paths={"ext": external},
        )
        assert provider.get("shared").origin is Origin.CUSTOM
        assert provider.get("ext").origin is Origin.EXTERNAL
        assert provider.locate("missing") is None
        with pytest.raises(SourceError):
            provider.get("missing")


def test_missing_custom_path_falls_through():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        _write_module(root, "core", {})
        provider = ModuleSourceProvider(root, custom_paths={"core": root / "gone"})
        assert provider.get("core").origin is Origin.BUILT_IN


def test_installable_files_skip_source_only_content():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        mod = _write_module(
            root,
            "bmm",
            {
                "agents/pm.md": '<agent name="John" title="PM">',
                "agents/local.md": '<agent name="L" title="Local" localskip="true">',
                "agents/pm.agent.yaml": "agent: {}",
                "config.yaml": "template: true",
                "custom.yaml": "code: bmm",
                "_module-installer/installer.py": "def install(ctx): return True",
                "sub-modules/x/readme.md": "nested",
                "tasks/review.xml": "<task/>",
                "workflows/plan/config.yaml": "kept: true",
            },
        )
        provider = ModuleSourceProvider(root)
        files = provider.installable_files(provider.get("bmm"))
        assert files == ["agents/pm.md", "tasks/review.xml", "workflows/plan/config.yaml"]
        assert mod.is_dir()


def test_descriptor_fallback_locations():
    with tempfile.TemporaryDirectory() as tmpdir:
        mod = Path(tmpdir) / "mod"
        (mod / "_module-installer").mkdir(parents=True)
        (mod / "_module-installer" / "custom.yaml").write_text("code: mod\nname: From Installer\n")
        assert read_descriptor(mod)["name"] == "From Installer"
        assert read_descriptor(Path(tmpdir)) == {}


def test_bad_descriptor_raises():
    with tempfile.TemporaryDirectory() as tmpdir:
        mod = Path(tmpdir) / "mod"
        mod.mkdir()
        (mod / "module.yaml").write_text("- not\n- a mapping\n")
        with pytest.raises(SourceError):
            read_descriptor(mod)


def test_config_defaults_from_descriptor():
    descriptor = {
        "code": "docs",
        "name": "Docs",
        "output_folder": {"prompt": "Where?", "default": "docs", "result": "{project-root}/{value}"},
        "sprint_dir": {"prompt": "Sprints?", "default": "{output_folder}/sprints"},
        "project_title": {"prompt": "Title?", "default": "{directory_name}"},
        "greeting": {"prompt": "Greeting?", "default": "Hello {user_name}"},
        "max_items": {"prompt": "How many?", "default": 5, "result": "{value}"},
        "schema": {"result": "v2"},
        "reviewer": {"prompt": "Who reviews?", "result": "{value}"},
    }
    with tempfile.TemporaryDirectory() as tmpdir:
        source = ModuleSource("docs", Path(tmpdir), Origin.BUILT_IN, descriptor)
        project = Path(tmpdir) / "my-app"

        values = source.config_defaults(project, {"user_name": "Ada"})
        assert values == {
            "output_folder": "{project-root}/docs",
            "sprint_dir": "{project-root}/docs/sprints",
            "project_title": "my-app",
            "greeting": "Hello Ada",
            "max_items": 5,
            "schema": "v2",
        }

        supplied = source.config_defaults(project, {"output_folder": "out"})
        assert supplied["sprint_dir"] == "out/sprints"
        assert supplied["greeting"] == "Hello {user_name}"


def test_module_installer_hook_runs():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        _write_module(
            root / "src",
            "bmm",
            {
                "_module-installer/installer.py": (
                    "def install(context):\n"
                    "    context.module_path.mkdir(parents=True, exist_ok=True)\n"
                    "    (context.module_path / 'hook.txt').write_text(str(context.module_config['answer']))\n"
                    "    return True\n"
                ),
            },
        )
        source = ModuleSourceProvider(root / "src").get("bmm")
        warning = HookRunner().run(source, _context(root, "bmm"))
        assert warning is None
        assert (root / "_modsync" / "bmm" / "hook.txt").read_text() == "42"


def test_failing_hook_is_a_warning(caplog):
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        _write_module(root / "src", "bmm", {"_module-installer/installer.py": "def install(context):\n    raise RuntimeError('boom')\n"})
        source = ModuleSourceProvider(root / "src").get("bmm")
        with caplog.at_level(logging.WARNING):
            warning = HookRunner().run(source, _context(root, "bmm"))
        assert "boom" in warning
        assert "bmm" in caplog.text


def test_registered_hook_and_false_return():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        _write_module(root / "src", "core", {})
        source = ModuleSourceProvider(root / "src").get("core")
        runner = HookRunner()
        calls = []
        runner.register("core", lambda ctx: calls.append(ctx.module_id))
        assert runner.run(source, _context(root, "core")) is None
        assert calls == ["core"]

        runner.register("core", lambda ctx: False)
        assert "reported failure" in runner.run(source, _context(root, "core"))


def test_module_without_hook():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        _write_module(root, "core", {})
        source = ModuleSourceProvider(root).get("core")
        assert HookRunner().run(source, _context(root, "core")) is None
