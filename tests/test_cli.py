"""Tests for the modsync command line."""

import tempfile
from pathlib import Path

import yaml
from click.testing import CliRunner

from modsync.cli import main
from modsync.state.manifest_store import load_manifest


def _sources(root: Path) -> Path:
    sources = root / "sources"
    files = {
        "core": {
            "module.yaml": {"code": "core", "name": "Core", "description": "Core module", "version": "1.0.0"},
            "agents/master.md": '<agent name="Master" title="Orchestrator">\n',
        },
        "docs": {
            "module.yaml": {"code": "docs", "name": "Docs", "description": "Docs module", "version": "0.2.0"},
            "tasks/publish.md": "---\nname: Publish\ndescription: Publish docs\n---\n",
        },
    }
    for module_id, entries in files.items():
        for rel, content in entries.items():
            path = sources / module_id / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(yaml.safe_dump(content) if isinstance(content, dict) else content)
    return sources


def _install(runner: CliRunner, project: Path, sources: Path, *args: str):
    return runner.invoke(
        main,
        ["install", str(project), "--source-root", str(sources), *args],
    )


def test_version():
    result = CliRunner().invoke(main, ["--version"])
    assert result.exit_code == 0
    assert "0.4.0" in result.output


def test_install_and_status():
    with tempfile.TemporaryDirectory() as tmpdir:
        tmp = Path(tmpdir)
        sources = _sources(tmp)
        project = tmp / "project"
        runner = CliRunner()

        result = _install(runner, project, sources, "-m", "core", "-m", "docs", "--set", "core.user_name=Ada")
        assert result.exit_code == 0, result.output
        assert "Done." in result.output
        manifest = load_manifest(project / "_modsync" / "_config" / "manifest.yaml")
        assert manifest.module_ids == ["core", "docs"]
        config = yaml.safe_load((project / "_modsync" / "docs" / "config.yaml").read_text())
        assert config == {"user_name": "Ada"}

        result = runner.invoke(main, ["status", str(project), "--source-root", str(sources)])
        assert result.exit_code == 0, result.output
        assert "core" in result.output
        assert "docs" in result.output


def test_update_prompts_for_confirmation():
    with tempfile.TemporaryDirectory() as tmpdir:
        tmp = Path(tmpdir)
        sources = _sources(tmp)
        project = tmp / "project"
        runner = CliRunner()
        assert _install(runner, project, sources, "-m", "core").exit_code == 0

        declined = runner.invoke(
            main, ["install", str(project), "--source-root", str(sources), "-m", "docs"], input="n\n"
        )
        assert declined.exit_code == 1
        assert not (project / "_modsync" / "docs").exists()

        accepted = runner.invoke(
            main, ["install", str(project), "--source-root", str(sources), "-m", "docs"], input="y\n"
        )
        assert accepted.exit_code == 0, accepted.output
        assert (project / "_modsync" / "docs" / "tasks" / "publish.md").is_file()


def test_no_update_refuses_without_prompting():
    with tempfile.TemporaryDirectory() as tmpdir:
        tmp = Path(tmpdir)
        sources = _sources(tmp)
        project = tmp / "project"
        runner = CliRunner()
        _install(runner, project, sources, "-m", "core")

        result = _install(runner, project, sources, "-m", "docs", "--no-update")
        assert result.exit_code == 1
        assert "left unchanged" in result.output


def test_install_unknown_module_fails():
    with tempfile.TemporaryDirectory() as tmpdir:
        tmp = Path(tmpdir)
        result = _install(CliRunner(), tmp / "project", _sources(tmp), "-m", "ghost")
        assert result.exit_code == 1
        assert "resolving" in result.output


def test_bad_setting_is_a_usage_error():
    with tempfile.TemporaryDirectory() as tmpdir:
        tmp = Path(tmpdir)
        result = _install(CliRunner(), tmp / "project", _sources(tmp), "-m", "core", "--set", "user_name=Ada")
        assert result.exit_code == 2


def test_modules_lists_available_sources():
    with tempfile.TemporaryDirectory() as tmpdir:
        sources = _sources(Path(tmpdir))
        result = CliRunner().invoke(main, ["modules", "--source-root", str(sources)])
        assert result.exit_code == 0, result.output
        assert "core" in result.output
        assert "docs" in result.output


def test_catalog_and_resolve():
    with tempfile.TemporaryDirectory() as tmpdir:
        tmp = Path(tmpdir)
        sources = _sources(tmp)
        project = tmp / "project"
        runner = CliRunner()
        _install(runner, project, sources, "-m", "core", "-m", "docs", "--update")

        result = runner.invoke(main, ["catalog", str(project), "--kind", "tasks"])
        assert result.exit_code == 0, result.output
        assert "(1 rows)" in result.output

        result = runner.invoke(main, ["resolve", str(project), "modsync-core-master.agent.md"])
        assert result.exit_code == 0, result.output
        assert "_modsync/core/agents/master.md" in result.output

        result = runner.invoke(main, ["resolve", str(project), "modsync-docs-missing.task.md"])
        assert result.exit_code == 1

        result = runner.invoke(main, ["resolve", str(project), "not-a-flat-name"])
        assert result.exit_code == 1


def test_cache_list_and_prune():
    with tempfile.TemporaryDirectory() as tmpdir:
        tmp = Path(tmpdir)
        sources = _sources(tmp)
        mine = tmp / "mine"
        (mine / "agents").mkdir(parents=True)
        (mine / "module.yaml").write_text("code: mine\nname: Mine\n")
        (mine / "agents" / "me.md").write_text('<agent name="Me" title="Mine">')
        project = tmp / "project"
        runner = CliRunner()

        result = _install(runner, project, sources, "-m", "core", "--custom", f"mine={mine}")
        assert result.exit_code == 0, result.output

        result = runner.invoke(main, ["cache", "list", str(project)])
        assert result.exit_code == 0
        assert "mine" in result.output

        result = runner.invoke(main, ["cache", "prune", str(project)])
        assert result.exit_code == 0
        assert "Nothing to prune" in result.output


def test_uninstall():
    with tempfile.TemporaryDirectory() as tmpdir:
        tmp = Path(tmpdir)
        sources = _sources(tmp)
        project = tmp / "project"
        runner = CliRunner()
        _install(runner, project, sources, "-m", "core")
        (project / "_modsync" / "core" / "notes.md").write_text("mine")

        result = runner.invoke(main, ["uninstall", str(project), "--yes"])

        assert result.exit_code == 0, result.output
        assert "Kept 1" in result.output
        assert (project / "_modsync" / "core" / "notes.md").read_text() == "mine"
        assert not (project / "_modsync" / "core" / "agents").exists()


def test_uninstall_without_install():
    with tempfile.TemporaryDirectory() as tmpdir:
        result = CliRunner().invoke(main, ["uninstall", str(Path(tmpdir) / "empty"), "--yes"])
        assert result.exit_code == 0
        assert "Nothing installed" in result.output
