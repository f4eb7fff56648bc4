"""Tests for the flat naming utility."""

import pytest

from modsync.errors import NamingError
from modsync.models.installation import ArtifactKind
from modsync.utils.naming import (
    ArtifactId,
    artifact_id_for_path,
    file_type,
    installed_path_for,
    parse_flat_name,
    to_flat_name,
    validate_module_id,
)


def test_flat_name_format():
    assert to_flat_name("bmm", ArtifactKind.AGENT, "pm") == "modsync-bmm-pm.agent.md"
    assert to_flat_name("core", ArtifactKind.TASK, "review") == "modsync-core-review.task.md"


def test_nested_names_round_trip():
    cases = [
        ArtifactId("bmm", ArtifactKind.WORKFLOW, "plan/create-prd"),
        ArtifactId("cis", ArtifactKind.TOOL, "a/b/c.d"),
        ArtifactId("my_mod", ArtifactKind.AGENT, "tech-writer"),
    ]
    for artifact in cases:
        flat = to_flat_name(artifact.module, artifact.kind, artifact.name)
        assert parse_flat_name(flat) == artifact


def test_custom_prefix():
    flat = to_flat_name("bmm", ArtifactKind.TASK, "x", prefix="acme")
    assert flat == "acme-bmm-x.task.md"
    assert parse_flat_name(flat, prefix="acme").name == "x"


def test_invalid_module_ids():
    for bad in ["", "-lead", "trail-", "dou--ble", "dot.ted", "sp ace", "a/b"]:
        with pytest.raises(NamingError):
            validate_module_id(bad)
    assert validate_module_id("core_2") == "core_2"
    assert validate_module_id("game-dev") == "game-dev"


def test_hyphenated_module_ids_round_trip():
    flat = to_flat_name("game-dev", ArtifactKind.AGENT, "level-designer")
    assert flat == "modsync-game--dev-level-designer.agent.md"
    assert parse_flat_name(flat) == ArtifactId("game-dev", ArtifactKind.AGENT, "level-designer")

    nested = ArtifactId("a-b-c", ArtifactKind.WORKFLOW, "x-y/z")
    assert parse_flat_name(to_flat_name(nested.module, nested.kind, nested.name)) == nested
    assert artifact_id_for_path("game-dev/tasks/plan.md") == ArtifactId("game-dev", ArtifactKind.TASK, "plan")


def test_name_segments_cannot_contain_separator():
    with pytest.raises(NamingError):
        to_flat_name("bmm", ArtifactKind.TASK, "bad__name")
    with pytest.raises(NamingError):
        to_flat_name("bmm", ArtifactKind.TASK, "../escape")
    with pytest.raises(NamingError):
        to_flat_name("bmm", ArtifactKind.TASK, "-leading")


def test_parse_rejects_foreign_names():
    for bad in [
        "other-bmm-x.task.md",
        "modsync-bmm-x.md",
        "modsync-bmm.task.md",
        "modsync-bmm-a____b.task.md",
        "modsync-bmm---x.task.md",
    ]:
        with pytest.raises(NamingError):
            parse_flat_name(bad)


def test_artifact_id_for_installed_paths():
    assert artifact_id_for_path("bmm/agents/pm.md") == ArtifactId("bmm", ArtifactKind.AGENT, "pm")
    assert artifact_id_for_path("bmm/workflows/plan/prd/workflow.yaml") == ArtifactId(
        "bmm", ArtifactKind.WORKFLOW, "plan/prd"
    )
    assert artifact_id_for_path("core/tasks/review.xml") == ArtifactId("core", ArtifactKind.TASK, "review")
    assert artifact_id_for_path("bmm/workflows/plan/prd/steps/one.md") is None
    assert artifact_id_for_path("bmm/agents/data/list.csv") is None
    assert artifact_id_for_path("bmm/templates/doc.md") is None
    assert artifact_id_for_path("bmm/config.yaml") is None


def test_installed_path_for_is_inverse_of_artifact_id():
    for rel in ["bmm/agents/pm.md", "core/tasks/review.md", "bmm/workflows/plan/prd/workflow.md"]:
        assert installed_path_for(artifact_id_for_path(rel)) == rel


def test_file_type():
    assert file_type("bmm/agents/pm.md") == "agent"
    assert file_type("core/tasks/review.xml") == "task"
    assert file_type("bmm/templates/doc.md") == "md"
    assert file_type("bmm/data/logo.PNG") == "png"
    assert file_type("bmm/LICENSE") == ""
