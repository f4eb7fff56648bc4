"""Manifest persistence with a versioned schema.

Schema 2 (current)::

    schema_version: 2
    installation: {version, install_date, last_updated}
    modules: [{id, origin, version, install_date, last_updated, partial, source_path}]
    targets: [...]

Schema 1 documents (no ``schema_version``; ``modules`` as a list of
names or camelCase mappings; ``ides`` instead of ``targets``; camelCase
dates) are migrated once on load. Nothing past this module ever sees
the old shape.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

import yaml

from modsync.errors import ManifestError
from modsync.models.installation import Manifest, ModuleRecord, Origin

MANIFEST_FILE = "manifest.yaml"
SCHEMA_VERSION = 2


def load_manifest(path: str | Path) -> Manifest | None:
    """Load and migrate a manifest. Returns None if the file does not exist.

    Raises:
        ManifestError: If the document cannot be read or understood.
    """
    path = Path(path)
    if not path.exists():
        return None
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ManifestError(f"Cannot read manifest {path}: {e}") from e
    if not isinstance(data, dict):
        raise ManifestError(f"Manifest {path} is not a mapping")
    return manifest_from_dict(migrate(data))


def save_manifest(path: str | Path, manifest: Manifest) -> None:
    """Write the manifest atomically."""
    path = Path(path)
    text = yaml.safe_dump(manifest_to_dict(manifest), sort_keys=False, default_flow_style=False)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".manifest-", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp, path)
    except OSError as e:
        Path(tmp).unlink(missing_ok=True)
        raise ManifestError(f"Cannot write manifest {path}: {e}") from e


def migrate(data: dict) -> dict:
    """Bring any known manifest shape up to the current schema."""
    version = data.get("schema_version", 1)
    if version == SCHEMA_VERSION:
        return data
    if version == 1:
        return _migrate_v1(data)
    raise ManifestError(f"Unsupported manifest schema_version {version!r}")


def _migrate_v1(data: dict) -> dict:
    installation = data.get("installation") or {}
    install_date = _first(installation, "installDate", "install_date")
    last_updated = _first(installation, "lastUpdated", "last_updated") or install_date

    modules = []
    for item in data.get("modules") or []:
        if isinstance(item, str):
            modules.append({"id": item, "install_date": install_date, "last_updated": last_updated})
        elif isinstance(item, dict):
            modules.append({
                "id": _first(item, "id", "name"),
                "origin": _first(item, "origin", "source") or Origin.BUILT_IN.value,
                "version": item.get("version"),
                "install_date": _first(item, "installDate", "install_date") or install_date,
                "last_updated": _first(item, "lastUpdated", "last_updated") or last_updated,
                "partial": bool(item.get("partial", False)),
                "source_path": _first(item, "sourcePath", "source_path"),
            })

    return {
        "schema_version": SCHEMA_VERSION,
        "installation": {
            "version": str(installation.get("version") or ""),
            "install_date": install_date,
            "last_updated": last_updated,
        },
        "modules": modules,
        "targets": list(data.get("ides") or data.get("targets") or []),
    }


def manifest_to_dict(manifest: Manifest) -> dict:
    return {
        "schema_version": SCHEMA_VERSION,
        "installation": {
            "version": manifest.version,
            "install_date": manifest.install_date,
            "last_updated": manifest.last_updated,
        },
        "modules": [
            {
                "id": m.id,
                "origin": m.origin.value,
                "version": m.version,
                "install_date": m.install_date,
                "last_updated": m.last_updated,
                "partial": m.partial,
                "source_path": m.source_path,
            }
            for m in manifest.modules
        ],
        "targets": list(manifest.targets),
    }


def manifest_from_dict(data: dict) -> Manifest:
    installation = data.get("installation") or {}
    modules = []
    for item in data.get("modules") or []:
        if not isinstance(item, dict) or not item.get("id"):
            raise ManifestError(f"Malformed module entry in manifest: {item!r}")
        try:
            origin = Origin(item.get("origin") or Origin.BUILT_IN.value)
        except ValueError as e:
            raise ManifestError(f"Unknown module origin {item.get('origin')!r}") from e
        version = item.get("version")
        modules.append(
            ModuleRecord(
                id=str(item["id"]),
                origin=origin,
                version=str(version) if version is not None else None,
                install_date=_text(item.get("install_date")),
                last_updated=_text(item.get("last_updated")),
                partial=bool(item.get("partial", False)),
                source_path=str(item.get("source_path") or ""),
            )
        )
    return Manifest(
        version=str(installation.get("version") or ""),
        install_date=_text(installation.get("install_date")),
        last_updated=_text(installation.get("last_updated")),
        modules=modules,
        targets=[str(t) for t in data.get("targets") or []],
    )


def _first(data: dict, *keys):
    for key in keys:
        if data.get(key):
            return data[key]
    return ""


def _text(value) -> str:
    # Hand-edited YAML may carry unquoted timestamps, which load as datetimes
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value or "")
