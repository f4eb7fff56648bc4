"""File-based module cache keyed by module id.

Layout under the cache directory::

    cache-manifest.yaml     index: module id -> hashes, timestamp, metadata
    <module-id>/            verbatim copy of the module source
"""

from __future__ import annotations

import logging
import shutil
from datetime import datetime, timezone
from pathlib import Path

import yaml

from modsync.catalog.tables import atomic_write_text
from modsync.config import DEFAULT_SKIP_DIRS
from modsync.models.installation import CacheEntry
from modsync.utils.file_scanner import SKIP_FILES
from modsync.utils.hashing import hash_path
from modsync.utils.naming import validate_module_id

logger = logging.getLogger(__name__)

# Metadata keys that describe the caller's machine rather than the module
_LOCAL_METADATA_KEYS = ("source_path", "sourcePath")


class ModuleCache:
    """Content cache for module sources that are not part of the distribution."""

    INDEX_FILE = "cache-manifest.yaml"

    def __init__(self, cache_dir: str | Path, skip_dirs=DEFAULT_SKIP_DIRS):
        self.cache_dir = Path(cache_dir)
        self.index_path = self.cache_dir / self.INDEX_FILE
        self.skip_dirs = frozenset(skip_dirs)
        self.copies_made = 0
        self._index: dict[str, dict] = self._load_index()

    def store(self, module_id: str, source_path: str | Path, metadata: dict | None = None) -> CacheEntry:
        """Cache a module source, copying only when its content changed.

        A hit costs two hash computations (source and cached copy) and no
        copy. A cached copy whose hash drifted from the index is refreshed.
        """
        validate_module_id(module_id)
        source_path = Path(source_path)
        source_hash = hash_path(source_path, self.skip_dirs)
        target = self._entry_dir(module_id)

        existing = self._index.get(module_id)
        if existing and existing.get("source_hash") == source_hash and target.is_dir():
            if hash_path(target, self.skip_dirs) == existing.get("cache_hash"):
                logger.debug("Cache hit for %s", module_id)
                return _dict_to_entry(module_id, existing, target)
            logger.warning("Cached copy of %s does not match its index; refreshing", module_id)

        if target.exists():
            shutil.rmtree(target)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        shutil.copytree(
            source_path,
            target,
            ignore=shutil.ignore_patterns(*self.skip_dirs, *SKIP_FILES),
        )
        self.copies_made += 1
        logger.info("Cached %s from %s", module_id, source_path)

        cache_hash = hash_path(target, self.skip_dirs)
        if cache_hash != source_hash:
            # Only possible if the source changed while it was being copied
            logger.warning("Source of %s changed during caching", module_id)

        self._index[module_id] = {
            "source_hash": source_hash,
            "cache_hash": cache_hash,
            "cached_at": datetime.now(timezone.utc).isoformat(),
            "metadata": {
                k: v for k, v in (metadata or {}).items() if k not in _LOCAL_METADATA_KEYS
            },
        }
        self._save_index()
        return _dict_to_entry(module_id, self._index[module_id], target)

    def get(self, module_id: str) -> CacheEntry | None:
        """Return the cache entry for a module, or None.

        An index row whose directory vanished is dropped. A copy whose hash
        no longer matches is returned, but flagged so the next ``store``
        re-copies it.
        """
        data = self._index.get(module_id)
        if data is None:
            return None

        target = self._entry_dir(module_id)
        if not target.is_dir():
            logger.info("Cache directory for %s is gone; dropping index entry", module_id)
            del self._index[module_id]
            self._save_index()
            return None

        if hash_path(target, self.skip_dirs) != data.get("cache_hash"):
            logger.warning("Cache copy of %s is corrupted; it will be refreshed", module_id)
            data["source_hash"] = ""
            self._save_index()

        return _dict_to_entry(module_id, data, target)

    def remove(self, module_id: str) -> bool:
        """Delete a cached module. Returns True if anything was removed."""
        target = self._entry_dir(module_id)
        found = module_id in self._index or target.exists()
        if target.exists():
            shutil.rmtree(target)
        if self._index.pop(module_id, None) is not None:
            self._save_index()
        return found

    def reconcile_against(self, keep_ids) -> list[str]:
        """Prune every cached module not in ``keep_ids``; return the pruned ids."""
        keep = set(keep_ids)
        orphans = set(self._index) - keep
        if self.cache_dir.is_dir():
            orphans |= {
                p.name for p in self.cache_dir.iterdir() if p.is_dir() and p.name not in keep
            }
        for module_id in sorted(orphans):
            logger.info("Pruning cached module %s", module_id)
            self.remove(module_id)
        return sorted(orphans)

    def list_entries(self) -> list[CacheEntry]:
        return [
            _dict_to_entry(mid, data, self._entry_dir(mid))
            for mid, data in sorted(self._index.items())
        ]

    def _entry_dir(self, module_id: str) -> Path:
        return self.cache_dir / module_id

    def _load_index(self) -> dict[str, dict]:
        if not self.index_path.exists():
            return {}
        try:
            with open(self.index_path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Cache index %s is unreadable, starting empty: %s", self.index_path, e)
            return {}
        modules = data.get("modules") if isinstance(data, dict) else None
        if not isinstance(modules, dict):
            logger.warning("Cache index %s has an unexpected shape, starting empty", self.index_path)
            return {}
        return {str(k): v for k, v in modules.items() if isinstance(v, dict)}

    def _save_index(self):
        atomic_write_text(self.index_path, yaml.safe_dump({"modules": self._index}, sort_keys=True))


def _dict_to_entry(module_id: str, data: dict, path: Path) -> CacheEntry:
    return CacheEntry(
        module_id=module_id,
        source_hash=data.get("source_hash", ""),
        cache_hash=data.get("cache_hash", ""),
        cached_at=data.get("cached_at", ""),
        path=str(path),
        metadata=dict(data.get("metadata") or {}),
    )
