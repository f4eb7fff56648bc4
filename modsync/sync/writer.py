"""Module writer — copy source files into the install root.

Text files with a known extension have the install-root placeholder
replaced by the install folder name; anything else is copied byte for
byte. Every write is atomic and lands in the run's write log.
"""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from pathlib import Path

import yaml

from modsync.config import ModsyncConfig
from modsync.errors import WriteError
from modsync.resolver.dependency_resolver import ArtifactSet
from modsync.state.detector import MODULE_CONFIG_FILE
from modsync.sync.write_log import WriteLog
from modsync.utils.file_scanner import is_text_file

logger = logging.getLogger(__name__)

CONFIG_HEADER = "# Generated by modsync. Values are reused on update; edit with care.\n"
PARTIAL_MARKER_TEXT = "Partial install: only artifacts referenced by other modules are present.\n"


class ModuleWriter:
    """Writes module content under one install root."""

    def __init__(self, install_root: str | Path, write_log: WriteLog, config: ModsyncConfig | None = None):
        self.install_root = Path(install_root)
        self.write_log = write_log
        self.config = config or ModsyncConfig()
        self.fallbacks: list[str] = []

    def write_module(self, artifacts: ArtifactSet) -> int:
        """Write every resolved file of one module; returns the count."""
        module_id = artifacts.module_id
        for rel in sorted(artifacts.files):
            self.write_file(artifacts.source.path / rel, f"{module_id}/{rel}", module_id)
        if artifacts.partial:
            self.write_bytes(
                f"{module_id}/{self.config.partial_marker}",
                PARTIAL_MARKER_TEXT.encode("utf-8"),
                module_id,
            )
        logger.info("Wrote %s (%d files%s)", module_id, len(artifacts.files), ", partial" if artifacts.partial else "")
        return len(artifacts.files)

    def write_file(self, src: Path, rel: str, module_id: str) -> None:
        """Copy one source file to ``rel``, substituting the placeholder in text."""
        try:
            data = src.read_bytes()
        except OSError as e:
            raise WriteError(f"Cannot read source file {src}: {e}") from e

        if is_text_file(src, self.config.text_extensions):
            try:
                text = data.decode("utf-8")
            except UnicodeDecodeError:
                logger.warning("%s is not valid UTF-8; copying it unchanged", src)
                self.fallbacks.append(rel)
            else:
                data = text.replace(self.config.placeholder, self.config.folder_name).encode("utf-8")

        self.write_bytes(rel, data, module_id)

    def write_module_config(self, module_id: str, values: dict) -> None:
        """Write a module's generated ``config.yaml``."""
        body = yaml.safe_dump(values, sort_keys=True, default_flow_style=False, allow_unicode=True)
        self.write_bytes(
            f"{module_id}/{MODULE_CONFIG_FILE}",
            (CONFIG_HEADER + body).encode("utf-8"),
            module_id,
        )

    def write_bytes(self, rel: str, data: bytes, module_id: str) -> None:
        dest = self.install_root / rel
        try:
            _atomic_write(dest, data)
        except OSError as e:
            raise WriteError(f"Cannot write {dest}: {e}") from e
        self.write_log.record(rel, module_id, hashlib.sha256(data).hexdigest())
        logger.debug("Wrote %s", rel)


def _atomic_write(dest: Path, data: bytes) -> None:
    dest.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=dest.parent, prefix=f".{dest.name}-", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp, dest)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise
