"""Bridge credentials on disk.

A :class:`BridgeStore` keeps, per bridge id, the API username granted by
the bridge and the pinned certificate fingerprint in one YAML file::

    001788FFFE123456:
      username: 0123456789abcdef0123456789abcdef
      fingerprint: 3F:A1:...:07

Writes replace the file atomically (``<file>.tmp`` then ``os.replace``)
after copying the previous version to ``<file>.bak``; reads fall back to
the backup when the primary file is unusable.

Usage example::

    store = BridgeStore("~/.pyHueSync/bridges.yaml")
    store.update("001788FFFE123456", username="0123...")
    entry = store.get("001788FFFE123456")
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

logger = logging.getLogger(__name__)

#: Keys stored per bridge.
ENTRY_KEYS = ("username", "fingerprint")

_BACKUP_SUFFIX = ".bak"
_TMP_SUFFIX = ".tmp"


class BridgeStore:
    """Per-bridge credentials in a YAML file.

    Parameters
    ----------
    path:
        The YAML file.  ``~`` is expanded; parent directories are
        created on the first write.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self._path = Path(path).expanduser()
        self._backup_path = self._path.with_suffix(self._path.suffix + _BACKUP_SUFFIX)
        self._tmp_path = self._path.with_suffix(self._path.suffix + _TMP_SUFFIX)
        self._bridges: Optional[Dict[str, Dict[str, Any]]] = None

    def __repr__(self) -> str:
        return f"BridgeStore({str(self._path)!r})"

    @property
    def path(self) -> Path:
        return self._path

    @property
    def backup_path(self) -> Path:
        return self._backup_path

    # ---- entries -----------------------------------------------------

    def bridges(self) -> Dict[str, Dict[str, Any]]:
        """All entries by bridge id (loaded on first use)."""
        if self._bridges is None:
            self._bridges = self._load()
        return self._bridges

    def get(self, bridgeid: str) -> Dict[str, Any]:
        """The entry of *bridgeid*; empty when unknown."""
        return dict(self.bridges().get(bridgeid.upper(), {}))

    def update(self, bridgeid: str, **values: Optional[str]) -> None:
        """Set ``username`` and/or ``fingerprint`` of *bridgeid* and save.

        ``None`` values remove the key.  Nothing is written when the
        entry does not change.

        Raises
        ------
        ValueError
            For keys other than :data:`ENTRY_KEYS`.
        OSError
            If the file cannot be written.
        """
        unknown = set(values) - set(ENTRY_KEYS)
        if unknown:
            raise ValueError("unknown keys: %s" % ", ".join(sorted(unknown)))
        bridges = self.bridges()
        key = bridgeid.upper()
        entry = dict(bridges.get(key, {}))
        for name, value in values.items():
            if value is None:
                entry.pop(name, None)
            else:
                entry[name] = value
        if entry == bridges.get(key, {}):
            return
        if entry:
            bridges[key] = entry
        else:
            bridges.pop(key, None)
        self._save(bridges)

    def remove(self, bridgeid: str) -> None:
        """Forget *bridgeid*."""
        bridges = self.bridges()
        if bridges.pop(bridgeid.upper(), None) is not None:
            self._save(bridges)

    # ---- file --------------------------------------------------------

    def _save(self, bridges: Dict[str, Dict[str, Any]]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        if self._path.is_file():
            try:
                shutil.copy2(str(self._path), str(self._backup_path))
            except OSError:
                logger.warning("%s: backup failed", self._backup_path)
        try:
            with open(self._tmp_path, "w", encoding="utf-8") as fh:
                yaml.safe_dump(bridges, fh, default_flow_style=False, sort_keys=True)
            os.replace(str(self._tmp_path), str(self._path))
        except OSError:
            logger.error("%s: cannot save bridge credentials", self._path)
            raise
        logger.debug("%s: saved %d bridges", self._path, len(bridges))

    def _load(self) -> Dict[str, Dict[str, Any]]:
        bridges = self._read(self._path)
        if bridges is None and self._backup_path.is_file():
            logger.warning("%s: unusable, using %s", self._path, self._backup_path)
            bridges = self._read(self._backup_path)
        if bridges is None:
            return {}
        return {
            str(bridgeid).upper(): {
                k: str(v) for k, v in entry.items() if k in ENTRY_KEYS
            }
            for bridgeid, entry in bridges.items()
            if isinstance(entry, dict)
        }

    @staticmethod
    def _read(path: Path) -> Optional[Dict[str, Any]]:
        if not path.is_file():
            return None
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = yaml.safe_load(fh)
        except (OSError, yaml.YAMLError) as exc:
            logger.warning("%s: %s", path, exc)
            return None
        if data is None:
            return {}
        if not isinstance(data, dict):
            logger.warning("%s: not a mapping", path)
            return None
        return data
