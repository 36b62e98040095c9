# ============================================================
# DBSage - Database AI Assistant
# core/registry.py - Connection Registry
# ============================================================
#
# Owns every named ConnectionConfig and the live handle opened for it.
# Maps are guarded by a reader/writer lock; handle methods (health
# checks, connect, close) run outside the lock on a reference taken
# while holding it.
#
# Persisted as a JSON object {name: config} in connections.json,
# written atomically (tempfile in the same directory + fsync + rename).
# ════════════════════════════════════════════════════════════

import json
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, List, Dict, Tuple

from loguru import logger
from pydantic import ValidationError

from core.errors import (
    DatabaseConnectionError,
    UnhealthyConnectionError,
    NoActiveConnectionError,
    ConnectionNotFoundError,
    DuplicateConnectionError,
    PersistenceError,
    StartupError,
)
from core.models import ConnectionConfig, ConnectionStatus
from database.base import DatabaseInterface
from database.providers import ProviderManager
from utils.helpers import EPOCH, parse_rfc3339, utc_now_rfc3339
from utils.locks import ReadWriteLock


@dataclass
class ConnectionState:
    """One line of the registry snapshot."""
    config: ConnectionConfig
    status: ConnectionStatus
    is_current: bool

    @property
    def name(self) -> str:
        return self.config.name


class ConnectionRegistry:

    def __init__(self, config_file: Path, providers: Optional[ProviderManager] = None, autoload: bool = True):
        self._config_file = Path(config_file).expanduser()
        self._providers = providers or ProviderManager()
        self._lock = ReadWriteLock()
        self._configs: Dict[str, ConnectionConfig] = {}
        self._handles: Dict[str, DatabaseInterface] = {}
        self._current: Optional[str] = None
        if autoload:
            self.load()

    @property
    def config_file(self) -> Path:
        return self._config_file

    # ── Persistence ───────────────────────────────────────────

    def load(self):
        """
        Read connections.json. A missing file means an empty registry;
        a corrupt file is logged and ignored, as is any single invalid entry;
        an unreadable file is fatal.
        """
        try:
            raw = self._config_file.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.info(f"No saved connections at {self._config_file}")
            return
        except OSError as e:
            raise StartupError(f"cannot read {self._config_file}: {e}") from e

        try:
            data = json.loads(raw) if raw.strip() else {}
            if not isinstance(data, dict):
                raise ValueError("top-level value must be an object")
        except ValueError as e:
            logger.warning(f"Ignoring unreadable connections file {self._config_file}: {e}")
            return

        configs: Dict[str, ConnectionConfig] = {}
        for key, entry in data.items():
            if isinstance(entry, dict):
                entry = {**entry, "name": entry.get("name") or key}
            try:
                cfg = ConnectionConfig.model_validate(entry)
            except ValidationError as e:
                logger.warning(f"Skipping invalid saved connection '{key}': {e}")
                continue
            configs[cfg.name] = cfg

        with self._lock.write():
            self._configs = configs
            self._current = self._pick_most_recent(configs.values())
        logger.info(f"Loaded {len(configs)} saved connection(s); current: {self._current or 'none'}")

    def _snapshot_json(self) -> str:
        data = {name: cfg.to_json_dict() for name, cfg in sorted(self._configs.items())}
        return json.dumps(data, indent=2)

    def save(self):
        with self._lock.read():
            payload = self._snapshot_json()
        self._write_atomic(payload)

    def _write_atomic(self, payload: str):
        directory = self._config_file.parent
        tmp_path = None
        try:
            directory.mkdir(mode=0o700, parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=".connections-", suffix=".tmp", dir=str(directory))
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self._config_file)
            tmp_path = None
        except OSError as e:
            logger.error(f"Failed to save connections to {self._config_file}: {e}")
            raise PersistenceError(f"failed to save connections: {e}") from e
        finally:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)

    # ── Mutations ─────────────────────────────────────────────

    def add(self, cfg: ConnectionConfig):
        """
        Open a handle for `cfg`, register it and persist the set. A failed
        save undoes the registration and closes the handle.
        """
        with self._lock.read():
            if cfg.name in self._configs:
                raise DuplicateConnectionError(cfg.name)

        handle = self._providers.create_connection(cfg)

        with self._lock.write():
            if cfg.name in self._configs:
                stale = handle
                handle = None
            else:
                stale = None
                previous_current = self._current
                if self._current is None:
                    cfg.last_used = utc_now_rfc3339()
                    self._current = cfg.name
                self._configs[cfg.name] = cfg
                self._handles[cfg.name] = handle
        if stale is not None:
            stale.close()
            raise DuplicateConnectionError(cfg.name)

        try:
            self.save()
        except PersistenceError:
            with self._lock.write():
                self._configs.pop(cfg.name, None)
                self._handles.pop(cfg.name, None)
                if self._current == cfg.name:
                    self._current = previous_current
            handle.close()
            raise
        logger.info(f"Added connection '{cfg.name}' ({cfg.type.value} {cfg.address})")

    def remove(self, name: str):
        """Forget `name` and persist the set; the handle is closed only once saved."""
        with self._lock.write():
            if name not in self._configs:
                raise ConnectionNotFoundError(name)
            cfg = self._configs.pop(name)
            handle = self._handles.pop(name, None)
            previous_current = self._current
            if self._current == name:
                self._current = self._pick_most_recent(self._configs.values())

        try:
            self.save()
        except PersistenceError:
            with self._lock.write():
                if name not in self._configs:
                    self._configs[name] = cfg
                    if handle is not None:
                        self._handles[name] = handle
                        handle = None
                    self._current = previous_current
            if handle is not None:
                handle.close()
            raise

        if handle is not None:
            handle.close()
        logger.info(f"Removed connection '{name}'; current: {self._current or 'none'}")

    def switch(self, name: str):
        """
        Make `name` current, reopening its handle when missing or
        unhealthy. A failed reopen leaves the current selection as it was.
        """
        with self._lock.read():
            cfg = self._configs.get(name)
            handle = self._handles.get(name)
        if cfg is None:
            raise ConnectionNotFoundError(name)

        if handle is not None:
            try:
                handle.check()
            except DatabaseConnectionError as e:
                logger.warning(f"Connection '{name}' failed health check, reconnecting: {e}")
                handle.close()
                handle = None

        if handle is None:
            handle = self._providers.create_connection(cfg)

        stamp = utc_now_rfc3339()
        with self._lock.write():
            if name not in self._configs:
                removed = True
            else:
                removed = False
                self._handles[name] = handle
                self._configs[name].last_used = stamp
                self._current = name
        if removed:
            handle.close()
            raise ConnectionNotFoundError(name)

        logger.info(f"Switched to connection '{name}'")
        try:
            self.save()
        except PersistenceError as e:
            logger.warning(f"Switched to '{name}' but could not persist last-used time: {e}")

    def close_all(self):
        with self._lock.write():
            handles = list(self._handles.items())
            self._handles.clear()
        for name, handle in handles:
            logger.debug(f"Closing connection '{name}'")
            handle.close()

    # ── Queries ───────────────────────────────────────────────

    def current(self) -> Tuple[DatabaseInterface, str]:
        """
        Handle of the current connection. Opens it lazily the first time;
        a failed health check is reported, never silently repaired.
        """
        with self._lock.read():
            name = self._current
            cfg = self._configs.get(name) if name else None
            handle = self._handles.get(name) if name else None
        if name is None or cfg is None:
            raise NoActiveConnectionError()

        if handle is None:
            handle = self._providers.create_connection(cfg)
            with self._lock.write():
                existing = self._handles.get(name)
                if existing is None and name in self._configs:
                    self._handles[name] = handle
                    opened = None
                else:
                    opened = handle
                    handle = existing
            if opened is not None:
                opened.close()
            if handle is None:
                raise NoActiveConnectionError()
            return handle, name

        try:
            handle.check()
        except DatabaseConnectionError as e:
            raise UnhealthyConnectionError(f"connection '{name}' is unhealthy: {e}") from e
        return handle, name

    def current_or_none(self) -> Optional[DatabaseInterface]:
        """Handle provider for tool dispatch: None when nothing usable is selected."""
        try:
            handle, _ = self.current()
            return handle
        except (NoActiveConnectionError, DatabaseConnectionError) as e:
            logger.warning(f"No usable database handle: {e}")
            return None

    def current_name(self) -> Optional[str]:
        with self._lock.read():
            return self._current

    def get(self, name: str) -> ConnectionConfig:
        with self._lock.read():
            cfg = self._configs.get(name)
        if cfg is None:
            raise ConnectionNotFoundError(name)
        return cfg

    def names(self) -> List[str]:
        with self._lock.read():
            return sorted(self._configs)

    def list(self) -> List[ConnectionConfig]:
        with self._lock.read():
            return [self._configs[n].model_copy() for n in sorted(self._configs)]

    def has_connections(self) -> bool:
        with self._lock.read():
            return bool(self._configs)

    def status(self) -> List[ConnectionState]:
        with self._lock.read():
            entries = [
                (cfg.model_copy(), self._handles.get(name), name == self._current)
                for name, cfg in sorted(self._configs.items())
            ]

        states = []
        for cfg, handle, is_current in entries:
            if handle is None:
                status = ConnectionStatus.DISCONNECTED
            elif not handle.is_healthy():
                status = ConnectionStatus.UNHEALTHY
            elif is_current:
                status = ConnectionStatus.ACTIVE
            else:
                status = ConnectionStatus.CONNECTED
            states.append(ConnectionState(config=cfg, status=status, is_current=is_current))
        return states

    def last_used_name(self) -> Optional[str]:
        with self._lock.read():
            return self._pick_most_recent(self._configs.values())

    def sorted_by_last_used(self) -> List[ConnectionConfig]:
        """Most recently used first; never-used entries last, by name."""
        with self._lock.read():
            configs = [cfg.model_copy() for cfg in self._configs.values()]
        return sorted(configs, key=_recency_key)

    @staticmethod
    def _pick_most_recent(configs) -> Optional[str]:
        ordered = sorted(configs, key=_recency_key)
        return ordered[0].name if ordered else None


def _recency_key(cfg: ConnectionConfig):
    stamp = parse_rfc3339(cfg.last_used) or EPOCH
    return (-stamp.timestamp(), cfg.name)
