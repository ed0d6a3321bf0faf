"""JSON-file persistence for the session store document.

The store is a single pretty-printed UTF-8 JSON file (`.claude-sessions.json`
in the invoking directory by default). Concurrent writers are not coordinated:
the last successful `save()` wins.
"""

from __future__ import annotations

import json
import os
import shutil
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Union

from .logging_config import setup_logger
from .migration import migrate, needs_migration
from .models import StoreDocument, utc_now

logger = setup_logger("session_tracker.store")

DEFAULT_STORE_FILENAME = ".claude-sessions.json"


class CorruptStoreError(Exception):
    """The store file exists but could not be parsed."""

    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Corrupt session store {path}: {reason}")


class StoreWriteError(Exception):
    """Persisting the store document failed."""

    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to write session store {path}: {reason}")


def resolve_store_path(store_file: Optional[str] = None, cwd: Optional[str] = None) -> Path:
    """Store path: absolute `store_file` as-is, otherwise relative to `cwd`."""
    path = Path(store_file or DEFAULT_STORE_FILENAME).expanduser()
    if path.is_absolute():
        return path
    return Path(cwd or os.getcwd()) / path


class SessionStore:
    """Load/save the store document with migration and counter rollovers."""

    def __init__(
        self,
        path: Union[str, Path, None] = None,
        *,
        clock: Callable[[], datetime] = utc_now,
        cwd: Optional[str] = None,
    ):
        self.cwd = cwd or os.getcwd()
        self.path = Path(path) if path is not None else resolve_store_path(cwd=self.cwd)
        self.clock = clock
        self.last_error: Optional[CorruptStoreError] = None
        self._corrupt_pending_backup = False

    def exists(self) -> bool:
        return self.path.exists()

    def _read_raw(self) -> Optional[dict]:
        if not self.path.exists():
            return None
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise CorruptStoreError(self.path, f"unreadable: {e}") from e
        if not text.strip():
            raise CorruptStoreError(self.path, "file is empty")
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise CorruptStoreError(self.path, f"invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise CorruptStoreError(self.path, "top-level value is not an object")
        return data

    def load(self) -> StoreDocument:
        """Read, migrate and roll over the store document.

        A missing file yields a fresh document. A corrupt file yields a fresh
        in-memory document; the error is kept on `last_error` and the file is
        left untouched until the next explicit `save()`.
        """
        now = self.clock()
        self.last_error = None
        try:
            raw = self._read_raw()
        except CorruptStoreError as e:
            logger.error(str(e))
            self.last_error = e
            self._corrupt_pending_backup = True
            return StoreDocument.empty(now)

        self._corrupt_pending_backup = False
        if raw is None:
            return StoreDocument.empty(now)

        if needs_migration(raw):
            logger.info(f"Migrating session store {self.path} to the current schema")
        try:
            document = StoreDocument.from_dict(migrate(raw, cwd=self.cwd, now=now))
        except (TypeError, ValueError, AttributeError, OverflowError, OSError) as e:
            error = CorruptStoreError(self.path, f"unusable document: {e}")
            logger.error(str(error))
            self.last_error = error
            self._corrupt_pending_backup = True
            return StoreDocument.empty(now)

        reset = document.apply_rollovers(now)
        if reset:
            logger.info(f"Rolled over counters: {', '.join(reset)}")
        return document

    def _backup_corrupt_file(self) -> Optional[Path]:
        stamp = self.clock().strftime("%Y%m%dT%H%M%S")
        backup = self.path.with_name(f"{self.path.name}.corrupt-{stamp}")
        try:
            shutil.copy2(self.path, backup)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StoreWriteError(self.path, f"could not back up corrupt store: {e}") from e
        logger.warning(f"Backed up corrupt session store to {backup}")
        return backup

    def save(self, document: StoreDocument) -> None:
        """Atomically replace the store file with `document`.

        Raises:
            StoreWriteError: the file could not be written; `document` keeps
                its previous `last_update`.
        """
        previous_update = document.last_update
        document.last_update = self.clock()
        tmp_name: Optional[str] = None
        try:
            if self._corrupt_pending_backup:
                self._backup_corrupt_file()
                self._corrupt_pending_backup = False

            payload = json.dumps(document.to_dict(), indent=2, ensure_ascii=False) + "\n"
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=str(self.path.parent), prefix=f".{self.path.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_name, self.path)
            tmp_name = None
        except StoreWriteError:
            document.last_update = previous_update
            raise
        except OSError as e:
            document.last_update = previous_update
            logger.error(f"Failed to save session store {self.path}: {e}")
            raise StoreWriteError(self.path, str(e)) from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
        logger.debug(f"Saved {len(document.sessions)} session(s) to {self.path}")
