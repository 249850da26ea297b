"""
Cursor Store
Restart-safe persistence of poller cursors and run statistics
"""
import json
import logging
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional, Union

from pydantic import ValidationError

from leadsync.domain.errors import CursorStoreError
from leadsync.domain.models.cursor import PollerState, TenantCursor

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FileCursorStore:
    """
    Poller state kept in a JSON file.

    Writes go to a temp file that replaces the state file atomically; the
    previous good file is kept as `.bak`, and loading falls back to it when
    the main file is missing or unreadable. Tenant cursors whose timestamp
    is older than `stale_after` are dropped on load so the tenant is
    re-scanned from the start (drift correction).
    """

    def __init__(
        self,
        path: Union[str, Path],
        stale_after: timedelta = timedelta(days=7),
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.path = Path(path)
        self.backup_path = self.path.with_suffix(self.path.suffix + ".bak")
        self.stale_after = stale_after
        self._clock = clock or _utcnow
        self._state: Optional[PollerState] = None

    @property
    def state(self) -> PollerState:
        if self._state is None:
            self.load()
        return self._state

    def load(self) -> PollerState:
        """Load the last good state, healing stale or corrupt data."""
        state = self._read(self.path)
        if state is None and self.backup_path.exists():
            logger.warning(f"[CursorStore] Falling back to backup state {self.backup_path}")
            state = self._read(self.backup_path)

        if state is None:
            state = PollerState()
        else:
            logger.info(
                f"[CursorStore] State loaded: {state.total_submissions_processed} submissions processed, "
                f"{len(state.tenant_cursors)} tenant cursor(s)"
            )

        self._state = state
        if self._drop_stale_cursors():
            self.save()
        return state

    def _read(self, path: Path) -> Optional[PollerState]:
        if not path.exists():
            return None
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            return self._parse(raw)
        except (OSError, ValueError, ValidationError) as e:
            logger.warning(f"[CursorStore] Unreadable state file {path}: {e}")
            return None

    @staticmethod
    def _parse(raw: dict) -> PollerState:
        cursors = {}
        for tenant_id, cursor in (raw.get("tenant_cursors") or {}).items():
            cursors[tenant_id] = TenantCursor(tenant_id=tenant_id, **{
                k: v for k, v in cursor.items() if k != "tenant_id"
            })
        raw = dict(raw)
        raw["tenant_cursors"] = cursors
        return PollerState.model_validate(raw)

    def _drop_stale_cursors(self) -> bool:
        now = self._clock()
        stale = {}
        for tenant_id, cursor in self._state.tenant_cursors.items():
            seen_at = cursor.last_seen_updated_at
            if seen_at is None:
                continue
            if seen_at.tzinfo is None:
                seen_at = seen_at.replace(tzinfo=timezone.utc)
            if now - seen_at > self.stale_after:
                stale[tenant_id] = now - seen_at

        for tenant_id, age in stale.items():
            logger.warning(
                f"[CursorStore] Cursor for tenant {tenant_id} is {age.days} days old - resetting"
            )
            del self._state.tenant_cursors[tenant_id]

        return bool(stale)

    def save(self) -> None:
        """Persist state atomically."""
        state = self.state
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            temp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            temp_path.write_text(state.model_dump_json(indent=2), encoding="utf-8")
            if self.path.exists() and self._read(self.path) is not None:
                os.replace(self.path, self.backup_path)
            os.replace(temp_path, self.path)
            logger.debug(f"[CursorStore] Saved state to {self.path}")
        except OSError as e:
            raise CursorStoreError(f"Failed to save poller state to {self.path}: {e}") from e

    def get_cursor(self, tenant_id: str) -> Optional[TenantCursor]:
        return self.state.tenant_cursors.get(tenant_id)

    def save_cursor(self, cursor: TenantCursor) -> None:
        """Store a tenant cursor and persist immediately."""
        self.state.tenant_cursors[cursor.tenant_id] = cursor
        self.save()

    def record_run(self, processed: int, errors: int, last_error: Optional[str]) -> None:
        state = self.state
        state.last_run_at = self._clock()
        state.total_submissions_processed += processed
        state.total_errors += errors
        state.last_error = last_error
        self.save()

    def reset(self, tenant_id: Optional[str] = None) -> None:
        """Forget one tenant's cursor, or every cursor."""
        if tenant_id is None:
            self.state.tenant_cursors.clear()
        else:
            self.state.tenant_cursors.pop(tenant_id, None)
        self.save()
