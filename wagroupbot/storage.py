from __future__ import annotations

import asyncio
import fcntl
import json
import os
from contextlib import asynccontextmanager, contextmanager
from typing import Any, AsyncIterator, Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from .config import logger
from .state import GroupRecord, GroupSettings


class StoreError(Exception):
    """Persistence layer failure."""


class GroupNotFoundError(StoreError, LookupError):
    pass


Mutation = Callable[[GroupRecord], None]
Change = Callable[[Dict[str, GroupRecord]], Tuple[Any, bool]]


class GroupStore:
    """Group records keyed by group id, persisted as one JSON file.

    Every write is a read-modify-write of a single record under that group's
    lock, touching only the fields the operation concerns. The file is the
    source of truth: writes hold an exclusive lock on ``<path>.lock`` and
    start from the file's current contents, so several processes (the bot
    and ``sync_groups.py``) can share it. Pass ``path=None`` for a
    memory-only store.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._records: Dict[str, GroupRecord] = {}
        # group id -> [lock, holders and waiters]
        self._locks: Dict[str, List[Any]] = {}
        self._write_lock = asyncio.Lock()
        self._loaded = False
        self._stamp: Optional[Tuple[int, int, int]] = None

    # ---------------- persistence ----------------

    def _file_stamp(self) -> Optional[Tuple[int, int, int]]:
        try:
            st = os.stat(self.path)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StoreError(f"Could not stat group store {self.path}: {e}") from e
        return (st.st_ino, st.st_mtime_ns, st.st_size)

    def load(self) -> None:
        self._loaded = True
        if not self.path or not os.path.exists(self.path):
            logger.info("No existing group store file found")
            return
        try:
            stamp = self._file_stamp()
            with open(self.path, "r") as f:
                raw = json.load(f)
            self._records = {str(k): GroupRecord.from_dict(v) for k, v in raw.items()}
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            raise StoreError(f"Could not load group store {self.path}: {e}") from e
        self._stamp = stamp
        logger.info(f"Loaded {len(self._records)} groups from {self.path}")

    def _refresh(self) -> None:
        """Load on first use, reload when another writer replaced the file."""
        if not self._loaded:
            self.load()
            return
        if not self.path:
            return
        stamp = self._file_stamp()
        if stamp is not None and stamp != self._stamp:
            logger.debug(f"Group store {self.path} changed on disk, reloading")
            self.load()

    @contextmanager
    def _file_lock(self) -> Iterator[None]:
        if not self.path:
            yield
            return
        try:
            handle = open(f"{self.path}.lock", "a")
        except OSError as e:
            raise StoreError(f"Could not lock group store {self.path}: {e}") from e
        with handle:
            fcntl.flock(handle, fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(handle, fcntl.LOCK_UN)

    def _write_file(self, records: Dict[str, GroupRecord]) -> None:
        if not self.path:
            return
        snapshot = {gid: rec.to_dict() for gid, rec in records.items()}
        tmp_path = f"{self.path}.tmp"
        try:
            with open(tmp_path, "w") as f:
                json.dump(snapshot, f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StoreError(f"Could not save group store {self.path}: {e}") from e
        self._stamp = self._file_stamp()
        logger.debug("Group store saved to file")

    async def _commit(self, change: Change) -> Any:
        """Apply ``change`` to a fresh copy of the records and persist it.

        ``change`` returns ``(result, dirty)``. Memory only moves forward
        once the file write succeeded.
        """
        async with self._write_lock:
            with self._file_lock():
                self._refresh()
                records = dict(self._records)
                result, dirty = change(records)
                if dirty:
                    self._write_file(records)
                    self._records = records
        return result

    @asynccontextmanager
    async def _group_lock(self, group_id: str) -> AsyncIterator[None]:
        entry = self._locks.get(group_id)
        if entry is None:
            entry = self._locks[group_id] = [asyncio.Lock(), 0]
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                self._locks.pop(group_id, None)

    # ---------------- reads ----------------

    async def get(self, group_id: str) -> Optional[GroupRecord]:
        self._refresh()
        record = self._records.get(group_id)
        return record.copy() if record else None

    async def get_settings(self, group_id: str) -> GroupSettings:
        """Settings for a group, defaults when the group is unknown."""
        record = await self.get(group_id)
        return record.settings if record else GroupSettings()

    async def list_ids(self) -> List[str]:
        self._refresh()
        return sorted(self._records)

    # ---------------- writes ----------------

    async def _mutate(self, group_id: str, mutation: Mutation, create: bool) -> Optional[GroupRecord]:
        def _change(records: Dict[str, GroupRecord]) -> Tuple[Optional[GroupRecord], bool]:
            current = records.get(group_id)
            if current is None:
                if not create:
                    return None, False
                current = GroupRecord(id=group_id)
            record = current.copy()
            mutation(record)
            records[group_id] = record
            return record.copy(), True

        async with self._group_lock(group_id):
            return await self._commit(_change)

    async def replace_roster(self, record: GroupRecord) -> GroupRecord:
        """Create the record, or overwrite its roster fields keeping settings and createdAt."""

        def _apply(existing: GroupRecord) -> None:
            existing.name = record.name or existing.name
            existing.owner_phone = record.owner_phone or existing.owner_phone
            existing.admin_set = set(record.admin_set)
            existing.member_set = set(record.member_set) | existing.admin_set

        return await self._mutate(record.id, _apply, create=True)

    async def create_if_absent(self, record: GroupRecord) -> bool:
        def _change(records: Dict[str, GroupRecord]) -> Tuple[bool, bool]:
            if record.id in records:
                return False, False
            records[record.id] = record.copy()
            return True, True

        async with self._group_lock(record.id):
            created = await self._commit(_change)
        if created:
            logger.info(f"Group {record.id} created from live roster snapshot")
        return created

    async def add_members(self, group_id: str, identities: Iterable[str]) -> GroupRecord:
        ids = list(identities)
        return await self._mutate(group_id, lambda r: r.add_members(ids), create=True)

    async def remove_members(self, group_id: str, identities: Iterable[str]) -> Optional[GroupRecord]:
        ids = list(identities)
        return await self._mutate(group_id, lambda r: r.remove_members(ids), create=False)

    async def add_admins(self, group_id: str, identities: Iterable[str]) -> GroupRecord:
        ids = list(identities)
        return await self._mutate(group_id, lambda r: r.add_admins(ids), create=True)

    async def remove_admins(self, group_id: str, identities: Iterable[str]) -> Optional[GroupRecord]:
        ids = list(identities)
        return await self._mutate(group_id, lambda r: r.remove_admins(ids), create=False)

    async def update_settings(self, group_id: str, **changes: Any) -> GroupRecord:
        def _apply(record: GroupRecord) -> None:
            record.settings = record.settings.updated(**changes)

        record = await self._mutate(group_id, _apply, create=False)
        if record is None:
            raise GroupNotFoundError(f"Group {group_id} not found")
        logger.info(f"Group {group_id} settings updated: {changes}")
        return record

    async def delete(self, group_id: str) -> bool:
        def _change(records: Dict[str, GroupRecord]) -> Tuple[bool, bool]:
            removed = records.pop(group_id, None) is not None
            return removed, removed

        async with self._group_lock(group_id):
            return await self._commit(_change)
