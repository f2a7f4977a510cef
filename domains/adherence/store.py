"""Schedule store backends for reminders and prescriptions.

Paths follow the tree layout the records were first written in:

    patients/{ownerId}/reminders
    patients/{ownerId}/reminders/{reminderId}
    patients/{ownerId}/prescriptions/{prescriptionId}

A subscription always delivers the whole collection (``{id: record}``),
never deltas.
"""

import copy
import re
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

import httpx
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import SUPABASE_URL, SUPABASE_KEY
from logger import logger
from . import config

COLLECTIONS = ("reminders", "prescriptions")

Snapshot = dict[str, dict]
SnapshotCallback = Callable[[Snapshot], None]
Unsubscribe = Callable[[], None]


class ScheduleStoreError(Exception):
    """A store write failed."""


@dataclass(frozen=True)
class StorePath:
    owner_id: str
    collection: str
    record_id: Optional[str] = None

    @property
    def collection_path(self) -> str:
        return f"patients/{self.owner_id}/{self.collection}"

    def __str__(self) -> str:
        if self.record_id:
            return f"{self.collection_path}/{self.record_id}"
        return self.collection_path


def parse_path(path: str) -> StorePath:
    """Split a store path into owner, collection and optional record id.

    Raises:
        ValueError: If the path does not match the layout
    """
    parts = [p for p in path.strip("/").split("/") if p]
    if len(parts) not in (3, 4) or parts[0] != "patients" or parts[2] not in COLLECTIONS:
        raise ValueError(f"Unsupported store path: {path!r}")
    return StorePath(parts[1], parts[2], parts[3] if len(parts) == 4 else None)


def collection_path(owner_id: str, collection: str) -> str:
    return str(StorePath(owner_id, collection))


def record_path(owner_id: str, collection: str, record_id: str) -> str:
    return str(StorePath(owner_id, collection, record_id))


class ScheduleStore(ABC):
    """Read/write/subscribe operations the scheduler and service consume."""

    @abstractmethod
    async def subscribe(self, path: str, on_snapshot: SnapshotCallback) -> Unsubscribe:
        """Deliver the current collection now and on every change.

        The first snapshot is delivered before this returns, unless the
        backend cannot be read yet; a failed read is never delivered.
        """

    @abstractmethod
    async def create(self, path: str, record: dict) -> str:
        """Add a record under a collection path. Returns the generated id."""

    @abstractmethod
    async def update_fields(self, path: str, fields: dict) -> None:
        """Merge ``fields`` into the record at ``path``."""

    @abstractmethod
    async def delete(self, path: str) -> None:
        """Remove the record at ``path``."""

    @abstractmethod
    async def get_once(self, path: str):
        """Collection path -> ``{id: record}``; record path -> record or None."""


class InMemoryScheduleStore(ScheduleStore):
    """Process-local store. Subscribers are called synchronously on each write."""

    def __init__(self):
        self._data: dict[tuple[str, str], dict[str, dict]] = {}
        self._subscribers: dict[tuple[str, str], list[SnapshotCallback]] = {}

    def _bucket(self, sp: StorePath) -> dict[str, dict]:
        return self._data.setdefault((sp.owner_id, sp.collection), {})

    def _publish(self, sp: StorePath) -> None:
        key = (sp.owner_id, sp.collection)
        snapshot = copy.deepcopy(self._data.get(key, {}))
        for callback in list(self._subscribers.get(key, [])):
            try:
                callback(copy.deepcopy(snapshot))
            except Exception as e:
                logger.error(f"Snapshot subscriber for {sp.collection_path} failed: {e}")

    async def subscribe(self, path: str, on_snapshot: SnapshotCallback) -> Unsubscribe:
        sp = parse_path(path)
        key = (sp.owner_id, sp.collection)
        self._subscribers.setdefault(key, []).append(on_snapshot)
        on_snapshot(copy.deepcopy(self._data.get(key, {})))

        def unsubscribe():
            callbacks = self._subscribers.get(key, [])
            if on_snapshot in callbacks:
                callbacks.remove(on_snapshot)

        return unsubscribe

    async def create(self, path: str, record: dict) -> str:
        sp = parse_path(path)
        record_id = sp.record_id or uuid.uuid4().hex
        self._bucket(sp)[record_id] = copy.deepcopy(record)
        self._publish(sp)
        return record_id

    async def update_fields(self, path: str, fields: dict) -> None:
        sp = parse_path(path)
        bucket = self._bucket(sp)
        if sp.record_id not in bucket:
            raise ScheduleStoreError(f"No record at {path}")
        bucket[sp.record_id].update(copy.deepcopy(fields))
        self._publish(sp)

    async def delete(self, path: str) -> None:
        sp = parse_path(path)
        self._bucket(sp).pop(sp.record_id, None)
        self._publish(sp)

    async def get_once(self, path: str):
        sp = parse_path(path)
        bucket = self._data.get((sp.owner_id, sp.collection), {})
        if sp.record_id:
            record = bucket.get(sp.record_id)
            return copy.deepcopy(record) if record is not None else None
        return copy.deepcopy(bucket)


_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")

# Row columns that are not part of the record itself
_ROW_META = ("id", "patient_id")


def _to_column(key: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", key).lower()


def _to_key(column: str) -> str:
    head, *rest = column.split("_")
    return head + "".join(part.title() for part in rest)


def _row_to_record(row: dict) -> dict:
    return {_to_key(k): v for k, v in row.items() if k not in _ROW_META}


def _record_to_row(record: dict) -> dict:
    return {_to_column(k): v for k, v in record.items()}


class SupabaseScheduleStore(ScheduleStore):
    """PostgREST-backed store.

    Live updates are emulated by polling each subscribed collection on an
    APScheduler interval job and pushing the snapshot when it changes.
    One-shot reads log and return empty on failure, while a failed poll keeps
    the last good snapshot. Writes raise ScheduleStoreError.
    """

    def __init__(
        self,
        scheduler: AsyncIOScheduler,
        url: Optional[str] = None,
        key: Optional[str] = None,
        poll_interval: Optional[float] = None
    ):
        self.scheduler = scheduler
        self.url = url if url is not None else SUPABASE_URL
        self.key = key if key is not None else SUPABASE_KEY
        self.poll_interval = poll_interval or config.STORE_POLL_INTERVAL_SECONDS
        # job_id -> (path, callback, last snapshot)
        self._subscriptions: dict[str, list] = {}

    @property
    def configured(self) -> bool:
        return bool(self.url and self.key)

    def _headers(self) -> dict:
        """Get headers for Supabase API calls."""
        return {
            "apikey": self.key,
            "Authorization": f"Bearer {self.key}",
            "Content-Type": "application/json",
            "Prefer": "return=representation"
        }

    def _table_url(self, sp: StorePath) -> str:
        table = config.REMINDERS_TABLE if sp.collection == "reminders" else config.PRESCRIPTIONS_TABLE
        return f"{self.url}/rest/v1/{table}"

    def _filters(self, sp: StorePath) -> dict:
        params = {"patient_id": f"eq.{sp.owner_id}"}
        if sp.record_id:
            params["id"] = f"eq.{sp.record_id}"
        return params

    async def _fetch(self, sp: StorePath) -> Optional[Snapshot]:
        """Read a collection. None means the read failed, not that it is empty."""
        if not self.configured:
            logger.warning("Supabase not configured, nothing to read")
            return None

        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(
                    self._table_url(sp),
                    headers=self._headers(),
                    params={**self._filters(sp), "select": "*", "order": "created_at"},
                    timeout=config.REQUEST_TIMEOUT
                )
                response.raise_for_status()
                return {str(row["id"]): _row_to_record(row) for row in response.json()}
        except Exception as e:
            logger.error(f"Failed to fetch {sp}: {e}")
            return None

    async def get_once(self, path: str):
        sp = parse_path(path)
        snapshot = await self._fetch(sp) or {}
        if sp.record_id:
            return snapshot.get(sp.record_id)
        return snapshot

    async def subscribe(self, path: str, on_snapshot: SnapshotCallback) -> Unsubscribe:
        sp = parse_path(path)
        if sp.record_id:
            raise ValueError("Subscriptions are per collection")

        job_id = f"store_poll:{sp}:{uuid.uuid4().hex[:8]}"
        initial = await self._fetch(sp)
        self._subscriptions[job_id] = [sp, on_snapshot, initial]
        if initial is None:
            logger.warning(f"Initial read of {sp} failed, first snapshot waits for the next poll")
        else:
            on_snapshot(copy.deepcopy(initial))

        self.scheduler.add_job(
            self._poll,
            trigger=IntervalTrigger(seconds=self.poll_interval),
            args=[job_id],
            id=job_id,
            name=f"poll:{sp}",
            replace_existing=True
        )
        logger.info(f"Subscribed to {sp} (polling every {self.poll_interval:g}s)")

        def unsubscribe():
            self._subscriptions.pop(job_id, None)
            try:
                self.scheduler.remove_job(job_id)
            except JobLookupError:
                pass
            logger.info(f"Unsubscribed from {sp}")

        return unsubscribe

    async def _poll(self, job_id: str) -> None:
        """Re-read a subscribed collection and push it if it changed."""
        subscription = self._subscriptions.get(job_id)
        if subscription is None:
            return
        sp, callback, last = subscription
        snapshot = await self._fetch(sp)
        # Failed read: subscribers keep the last good snapshot
        if snapshot is None:
            return
        # Unsubscribed while the request was in flight
        if job_id not in self._subscriptions or snapshot == last:
            return
        subscription[2] = snapshot
        callback(copy.deepcopy(snapshot))

    async def _refresh(self, sp: StorePath) -> None:
        """Push fresh snapshots to subscribers of a collection after a write."""
        for job_id, (sub_path, _, _) in list(self._subscriptions.items()):
            if sub_path.owner_id == sp.owner_id and sub_path.collection == sp.collection:
                await self._poll(job_id)

    async def _write(self, method: str, sp: StorePath, **kwargs) -> httpx.Response:
        if not self.configured:
            raise ScheduleStoreError("Supabase not configured")
        try:
            async with httpx.AsyncClient() as client:
                response = await client.request(
                    method,
                    self._table_url(sp),
                    headers=self._headers(),
                    timeout=config.REQUEST_TIMEOUT,
                    **kwargs
                )
                response.raise_for_status()
                return response
        except httpx.HTTPError as e:
            raise ScheduleStoreError(f"{method} {sp} failed: {e}") from e

    async def create(self, path: str, record: dict) -> str:
        sp = parse_path(path)
        record_id = sp.record_id or uuid.uuid4().hex
        row = {"id": record_id, "patient_id": sp.owner_id, **_record_to_row(record)}
        await self._write("POST", sp, json=row)
        logger.info(f"Created {sp.collection} record {record_id} for {sp.owner_id}")
        await self._refresh(sp)
        return record_id

    async def update_fields(self, path: str, fields: dict) -> None:
        sp = parse_path(path)
        if not sp.record_id:
            raise ValueError("update_fields needs a record path")
        await self._write("PATCH", sp, params=self._filters(sp), json=_record_to_row(fields))
        logger.debug(f"Updated {sp}: {sorted(fields)}")
        await self._refresh(sp)

    async def delete(self, path: str) -> None:
        sp = parse_path(path)
        if not sp.record_id:
            raise ValueError("delete needs a record path")
        await self._write("DELETE", sp, params=self._filters(sp))
        logger.info(f"Deleted {sp}")
        await self._refresh(sp)
