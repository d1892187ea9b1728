"""Append-only audit trail of role mutations."""

import os
import math
import uuid
import logging
from abc import ABC, abstractmethod
from collections import Counter, deque
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Deque, Dict, List, Optional, Sequence, Tuple

from .models import AuditAction, AuditLogEntry
from .repository import run_store_call

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
DEFAULT_RETENTION_DAYS = 365


def _isoformat(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    # Fixed width so timestamps compare correctly as strings
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


@dataclass
class AuditQuery:
    """Filter applied to audit log queries. Unset fields do not filter."""

    role_id: Optional[str] = None
    performed_by: Optional[str] = None
    actions: Optional[Sequence[AuditAction]] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    def matches(self, entry: AuditLogEntry) -> bool:
        if self.role_id is not None and entry.role_id != self.role_id:
            return False
        if self.performed_by is not None and entry.performed_by != self.performed_by:
            return False
        if self.actions and entry.action not in self.actions:
            return False
        if self.start_date is not None and entry.timestamp < _isoformat(self.start_date):
            return False
        if self.end_date is not None and entry.timestamp > _isoformat(self.end_date):
            return False
        return True


@dataclass
class AuditPage:
    logs: List[AuditLogEntry]
    total: int
    page: int
    pages: int


@dataclass
class AuditWriteResult:
    """Outcome of an audit write. Callers are free to ignore it."""

    ok: bool
    entry: AuditLogEntry
    error: Optional[str] = None


class AuditLogRepository(ABC):
    """Abstract interface for audit log storage."""

    @abstractmethod
    async def append(self, entry: AuditLogEntry) -> None:
        """Store a new entry."""

    @abstractmethod
    async def query(self, query: AuditQuery) -> List[AuditLogEntry]:
        """Return matching entries, newest first."""

    @abstractmethod
    async def delete_before(self, cutoff: datetime) -> int:
        """Delete entries older than ``cutoff``. Returns the number deleted."""


class InMemoryAuditLogRepository(AuditLogRepository):
    """List-backed audit storage (single instance / local development)."""

    def __init__(self):
        self._entries: List[AuditLogEntry] = []

    async def append(self, entry: AuditLogEntry) -> None:
        self._entries.append(entry)

    async def query(self, query: AuditQuery) -> List[AuditLogEntry]:
        matching = [e for e in self._entries if query.matches(e)]
        matching.sort(key=lambda e: e.timestamp, reverse=True)
        return matching

    async def delete_before(self, cutoff: datetime) -> int:
        cutoff_str = _isoformat(cutoff)
        kept = [e for e in self._entries if e.timestamp >= cutoff_str]
        deleted = len(self._entries) - len(kept)
        self._entries = kept
        return deleted


class DynamoDBAuditLogRepository(AuditLogRepository):
    """
    Audit storage in DynamoDB.

    Items are keyed ``PK=AUDIT#<yyyy-mm>, SK=<timestamp>#<logId>`` so a
    retention purge walks whole month partitions.
    """

    def __init__(self, table_name: Optional[str] = None, region: Optional[str] = None):
        import boto3
        from botocore.exceptions import ClientError

        self.table_name = table_name or os.environ.get(
            "DYNAMODB_RBAC_AUDIT_TABLE_NAME", "rbac-audit"
        )
        region = region or os.getenv("AWS_REGION", os.getenv("AWS_DEFAULT_REGION", "us-west-2"))
        profile = os.getenv("AWS_PROFILE")
        if profile:
            dynamodb = boto3.Session(profile_name=profile).resource("dynamodb", region_name=region)
        else:
            dynamodb = boto3.resource("dynamodb", region_name=region)
        self._table = dynamodb.Table(self.table_name)
        self._client_error = ClientError

        logger.info(f"Initialized DynamoDB audit log repository: table={self.table_name}")

    async def append(self, entry: AuditLogEntry) -> None:
        try:
            await run_store_call(
                f"put_audit:{entry.log_id}",
                self._table.put_item,
                Item={
                    "PK": f"AUDIT#{entry.timestamp[:7]}",
                    "SK": f"{entry.timestamp}#{entry.log_id}",
                    **entry.to_dict(),
                },
            )
        except self._client_error as e:
            logger.error(f"Error writing audit log {entry.log_id}: {e}")
            raise

    async def _scan(self) -> List[dict]:
        response = await run_store_call("scan_audit", self._table.scan)
        items = response.get("Items", [])
        while "LastEvaluatedKey" in response:
            response = await run_store_call(
                "scan_audit", self._table.scan, ExclusiveStartKey=response["LastEvaluatedKey"]
            )
            items.extend(response.get("Items", []))
        return items

    async def query(self, query: AuditQuery) -> List[AuditLogEntry]:
        try:
            entries = [AuditLogEntry.from_dict(item) for item in await self._scan()]
        except self._client_error as e:
            logger.error(f"Error querying audit logs: {e}")
            raise
        matching = [e for e in entries if query.matches(e)]
        matching.sort(key=lambda e: e.timestamp, reverse=True)
        return matching

    def _delete_items(self, items: List[dict]):
        with self._table.batch_writer() as batch:
            for item in items:
                batch.delete_item(Key={"PK": item["PK"], "SK": item["SK"]})

    async def delete_before(self, cutoff: datetime) -> int:
        cutoff_str = _isoformat(cutoff)
        try:
            stale = [item for item in await self._scan() if item.get("timestamp", "") < cutoff_str]
            await run_store_call("purge_audit", self._delete_items, stale)
            return len(stale)
        except self._client_error as e:
            logger.error(f"Error purging audit logs before {cutoff_str}: {e}")
            raise


def create_audit_log_repository() -> AuditLogRepository:
    """Create the audit repository based on environment configuration."""
    table_name = os.getenv("DYNAMODB_RBAC_AUDIT_TABLE_NAME")
    if table_name:
        return DynamoDBAuditLogRepository(table_name=table_name)
    logger.info(
        "DYNAMODB_RBAC_AUDIT_TABLE_NAME not set. Using in-memory audit log storage."
    )
    return InMemoryAuditLogRepository()


def _paginate(entries: List[AuditLogEntry], limit: int, skip: int) -> AuditPage:
    limit = max(1, limit)
    skip = max(0, skip)
    total = len(entries)
    return AuditPage(
        logs=entries[skip:skip + limit],
        total=total,
        page=skip // limit + 1,
        pages=math.ceil(total / limit),
    )


class AuditLogService:
    """
    Records and queries role lifecycle events.

    Writes are best-effort: a storage failure is logged and reported in the
    returned ``AuditWriteResult`` but never raised, so an audit outage does
    not block the role mutation that triggered it. Failed entries are kept
    in a bounded dead-letter queue for ``retry_failed``.
    """

    def __init__(self, repository: AuditLogRepository, max_failed_entries: int = 1000):
        self.repository = repository
        self.failed_entries: Deque[AuditLogEntry] = deque(maxlen=max_failed_entries)

    async def log(
        self,
        action: AuditAction,
        performed_by: str,
        changes: Dict[str, Any],
        role_id: Optional[str] = None,
        role_name: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AuditWriteResult:
        """Append an audit entry. Never raises on storage failure."""
        entry = AuditLogEntry(
            log_id=str(uuid.uuid4()),
            action=AuditAction(action),
            role_id=role_id,
            role_name=role_name,
            performed_by=performed_by,
            changes=changes,
            ip_address=ip_address,
            user_agent=user_agent,
            timestamp=_isoformat(datetime.now(timezone.utc)),
        )
        try:
            await self.repository.append(entry)
        except Exception as e:
            logger.error(
                f"Failed to write audit log for {entry.action.value} on role {role_id}: {e}",
                exc_info=True,
                extra={"event": "rbac_audit_write_failed", "log_id": entry.log_id},
            )
            self.failed_entries.append(entry)
            return AuditWriteResult(ok=False, entry=entry, error=str(e))
        return AuditWriteResult(ok=True, entry=entry)

    async def retry_failed(self) -> Tuple[int, int]:
        """
        Replay dead-lettered entries.

        Returns:
            Tuple of (written, still_failed)
        """
        pending = list(self.failed_entries)
        self.failed_entries.clear()
        written = 0
        for entry in pending:
            try:
                await self.repository.append(entry)
                written += 1
            except Exception as e:
                logger.warning(f"Audit log {entry.log_id} still failing: {e}")
                self.failed_entries.append(entry)
        return written, len(self.failed_entries)

    async def get_role_logs(
        self,
        role_id: str,
        limit: int = DEFAULT_PAGE_SIZE,
        skip: int = 0,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> AuditPage:
        entries = await self.repository.query(
            AuditQuery(role_id=role_id, start_date=start_date, end_date=end_date)
        )
        return _paginate(entries, limit, skip)

    async def get_user_logs(
        self,
        user_id: str,
        limit: int = DEFAULT_PAGE_SIZE,
        skip: int = 0,
        actions: Optional[Sequence[AuditAction]] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> AuditPage:
        """Logs of mutations performed by ``user_id``."""
        entries = await self.repository.query(
            AuditQuery(
                performed_by=user_id,
                actions=actions,
                start_date=start_date,
                end_date=end_date,
            )
        )
        return _paginate(entries, limit, skip)

    async def get_all_logs(
        self,
        limit: int = DEFAULT_PAGE_SIZE,
        skip: int = 0,
        action: Optional[AuditAction] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> AuditPage:
        entries = await self.repository.query(
            AuditQuery(
                actions=[action] if action else None,
                start_date=start_date,
                end_date=end_date,
            )
        )
        return _paginate(entries, limit, skip)

    async def get_stats(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Totals by action and the ten most active users."""
        entries = await self.repository.query(
            AuditQuery(start_date=start_date, end_date=end_date)
        )
        by_action = Counter(e.action.value for e in entries)
        by_user = Counter(e.performed_by for e in entries)
        return {
            "total": len(entries),
            "byAction": dict(by_action),
            "topUsers": [
                {"userId": user_id, "count": count}
                for user_id, count in by_user.most_common(10)
            ],
        }

    async def cleanup_old_logs(self, retention_days: int = DEFAULT_RETENTION_DAYS) -> int:
        """
        Delete entries older than ``retention_days``.

        Meant to be run by an external scheduler.

        Returns:
            Number of entries deleted
        """
        cutoff = datetime.now(timezone.utc) - timedelta(days=retention_days)
        deleted = await self.repository.delete_before(cutoff)
        logger.info(
            f"Purged {deleted} audit log entries older than {retention_days} days",
            extra={"event": "rbac_audit_cleanup", "deleted": deleted},
        )
        return deleted
