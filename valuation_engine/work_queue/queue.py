"""Durable FIFO of deferred source fetches, stored in ``queued_requests``.

Fast user-facing valuations enqueue work for slow sources here; the
consumer drains it in bounded batches later. Storage failures are logged
and never propagate to the enqueuing caller.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timedelta, timezone

from ..cache.fingerprint import query_fingerprint
from ..common.config import Config
from ..common.models import QueuedRequest, QueueStatus, SearchParams, ValuationInput
from ..database.connection import get_connection

logger = logging.getLogger(__name__)

_ACTIVE = (QueueStatus.PENDING.value, QueueStatus.PROCESSING.value)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class WorkQueue:
    """SQLite-backed queue of QueuedRequest entries.

    Usage:
        queue = WorkQueue(config)
        queued = queue.enqueue(input, params, "subito")
        batch = queue.claim_batch(5)
    """

    def __init__(self, config: Config | None = None) -> None:
        self.config = config or Config()

    @property
    def max_size(self) -> int:
        return self.config.queue_max_size

    @property
    def max_attempts(self) -> int:
        return self.config.queue_max_attempts

    # --- Producer side ---

    def enqueue(
        self,
        input: ValuationInput,
        params: SearchParams,
        source: str,
    ) -> QueuedRequest | None:
        """Append a pending request.

        Returns the existing entry when an identical request is already
        pending or processing, and None when the queue is full or storage
        fails.
        """
        key = query_fingerprint(input, params, source)
        try:
            conn = get_connection(self.config)
            try:
                # Checks and insert share one write transaction
                conn.execute("BEGIN IMMEDIATE")
                existing = conn.execute(
                    f"""
                    SELECT * FROM queued_requests
                    WHERE fingerprint = ? AND status IN ({",".join("?" * len(_ACTIVE))})
                    ORDER BY created_at LIMIT 1
                    """,
                    (key, *_ACTIVE),
                ).fetchone()
                if existing is not None:
                    conn.rollback()
                    logger.debug("Request %s already queued", existing["id"])
                    return self._row_to_request(existing)

                pending = conn.execute(
                    "SELECT COUNT(*) FROM queued_requests WHERE status = ?",
                    (QueueStatus.PENDING.value,),
                ).fetchone()[0]
                if pending >= self.max_size:
                    conn.rollback()
                    logger.warning(
                        "Work queue full (%d pending), dropping %s request for %s %s",
                        pending, source, input.brand, input.model,
                    )
                    return None

                request = QueuedRequest(input=input, params=params, source=source)
                request.updated_at = request.created_at
                conn.execute(
                    """
                    INSERT INTO queued_requests
                        (id, fingerprint, source, input_json, params_json,
                         status, attempts, last_error, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        request.id,
                        key,
                        source,
                        json.dumps(input.to_dict(), ensure_ascii=False),
                        json.dumps(params.to_dict()),
                        request.status.value,
                        request.attempts,
                        None,
                        request.created_at.isoformat(),
                        request.updated_at.isoformat(),
                    ),
                )
                conn.commit()
            except sqlite3.Error:
                conn.rollback()
                raise
            finally:
                conn.close()
        except sqlite3.Error:
            logger.warning("Failed to enqueue %s request", source, exc_info=True)
            return None

        logger.info("Queued %s request %s (%d pending)", source, request.id, pending + 1)
        return request

    # --- Inspection ---

    def get(self, request_id: str) -> QueuedRequest | None:
        conn = get_connection(self.config)
        try:
            row = conn.execute(
                "SELECT * FROM queued_requests WHERE id = ?", (request_id,)
            ).fetchone()
        finally:
            conn.close()
        return self._row_to_request(row) if row else None

    def get_pending(self, limit: int | None = None) -> list[QueuedRequest]:
        """Pending entries, oldest first."""
        sql = "SELECT * FROM queued_requests WHERE status = ? ORDER BY created_at"
        args: tuple = (QueueStatus.PENDING.value,)
        if limit is not None:
            sql += " LIMIT ?"
            args += (limit,)

        conn = get_connection(self.config)
        try:
            rows = conn.execute(sql, args).fetchall()
        finally:
            conn.close()
        return [self._row_to_request(row) for row in rows]

    def counts(self) -> dict[str, int]:
        """Number of entries per status (every status present, zero if empty)."""
        conn = get_connection(self.config)
        try:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS n FROM queued_requests GROUP BY status"
            ).fetchall()
        finally:
            conn.close()

        counts = {status.value: 0 for status in QueueStatus}
        for row in rows:
            counts[row["status"]] = row["n"]
        return counts

    # --- Consumer side ---

    def claim_batch(self, max_items: int) -> list[QueuedRequest]:
        """Atomically move up to ``max_items`` oldest pending entries to processing."""
        if max_items <= 0:
            return []

        conn = get_connection(self.config)
        try:
            conn.execute("BEGIN IMMEDIATE")
            rows = conn.execute(
                """
                SELECT * FROM queued_requests
                WHERE status = ?
                ORDER BY created_at
                LIMIT ?
                """,
                (QueueStatus.PENDING.value, max_items),
            ).fetchall()

            now = _now()
            conn.executemany(
                "UPDATE queued_requests SET status = ?, updated_at = ? WHERE id = ?",
                [(QueueStatus.PROCESSING.value, now, row["id"]) for row in rows],
            )
            conn.commit()
        except sqlite3.Error:
            conn.rollback()
            raise
        finally:
            conn.close()

        claimed = []
        for row in rows:
            request = self._row_to_request(row)
            request.status = QueueStatus.PROCESSING
            request.updated_at = datetime.fromisoformat(now)
            claimed.append(request)

        if claimed:
            logger.info("Claimed %d queued requests", len(claimed))
        return claimed

    def mark_completed(self, request_id: str) -> None:
        conn = get_connection(self.config)
        try:
            conn.execute(
                """
                UPDATE queued_requests
                SET status = ?, last_error = NULL, updated_at = ?
                WHERE id = ?
                """,
                (QueueStatus.COMPLETED.value, _now(), request_id),
            )
            conn.commit()
        finally:
            conn.close()

    def mark_failed(self, request_id: str, error: str) -> None:
        """Record a failed attempt; attempts never exceed max_attempts."""
        conn = get_connection(self.config)
        try:
            conn.execute(
                """
                UPDATE queued_requests
                SET status = ?,
                    attempts = MIN(attempts + 1, ?),
                    last_error = ?,
                    updated_at = ?
                WHERE id = ?
                """,
                (QueueStatus.FAILED.value, self.max_attempts, error[:500], _now(), request_id),
            )
            conn.commit()
        finally:
            conn.close()

    def retry_failed(self) -> int:
        """Return failed entries with attempts left to pending. Returns the count."""
        conn = get_connection(self.config)
        try:
            cursor = conn.execute(
                """
                UPDATE queued_requests
                SET status = ?, updated_at = ?
                WHERE status = ? AND attempts < ?
                """,
                (QueueStatus.PENDING.value, _now(), QueueStatus.FAILED.value, self.max_attempts),
            )
            conn.commit()
            revived = cursor.rowcount
        finally:
            conn.close()

        if revived:
            logger.info("Re-queued %d failed requests", revived)
        return revived

    def requeue_stale(self, max_age_minutes: int | None = None) -> int:
        """Fail entries stuck in processing longer than ``max_age_minutes``.

        A consumer that dies between claim and mark leaves its batch in
        processing. Those entries count as one failed attempt, so
        ``retry_failed`` can pick them up again. Returns the count.
        """
        if max_age_minutes is None:
            max_age_minutes = self.config.queue_stale_minutes
        cutoff = (datetime.now(timezone.utc) - timedelta(minutes=max_age_minutes)).isoformat()

        conn = get_connection(self.config)
        try:
            cursor = conn.execute(
                """
                UPDATE queued_requests
                SET status = ?,
                    attempts = MIN(attempts + 1, ?),
                    last_error = ?,
                    updated_at = ?
                WHERE status = ? AND updated_at < ?
                """,
                (
                    QueueStatus.FAILED.value,
                    self.max_attempts,
                    f"stale: still processing after {max_age_minutes} min",
                    _now(),
                    QueueStatus.PROCESSING.value,
                    cutoff,
                ),
            )
            conn.commit()
            stale = cursor.rowcount
        finally:
            conn.close()

        if stale:
            logger.warning("Marked %d stale processing requests as failed", stale)
        return stale

    def purge_finished(self) -> int:
        """Delete completed and failed entries. Returns the number removed."""
        conn = get_connection(self.config)
        try:
            cursor = conn.execute(
                "DELETE FROM queued_requests WHERE status IN (?, ?)",
                (QueueStatus.COMPLETED.value, QueueStatus.FAILED.value),
            )
            conn.commit()
            removed = cursor.rowcount
        finally:
            conn.close()

        logger.info("Purged %d finished requests", removed)
        return removed

    @staticmethod
    def _row_to_request(row: sqlite3.Row) -> QueuedRequest:
        return QueuedRequest(
            input=ValuationInput(**json.loads(row["input_json"])),
            params=SearchParams.from_dict(json.loads(row["params_json"])),
            source=row["source"],
            id=row["id"],
            created_at=datetime.fromisoformat(row["created_at"]),
            attempts=row["attempts"],
            status=QueueStatus(row["status"]),
            last_error=row["last_error"],
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )
