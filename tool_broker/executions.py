"""
Execution tracking for tool invocations.
"""
from __future__ import annotations

import logging
import threading
import uuid
from typing import Any, Dict, List, Optional

from tool_broker.schema import (
    ExecutionRecord,
    ExecutionStatus,
    InvocationResult,
    ToolExecutionContext,
    utcnow,
)

logger = logging.getLogger(__name__)

_ALLOWED = {
    ExecutionStatus.PENDING: {ExecutionStatus.RUNNING, ExecutionStatus.FAILED},
    ExecutionStatus.RUNNING: {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.TIMEOUT},
}


class ExecutionTracker:
    """
    Lifecycle of every invocation: pending -> running -> completed|failed|timeout.

    Status only moves forward. A transition out of a terminal state is
    ignored, which is how late completions of abandoned calls are dropped.
    """

    def __init__(self):
        # Insertion order doubles as start order.
        self._records: Dict[str, ExecutionRecord] = {}
        self._lock = threading.Lock()

    def begin(
        self,
        provider: str,
        capability: str,
        args: Dict[str, Any],
        context: Optional[ToolExecutionContext] = None,
    ) -> str:
        execution_id = f"exec_{uuid.uuid4().hex[:16]}"
        record = ExecutionRecord(
            id=execution_id,
            provider=provider,
            capability=capability,
            args=dict(args or {}),
            started_at=utcnow(),
            context=context,
        )
        with self._lock:
            self._records[execution_id] = record
        logger.debug(f"Created execution {execution_id}: {provider}.{capability}")
        return execution_id

    def _transition(self, execution_id: str, target: ExecutionStatus) -> Optional[ExecutionRecord]:
        with self._lock:
            record = self._records.get(execution_id)
            if record is None:
                return None
            if target not in _ALLOWED.get(record.status, set()):
                logger.debug(f"Ignoring {record.status.value} -> {target.value} for {execution_id}")
                return None
            record.status = target
            if target.terminal:
                record.ended_at = utcnow()
            return record

    def mark_running(self, execution_id: str, timeout_ms: Optional[int] = None) -> bool:
        record = self._transition(execution_id, ExecutionStatus.RUNNING)
        if record is None:
            return False
        record.timeout_ms = timeout_ms
        return True

    def complete(self, execution_id: str, result: InvocationResult) -> bool:
        """Completed or failed depending on result.success."""
        target = ExecutionStatus.COMPLETED if result.success else ExecutionStatus.FAILED
        record = self._transition(execution_id, target)
        if record is None:
            return False
        record.result = result
        if not result.success:
            record.error = result.error
        return True

    def fail(self, execution_id: str, message: str) -> bool:
        record = self._transition(execution_id, ExecutionStatus.FAILED)
        if record is None:
            return False
        record.error = message
        record.result = InvocationResult(success=False, error=message)
        logger.error(f"Failed execution {execution_id}: {message}")
        return True

    def timeout(self, execution_id: str) -> bool:
        record = self._transition(execution_id, ExecutionStatus.TIMEOUT)
        if record is None:
            return False
        record.abandoned = True
        record.error = f"Timed out after {record.timeout_ms}ms"
        return True

    def abandon_late_result(self, execution_id: str, result: Optional[InvocationResult]) -> None:
        """
        A timed-out call finished after all. Its outcome is not applied; the
        record keeps its terminal status.
        """
        record = self.get(execution_id)
        if record is None or not record.status.terminal:
            return
        outcome = "no result" if result is None else ("success" if result.success else f"error: {result.error}")
        logger.warning(
            f"Discarding late completion for {execution_id} ({record.provider}.{record.capability}, "
            f"status={record.status.value}): {outcome}"
        )

    def get(self, execution_id: str) -> Optional[ExecutionRecord]:
        return self._records.get(execution_id)

    def history(self, limit: Optional[int] = None) -> List[ExecutionRecord]:
        with self._lock:
            records = list(self._records.values())
        records.reverse()
        return records if limit is None else records[: max(limit, 0)]

    def stats(self) -> Dict[str, int]:
        with self._lock:
            records = list(self._records.values())
        out = {s.value: 0 for s in ExecutionStatus}
        for r in records:
            out[r.status.value] += 1
        out["total"] = len(records)
        return out

    def __len__(self) -> int:
        return len(self._records)
