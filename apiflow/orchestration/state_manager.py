"""Run audit store implementations."""
from __future__ import annotations

import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional, Union

from .workflow_engine.steps import ExecutionResult, WorkflowStatus

logger = logging.getLogger(__name__)

RunRecord = Dict[str, Any]

FINISHED_STATUSES = (
    WorkflowStatus.COMPLETED.value,
    WorkflowStatus.FAILED.value,
    WorkflowStatus.CANCELLED.value,
)


class RunStateManager(ABC):
    """Abstract base class for run audit persistence.

    Stores are audit-only: a saved record describes what a run did, it is
    never used to resume one.
    """

    @abstractmethod
    def save_run(self, run_id: str, result: ExecutionResult) -> bool:
        """Save a run record.

        Args:
            run_id: Run identifier
            result: Execution result to record

        Returns:
            True if successful
        """
        pass

    @abstractmethod
    def load_run(self, run_id: str) -> Optional[RunRecord]:
        """Load a run record.

        Args:
            run_id: Run identifier

        Returns:
            JSON-safe record (see ExecutionResult.to_dict) or None
        """
        pass

    @abstractmethod
    def delete_run(self, run_id: str) -> bool:
        pass

    @abstractmethod
    def list_runs(self) -> Dict[str, WorkflowStatus]:
        """List saved runs.

        Returns:
            Dictionary of run ID to final status
        """
        pass

    @abstractmethod
    def cleanup_old_runs(self, days: int = 30) -> int:
        """Remove finished runs older than ``days``.

        Returns:
            Number of runs removed
        """
        pass


class InMemoryRunStore(RunStateManager):
    """In-memory run store, the executor default."""

    def __init__(self):
        self._runs: Dict[str, RunRecord] = {}
        self._saved_at: Dict[str, datetime] = {}
        self._lock = Lock()

    def save_run(self, run_id: str, result: ExecutionResult) -> bool:
        record = result.to_dict()
        with self._lock:
            self._runs[run_id] = record
            self._saved_at[run_id] = datetime.now()
        logger.debug(f"Saved run {run_id} in memory")
        return True

    def load_run(self, run_id: str) -> Optional[RunRecord]:
        with self._lock:
            record = self._runs.get(run_id)
            return json.loads(json.dumps(record)) if record is not None else None

    def delete_run(self, run_id: str) -> bool:
        with self._lock:
            if run_id in self._runs:
                del self._runs[run_id]
                self._saved_at.pop(run_id, None)
                logger.debug(f"Deleted run {run_id}")
                return True
            return False

    def list_runs(self) -> Dict[str, WorkflowStatus]:
        with self._lock:
            return {run_id: WorkflowStatus(record["status"]) for run_id, record in self._runs.items()}

    def cleanup_old_runs(self, days: int = 30) -> int:
        cutoff = datetime.now() - timedelta(days=days)
        with self._lock:
            stale = [
                run_id
                for run_id, saved in self._saved_at.items()
                if saved < cutoff and self._runs[run_id]["status"] in FINISHED_STATUSES
            ]
            for run_id in stale:
                del self._runs[run_id]
                del self._saved_at[run_id]
        if stale:
            logger.info(f"Cleaned up {len(stale)} old runs")
        return len(stale)


class SQLiteRunStore(RunStateManager):
    """Persistent run store using SQLite."""

    def __init__(self, db_path: Optional[Union[str, Path]] = None):
        """Initialize persistent run store.

        Args:
            db_path: Path to SQLite database
        """
        self.db_path = Path(db_path) if db_path else Path.home() / ".apiflow" / "runs.db"
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()
        self._init_database()

    def _init_database(self):
        """Initialize database schema."""
        with sqlite3.connect(str(self.db_path)) as conn:
            cursor = conn.cursor()

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS runs (
                    run_id TEXT PRIMARY KEY,
                    workflow_name TEXT NOT NULL,
                    status TEXT NOT NULL,
                    failed_step_id TEXT,
                    start_time TIMESTAMP,
                    end_time TIMESTAMP,
                    record BLOB NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """
            )
            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_runs_status
                ON runs(status)
            """
            )
            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_runs_updated
                ON runs(updated_at)
            """
            )

            conn.commit()
            logger.info(f"Initialized run database at {self.db_path}")

    def save_run(self, run_id: str, result: ExecutionResult) -> bool:
        try:
            record = result.to_dict()
            with self._lock:
                with sqlite3.connect(str(self.db_path)) as conn:
                    conn.execute(
                        """
                        INSERT OR REPLACE INTO runs
                        (run_id, workflow_name, status, failed_step_id, start_time, end_time,
                         record, updated_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                    """,
                        (
                            run_id,
                            result.workflow_name,
                            result.status.value,
                            result.failed_step_id,
                            record["start_time"],
                            record["end_time"],
                            json.dumps(record).encode("utf-8"),
                        ),
                    )
                    conn.commit()
            logger.debug(f"Persisted run {run_id}")
            return True

        except (sqlite3.Error, TypeError, ValueError) as e:
            logger.error(f"Failed to save run {run_id}: {e}")
            return False

    def load_run(self, run_id: str) -> Optional[RunRecord]:
        try:
            with self._lock:
                with sqlite3.connect(str(self.db_path)) as conn:
                    row = conn.execute(
                        "SELECT record FROM runs WHERE run_id = ?", (run_id,)
                    ).fetchone()
        except sqlite3.Error as e:
            logger.error(f"Failed to load run {run_id}: {e}")
            return None

        if row is None:
            return None
        return json.loads(row[0].decode("utf-8"))

    def delete_run(self, run_id: str) -> bool:
        try:
            with self._lock:
                with sqlite3.connect(str(self.db_path)) as conn:
                    cursor = conn.execute("DELETE FROM runs WHERE run_id = ?", (run_id,))
                    conn.commit()
                    deleted = cursor.rowcount > 0
        except sqlite3.Error as e:
            logger.error(f"Failed to delete run {run_id}: {e}")
            return False

        if deleted:
            logger.debug(f"Deleted run {run_id}")
        return deleted

    def list_runs(self) -> Dict[str, WorkflowStatus]:
        try:
            with self._lock:
                with sqlite3.connect(str(self.db_path)) as conn:
                    rows = conn.execute("SELECT run_id, status FROM runs").fetchall()
        except sqlite3.Error as e:
            logger.error(f"Failed to list runs: {e}")
            return {}

        return {row[0]: WorkflowStatus(row[1]) for row in rows}

    def cleanup_old_runs(self, days: int = 30) -> int:
        try:
            with self._lock:
                with sqlite3.connect(str(self.db_path)) as conn:
                    cursor = conn.execute(
                        f"""
                        DELETE FROM runs
                        WHERE status IN ({", ".join("?" for _ in FINISHED_STATUSES)})
                        AND updated_at < datetime('now', '-' || ? || ' days')
                    """,
                        (*FINISHED_STATUSES, days),
                    )
                    conn.commit()
                    removed = cursor.rowcount
        except sqlite3.Error as e:
            logger.error(f"Failed to clean up old runs: {e}")
            return 0

        logger.info(f"Cleaned up {removed} old runs")
        return removed
