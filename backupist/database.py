"""SQLite storage of backup policies, jobs and results."""

from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator

from backupist.types import BackupJob, BackupPolicy, BackupResult, JobStatus

log = logging.getLogger(__name__)

_SCHEMA = (
    """CREATE TABLE IF NOT EXISTS backup_policies (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        source_path TEXT NOT NULL,
        destination_path TEXT NOT NULL,
        schedule_cron TEXT,
        retention_count INTEGER DEFAULT 1,
        archive_enabled BOOLEAN DEFAULT true,
        encryption_enabled BOOLEAN DEFAULT false,
        encryption_password TEXT,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )""",
    """CREATE TABLE IF NOT EXISTS backup_jobs (
        id TEXT PRIMARY KEY,
        policy_id TEXT NOT NULL,
        status TEXT NOT NULL,
        started_at DATETIME,
        completed_at DATETIME,
        error TEXT,
        files_processed INTEGER DEFAULT 0,
        total_size INTEGER DEFAULT 0,
        backup_path TEXT,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (policy_id) REFERENCES backup_policies(id)
    )""",
    """CREATE TABLE IF NOT EXISTS backup_results (
        id TEXT PRIMARY KEY,
        job_id TEXT NOT NULL,
        backup_path TEXT NOT NULL,
        files_processed INTEGER NOT NULL,
        total_size INTEGER NOT NULL,
        compressed_size INTEGER DEFAULT 0,
        compression_ratio REAL DEFAULT 0,
        encrypted BOOLEAN DEFAULT false,
        compressed BOOLEAN DEFAULT false,
        checksum TEXT,
        duration_seconds INTEGER DEFAULT 0,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (job_id) REFERENCES backup_jobs(id)
    )""",
    """CREATE TABLE IF NOT EXISTS backup_files (
        id TEXT PRIMARY KEY,
        job_id TEXT NOT NULL,
        file_path TEXT NOT NULL,
        relative_path TEXT NOT NULL,
        file_size INTEGER NOT NULL,
        checksum TEXT,
        processed BOOLEAN DEFAULT false,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (job_id) REFERENCES backup_jobs(id)
    )""",
    "CREATE INDEX IF NOT EXISTS idx_backup_policies_name ON backup_policies(name)",
    "CREATE INDEX IF NOT EXISTS idx_backup_jobs_policy_id ON backup_jobs(policy_id)",
    "CREATE INDEX IF NOT EXISTS idx_backup_jobs_status ON backup_jobs(status)",
    "CREATE INDEX IF NOT EXISTS idx_backup_results_job_id ON backup_results(job_id)",
    "CREATE INDEX IF NOT EXISTS idx_backup_files_job_id ON backup_files(job_id)",
)

_TIME_FORMAT = "%Y-%m-%d %H:%M:%S.%f"


class DatabaseError(Exception):
    """Raised when the backup database cannot be opened, read or written."""


class PolicyNotFoundError(DatabaseError, LookupError):
    """Raised when no policy has the requested id."""


def to_db_time(moment: datetime | None) -> str | None:
    """UTC text in the same shape SQLite's CURRENT_TIMESTAMP uses; naive values are local time."""
    if moment is None:
        return None
    return moment.astimezone(timezone.utc).strftime(_TIME_FORMAT)


def from_db_time(value: Any) -> datetime | None:
    """Parse a stored timestamp into an aware UTC datetime."""
    if value is None or value == "":
        return None
    moment = datetime.fromisoformat(str(value))
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


class BackupDatabase:
    """Connection to the SQLite file that records policies, jobs and results."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = os.fspath(path)
        try:
            self._conn = sqlite3.connect(self.path, isolation_level=None)
        except sqlite3.Error as exc:
            raise DatabaseError(f"cannot open database {self.path}: {exc}") from exc
        self._conn.row_factory = sqlite3.Row
        try:
            for statement in _SCHEMA:
                self._conn.execute(statement)
        except sqlite3.Error as exc:
            self._conn.close()
            raise DatabaseError(f"cannot create tables: {exc}") from exc

    def __enter__(self) -> BackupDatabase:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the connection."""
        self._conn.close()

    def _execute(self, query: str, params: tuple[Any, ...], what: str) -> sqlite3.Cursor:
        try:
            return self._conn.execute(query, params)
        except sqlite3.Error as exc:
            raise DatabaseError(f"{what}: {exc}") from exc

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run statements on the yielded connection atomically; any error rolls them back."""
        try:
            self._conn.execute("BEGIN")
        except sqlite3.Error as exc:
            raise DatabaseError(f"cannot begin transaction: {exc}") from exc
        try:
            yield self._conn
        except sqlite3.Error as exc:
            self._rollback()
            raise DatabaseError(f"transaction failed: {exc}") from exc
        except BaseException:
            self._rollback()
            raise
        try:
            self._conn.commit()
        except sqlite3.Error as exc:
            self._rollback()
            raise DatabaseError(f"cannot commit transaction: {exc}") from exc

    def _rollback(self) -> None:
        try:
            self._conn.rollback()
        except sqlite3.Error:
            log.warning("rollback failed", exc_info=True)

    def save_policy(self, policy: BackupPolicy) -> None:
        """Insert or replace a policy."""
        self._execute(
            """INSERT OR REPLACE INTO backup_policies (
                id, name, source_path, destination_path, schedule_cron,
                retention_count, archive_enabled, encryption_enabled, encryption_password,
                updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)""",
            (
                policy.id,
                policy.name,
                policy.source_path,
                policy.destination_path,
                policy.schedule,
                policy.retention_count,
                policy.archive_enabled,
                policy.encryption_enabled,
                policy.encryption_password,
            ),
            "cannot save policy",
        )
        log.info("backup policy saved: policy_id=%s name=%s", policy.id, policy.name)

    @staticmethod
    def _policy_from_row(row: sqlite3.Row, with_password: bool) -> BackupPolicy:
        return BackupPolicy(
            id=row["id"],
            name=row["name"],
            source_path=row["source_path"],
            destination_path=row["destination_path"],
            schedule=row["schedule_cron"] or "",
            retention_count=int(row["retention_count"] or 0),
            archive_enabled=bool(row["archive_enabled"]),
            encryption_enabled=bool(row["encryption_enabled"]),
            encryption_password=(row["encryption_password"] or "") if with_password else "",
            created_at=from_db_time(row["created_at"]),
            updated_at=from_db_time(row["updated_at"]),
        )

    def get_policy(self, policy_id: str) -> BackupPolicy:
        """The policy with this id, including its encryption password."""
        row = self._execute(
            """SELECT id, name, source_path, destination_path, schedule_cron,
                   retention_count, archive_enabled, encryption_enabled, encryption_password,
                   created_at, updated_at
            FROM backup_policies WHERE id = ?""",
            (policy_id,),
            "cannot read policy",
        ).fetchone()
        if row is None:
            raise PolicyNotFoundError(f"policy with ID {policy_id} not found")
        return self._policy_from_row(row, with_password=True)

    def save_job(self, job: BackupJob) -> None:
        """Insert or replace a job."""
        self._execute(
            """INSERT OR REPLACE INTO backup_jobs (
                id, policy_id, status, started_at, completed_at, error,
                files_processed, total_size, backup_path
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                job.id,
                job.policy_id,
                JobStatus(job.status).value,
                to_db_time(job.started_at),
                to_db_time(job.completed_at),
                job.error,
                job.files_processed,
                job.total_size,
                job.backup_path,
            ),
            "cannot save backup job",
        )

    def save_result(self, result: BackupResult) -> None:
        """Insert the result of a job; a job can have only one."""
        self._execute(
            """INSERT INTO backup_results (
                id, job_id, backup_path, files_processed, total_size,
                compressed_size, compression_ratio, encrypted, compressed,
                checksum, duration_seconds
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                f"result_{result.job_id}",
                result.job_id,
                result.backup_path,
                result.files_processed,
                result.total_size,
                result.compressed_size,
                result.compression_ratio,
                result.encrypted,
                result.compressed,
                result.checksum,
                int(result.duration.total_seconds()),
            ),
            "cannot save backup result",
        )

    def get_backup_history(self, policy_id: str, limit: int) -> list[BackupJob]:
        """Jobs of a policy, newest first, at most `limit` of them."""
        rows = self._execute(
            """SELECT id, policy_id, status, started_at, completed_at, error,
                   files_processed, total_size, backup_path, created_at
            FROM backup_jobs WHERE policy_id = ?
            ORDER BY created_at DESC LIMIT ?""",
            (policy_id, limit),
            "cannot read backup history",
        ).fetchall()
        try:
            return [
                BackupJob(
                    id=row["id"],
                    policy_id=row["policy_id"],
                    status=JobStatus(row["status"]),
                    started_at=from_db_time(row["started_at"]),
                    completed_at=from_db_time(row["completed_at"]),
                    error=row["error"] or "",
                    files_processed=int(row["files_processed"] or 0),
                    total_size=int(row["total_size"] or 0),
                    backup_path=row["backup_path"] or "",
                    created_at=from_db_time(row["created_at"]),
                )
                for row in rows
            ]
        except ValueError as exc:
            raise DatabaseError(f"cannot read backup history row: {exc}") from exc

    def get_all_policies(self) -> list[BackupPolicy]:
        """Every policy, newest first, without encryption passwords."""
        rows = self._execute(
            """SELECT id, name, source_path, destination_path, schedule_cron,
                   retention_count, archive_enabled, encryption_enabled,
                   NULL AS encryption_password, created_at, updated_at
            FROM backup_policies ORDER BY created_at DESC""",
            (),
            "cannot read policies",
        ).fetchall()
        return [self._policy_from_row(row, with_password=False) for row in rows]

    def delete_policy(self, policy_id: str) -> None:
        """Remove a policy together with its jobs, results and file records."""
        with self.transaction() as conn:
            conn.execute(
                "DELETE FROM backup_files WHERE job_id IN "
                "(SELECT id FROM backup_jobs WHERE policy_id = ?)",
                (policy_id,),
            )
            conn.execute(
                "DELETE FROM backup_results WHERE job_id IN "
                "(SELECT id FROM backup_jobs WHERE policy_id = ?)",
                (policy_id,),
            )
            conn.execute("DELETE FROM backup_jobs WHERE policy_id = ?", (policy_id,))
            conn.execute("DELETE FROM backup_policies WHERE id = ?", (policy_id,))
        log.info("backup policy deleted: policy_id=%s", policy_id)