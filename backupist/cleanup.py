"""Removal of backups that retention rules, failures or lost policies leave behind."""

from __future__ import annotations

import glob
import logging
import os
import shutil
import tempfile
from datetime import datetime, timedelta, timezone

from backupist.database import BackupDatabase, DatabaseError, from_db_time, to_db_time
from backupist.storage import StorageError, StorageProvider
from backupist.types import BackupJob, BackupPolicy, JobStatus

log = logging.getLogger(__name__)

HISTORY_LIMIT = 1000
TEMP_DIR_PATTERN = "backup-*"

_EARLIEST = datetime.min.replace(tzinfo=timezone.utc)


def _created(job: BackupJob) -> datetime:
    return job.created_at if job.created_at is not None else _EARLIEST


def _stamp(moment: datetime | None) -> str:
    return moment.isoformat() if moment is not None else ""


class Cleaner:
    """Applies retention rules to the backups recorded in a database and held in a storage."""

    def __init__(
        self,
        database: BackupDatabase,
        storage: StorageProvider,
        temp_dir: str | os.PathLike[str] | None = None,
    ) -> None:
        self.database = database
        self.storage = storage
        self.temp_dir = os.fspath(temp_dir) if temp_dir is not None else tempfile.gettempdir()

    def get_backups_for_policy(self, policy: BackupPolicy) -> list[BackupJob]:
        """Completed jobs of the policy whose backup file is still in the storage."""
        history = self.database.get_backup_history(policy.id, HISTORY_LIMIT)
        verified: list[BackupJob] = []
        for job in history:
            if job.status != JobStatus.COMPLETED or not job.backup_path:
                continue
            try:
                present = self.storage.exists(job.backup_path)
            except StorageError as exc:
                log.warning(
                    "cannot check backup: backup_id=%s backup_path=%s error=%s",
                    job.id, job.backup_path, exc,
                )
                continue
            if present:
                verified.append(job)
            else:
                log.warning(
                    "backup not found in storage: backup_id=%s backup_path=%s",
                    job.id, job.backup_path,
                )
        return verified

    def delete_backup(self, job: BackupJob) -> None:
        """Remove the backup file, its result and file records, and mark the job deleted."""
        try:
            self.storage.delete(job.backup_path)
        except StorageError as exc:
            raise StorageError(f"cannot delete file from storage: {exc}") from exc
        with self.database.transaction() as conn:
            conn.execute("DELETE FROM backup_files WHERE job_id = ?", (job.id,))
            conn.execute("DELETE FROM backup_results WHERE job_id = ?", (job.id,))
            conn.execute(
                "UPDATE backup_jobs SET status = ? WHERE id = ?",
                (JobStatus.DELETED.value, job.id),
            )

    def _delete_all(self, jobs: list[BackupJob], what: str) -> list[BackupJob]:
        deleted: list[BackupJob] = []
        for job in jobs:
            try:
                self.delete_backup(job)
            except (StorageError, DatabaseError) as exc:
                log.warning(
                    "cannot delete %s backup: backup_id=%s backup_path=%s error=%s",
                    what, job.id, job.backup_path, exc,
                )
                continue
            log.info(
                "%s backup deleted: backup_id=%s backup_path=%s created_at=%s",
                what, job.id, job.backup_path, _stamp(job.created_at),
            )
            deleted.append(job)
        return deleted

    def cleanup_old_backups(self, policy: BackupPolicy) -> list[BackupJob]:
        """Keep only the newest retention_count backups of the policy; return those removed."""
        if policy.retention_count <= 0:
            log.info("cleanup skipped, unlimited retention: policy_id=%s", policy.id)
            return []
        backups = self.get_backups_for_policy(policy)
        if len(backups) <= policy.retention_count:
            log.info(
                "cleanup not needed: policy_id=%s backups=%d retention=%d",
                policy.id, len(backups), policy.retention_count,
            )
            return []
        backups.sort(key=_created, reverse=True)
        to_delete = backups[policy.retention_count:]
        log.info(
            "cleaning old backups: policy_id=%s total=%d to_delete=%d to_keep=%d",
            policy.id, len(backups), len(to_delete), policy.retention_count,
        )
        deleted = self._delete_all(to_delete, "old")
        log.info("old backups cleaned: policy_id=%s deleted=%d", policy.id, len(deleted))
        return deleted

    def apply_retention_policies(self) -> int:
        """Run count-based retention for every stored policy; return how many backups were removed."""
        policies = self.database.get_all_policies()
        log.info("applying retention policies: policies=%d", len(policies))
        removed = 0
        for policy in policies:
            try:
                removed += len(self.cleanup_old_backups(policy))
            except (StorageError, DatabaseError) as exc:
                log.warning("retention failed: policy_id=%s error=%s", policy.id, exc)
        log.info("retention policies applied: policies=%d", len(policies))
        return removed

    def cleanup_orphaned_backups(self) -> list[BackupJob]:
        """Remove completed backups whose policy no longer exists; return those removed."""
        with self.database.transaction() as conn:
            rows = conn.execute(
                """SELECT j.id, j.policy_id, j.backup_path, j.created_at
                FROM backup_jobs j
                LEFT JOIN backup_policies p ON j.policy_id = p.id
                WHERE p.id IS NULL AND j.status = ?""",
                (JobStatus.COMPLETED.value,),
            ).fetchall()
        orphaned = [
            BackupJob(
                id=row[0],
                policy_id=row[1],
                status=JobStatus.COMPLETED,
                backup_path=row[2] or "",
                created_at=from_db_time(row[3]),
            )
            for row in rows
        ]
        log.info("cleaning orphaned backups: orphaned=%d", len(orphaned))
        deleted = self._delete_all(orphaned, "orphaned")
        log.info("orphaned backups cleaned: deleted=%d", len(deleted))
        return deleted

    def cleanup_failed_backups(self, older_than: timedelta) -> list[BackupJob]:
        """Forget failed jobs created before now minus older_than; return those removed."""
        cutoff = datetime.now(timezone.utc) - older_than
        with self.database.transaction() as conn:
            rows = conn.execute(
                """SELECT id, policy_id, backup_path, error, created_at
                FROM backup_jobs
                WHERE status = ? AND created_at < ?""",
                (JobStatus.FAILED.value, to_db_time(cutoff)),
            ).fetchall()
        failed = [
            BackupJob(
                id=row[0],
                policy_id=row[1],
                status=JobStatus.FAILED,
                backup_path=row[2] or "",
                error=row[3] or "",
                created_at=from_db_time(row[4]),
            )
            for row in rows
        ]
        log.info("cleaning failed backups: failed=%d older_than=%s", len(failed), older_than)
        removed: list[BackupJob] = []
        for job in failed:
            try:
                with self.database.transaction() as conn:
                    conn.execute("DELETE FROM backup_jobs WHERE id = ?", (job.id,))
            except DatabaseError as exc:
                log.warning("cannot delete failed job: backup_id=%s error=%s", job.id, exc)
                continue
            if job.backup_path:
                try:
                    self.storage.delete(job.backup_path)
                except StorageError as exc:
                    log.warning(
                        "cannot delete failed backup file: backup_id=%s backup_path=%s error=%s",
                        job.id, job.backup_path, exc,
                    )
            log.info(
                "failed backup deleted: backup_id=%s policy_id=%s created_at=%s",
                job.id, job.policy_id, _stamp(job.created_at),
            )
            removed.append(job)
        log.info("failed backups cleaned: deleted=%d", len(removed))
        return removed

    def cleanup_temp_files(self) -> list[str]:
        """Remove leftover 'backup-*' working directories; return the removed paths."""
        candidates = sorted(glob.glob(os.path.join(glob.escape(self.temp_dir), TEMP_DIR_PATTERN)))
        log.info("cleaning temporary files: candidates=%d", len(candidates))
        removed: list[str] = []
        for path in candidates:
            if not os.path.isdir(path):
                continue
            try:
                shutil.rmtree(path)
            except OSError as exc:
                log.warning("cannot remove temporary directory: dir=%s error=%s", path, exc)
                continue
            log.info("temporary directory removed: dir=%s", path)
            removed.append(path)
        log.info("temporary files cleaned")
        return removed

    def apply_age_based_retention(
        self, policy: BackupPolicy, max_age: timedelta
    ) -> list[BackupJob]:
        """Remove backups of the policy created more than max_age ago; return those removed."""
        if max_age <= timedelta(0):
            return []
        cutoff = datetime.now(timezone.utc) - max_age
        backups = self.get_backups_for_policy(policy)
        log.info(
            "applying age retention: policy_id=%s max_age=%s cutoff=%s",
            policy.id, max_age, cutoff.isoformat(),
        )
        to_delete = [
            job for job in backups if job.created_at is not None and job.created_at < cutoff
        ]
        deleted = self._delete_all(to_delete, "expired")
        log.info("age retention applied: policy_id=%s deleted=%d", policy.id, len(deleted))
        return deleted