"""Core data types shared by the backup service: policies, jobs, results and storage settings."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any


class BackupStatus(str, Enum):
    """State of a backup policy."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    PAUSED = "paused"
    ERROR = "error"


class JobStatus(str, Enum):
    """State of a single backup job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    DELETED = "deleted"


class StorageType(str, Enum):
    """Kind of storage a backup is written to."""

    LOCAL = "local"
    S3 = "s3"
    GCS = "gcs"


def _iso(moment: datetime | None) -> str | None:
    return moment.isoformat() if moment is not None else None


def _nanoseconds(duration: timedelta) -> int:
    return (duration.days * 86400 + duration.seconds) * 10**9 + duration.microseconds * 1000


@dataclass
class BackupPolicy:
    """Describes what to back up, where to, and how."""

    id: str = ""
    name: str = ""
    source_path: str = ""
    destination_path: str = ""
    schedule: str = ""
    retention_count: int = 1
    archive_enabled: bool = True
    encryption_enabled: bool = False
    encryption_password: str = field(default="", repr=False)
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    status: BackupStatus | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialisable form; the encryption password is never included."""
        return {
            "id": self.id,
            "name": self.name,
            "source_path": self.source_path,
            "destination_path": self.destination_path,
            "schedule": self.schedule,
            "retention_count": self.retention_count,
            "archive_enabled": self.archive_enabled,
            "encryption_enabled": self.encryption_enabled,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "status": self.status.value if self.status is not None else "",
        }


@dataclass
class JobProgress:
    """Progress of a running job."""

    files_processed: int = 0
    total_files: int = 0
    bytes_processed: int = 0
    total_bytes: int = 0
    percent_complete: float = 0.0
    current_file: str = ""


@dataclass
class BackupJob:
    """One run of a backup policy."""

    id: str = ""
    policy_id: str = ""
    status: JobStatus = JobStatus.PENDING
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str = ""
    progress: JobProgress | None = None
    files_processed: int = 0
    total_size: int = 0
    backup_path: str = ""
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialisable form; empty optional fields are left out."""
        data: dict[str, Any] = {
            "id": self.id,
            "policy_id": self.policy_id,
            "status": JobStatus(self.status).value,
            "started_at": _iso(self.started_at),
        }
        if self.completed_at is not None:
            data["completed_at"] = _iso(self.completed_at)
        if self.error:
            data["error"] = self.error
        if self.progress is not None:
            data["progress"] = dataclasses.asdict(self.progress)
        data.update(
            files_processed=self.files_processed,
            total_size=self.total_size,
            backup_path=self.backup_path,
            created_at=_iso(self.created_at),
        )
        return data


@dataclass
class BackupResult:
    """Outcome of a completed backup."""

    job_id: str = ""
    backup_path: str = ""
    files_processed: int = 0
    total_size: int = 0
    compressed_size: int = 0
    duration: timedelta = field(default_factory=timedelta)
    compressed: bool = False
    encrypted: bool = False
    compression_ratio: float = 0.0
    checksum: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Serialisable form; the duration is given in nanoseconds."""
        data: dict[str, Any] = {
            "job_id": self.job_id,
            "backup_path": self.backup_path,
            "files_processed": self.files_processed,
            "total_size": self.total_size,
        }
        if self.compressed_size:
            data["compressed_size"] = self.compressed_size
        data.update(
            duration=_nanoseconds(self.duration),
            compressed=self.compressed,
            encrypted=self.encrypted,
        )
        if self.compression_ratio:
            data["compression_ratio"] = self.compression_ratio
        data["checksum"] = self.checksum
        return data


@dataclass
class S3Config:
    """Settings for an S3-compatible bucket."""

    bucket: str = ""
    region: str = ""
    access_key_id: str = ""
    secret_access_key: str = field(default="", repr=False)
    endpoint: str = ""
    use_ssl: bool = False

    def _to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "bucket": self.bucket,
            "region": self.region,
            "access_key_id": self.access_key_id,
        }
        if self.endpoint:
            data["endpoint"] = self.endpoint
        data["use_ssl"] = self.use_ssl
        return data

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> S3Config:
        return cls(
            bucket=str(data.get("bucket", "")),
            region=str(data.get("region", "")),
            access_key_id=str(data.get("access_key_id", "")),
            secret_access_key=str(data.get("secret_access_key", "")),
            endpoint=str(data.get("endpoint", "")),
            use_ssl=bool(data.get("use_ssl", False)),
        )


@dataclass
class GCSConfig:
    """Settings for a Google Cloud Storage bucket."""

    bucket: str = ""
    project_id: str = ""
    credentials_path: str = ""
    service_account_json: str = field(default="", repr=False)

    def _to_dict(self) -> dict[str, Any]:
        return {
            "bucket": self.bucket,
            "project_id": self.project_id,
            "credentials_path": self.credentials_path,
        }

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> GCSConfig:
        return cls(
            bucket=str(data.get("bucket", "")),
            project_id=str(data.get("project_id", "")),
            credentials_path=str(data.get("credentials_path", "")),
            service_account_json=str(data.get("service_account_json", "")),
        )


@dataclass
class StorageConfig:
    """A named storage target."""

    type: StorageType = StorageType.LOCAL
    local_path: str = ""
    s3_config: S3Config | None = None
    gcs_config: GCSConfig | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialisable form; secrets are never included."""
        data: dict[str, Any] = {"type": StorageType(self.type).value}
        if self.local_path:
            data["local_path"] = self.local_path
        if self.s3_config is not None:
            data["s3_config"] = self.s3_config._to_dict()
        if self.gcs_config is not None:
            data["gcs_config"] = self.gcs_config._to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StorageConfig:
        """Build from a mapping; raises ValueError on an unknown storage type."""
        if not isinstance(data, dict):
            raise ValueError("storage configuration must be a mapping")
        data = {str(key).lower(): value for key, value in data.items()}
        raw_type = str(data.get("type", StorageType.LOCAL.value))
        try:
            storage_type = StorageType(raw_type)
        except ValueError:
            raise ValueError(f"unsupported storage type: {raw_type}") from None
        s3 = data.get("s3_config")
        gcs = data.get("gcs_config")
        return cls(
            type=storage_type,
            local_path=str(data.get("local_path", "")),
            s3_config=S3Config._from_dict(_lowered(s3)) if isinstance(s3, dict) else None,
            gcs_config=GCSConfig._from_dict(_lowered(gcs)) if isinstance(gcs, dict) else None,
        )


def _lowered(data: dict[str, Any]) -> dict[str, Any]:
    return {str(key).lower(): value for key, value in data.items()}