"""Validation of backup policies, cron schedules and storage settings."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field

from backupist.types import BackupPolicy, GCSConfig, S3Config, StorageType


class ValidationError(ValueError):
    """Raised when a policy or storage configuration is invalid."""

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors if errors is not None else [message]


_MACROS = frozenset(
    {
        "@yearly",
        "@annually",
        "@monthly",
        "@weekly",
        "@daily",
        "@hourly",
        "@5minutes",
        "@10minutes",
        "@15minutes",
        "@30minutes",
        "@always",
        "@everysecond",
    }
)

_MONTHS = {
    name: number
    for number, name in enumerate(
        ("JAN", "FEB", "MAR", "APR", "MAY", "JUN", "JUL", "AUG", "SEP", "OCT", "NOV", "DEC"),
        start=1,
    )
}
_WEEKDAYS = {
    name: number
    for number, name in enumerate(("SUN", "MON", "TUE", "WED", "THU", "FRI", "SAT"))
}


@dataclass(frozen=True)
class _CronField:
    low: int
    high: int
    names: dict[str, int] = field(default_factory=dict)
    kind: str = ""


_SECOND = _CronField(0, 59)
_MINUTE = _CronField(0, 59)
_HOUR = _CronField(0, 23)
_DAY_OF_MONTH = _CronField(1, 31, kind="dom")
_MONTH = _CronField(1, 12, _MONTHS)
_DAY_OF_WEEK = _CronField(0, 7, _WEEKDAYS, kind="dow")
_YEAR = _CronField(1970, 2099)

_LAYOUTS = {
    5: (_MINUTE, _HOUR, _DAY_OF_MONTH, _MONTH, _DAY_OF_WEEK),
    6: (_MINUTE, _HOUR, _DAY_OF_MONTH, _MONTH, _DAY_OF_WEEK, _YEAR),
    7: (_SECOND, _MINUTE, _HOUR, _DAY_OF_MONTH, _MONTH, _DAY_OF_WEEK, _YEAR),
}


def _cron_value(text: str, spec: _CronField) -> int | None:
    if text.isascii() and text.isdigit():
        number = int(text)
    elif text in spec.names:
        number = spec.names[text]
    else:
        return None
    return number if spec.low <= number <= spec.high else None


def _valid_cron_part(part: str, spec: _CronField) -> bool:
    if not part:
        return False
    if spec.kind == "dom":
        if part in ("?", "L", "LW"):
            return True
        match = re.fullmatch(r"(\d+)W", part)
        if match:
            return _cron_value(match[1], spec) is not None
    if spec.kind == "dow":
        if part in ("?", "L"):
            return True
        match = re.fullmatch(r"(\d)L", part)
        if match:
            return _cron_value(match[1], spec) is not None
        match = re.fullmatch(r"(\d)#([1-5])", part)
        if match:
            return _cron_value(match[1], spec) is not None
    base, has_step, step = part.partition("/")
    if has_step and not (step.isascii() and step.isdigit() and int(step) > 0):
        return False
    if base == "*":
        return True
    start, has_range, end = base.partition("-")
    if has_range:
        low = _cron_value(start, spec)
        high = _cron_value(end, spec)
        return low is not None and high is not None and low <= high
    return _cron_value(base, spec) is not None


def is_valid_cron(expr: str) -> bool:
    """Whether the text is a usable cron expression (5, 6 or 7 fields, or a macro)."""
    if not isinstance(expr, str):
        return False
    text = expr.strip()
    if text.startswith("@"):
        return text.lower() in _MACROS
    segments = text.upper().split()
    layout = _LAYOUTS.get(len(segments))
    if layout is None:
        return False
    return all(
        _valid_cron_part(part, spec)
        for segment, spec in zip(segments, layout)
        for part in segment.split(",")
    )


def is_valid_storage_type(value: str) -> bool:
    """Whether the value names a supported storage type."""
    return value in {member.value for member in StorageType}


_BUCKET_PATTERN = re.compile(r"[a-z0-9.-]+")


def is_valid_s3_bucket_name(bucket: str) -> bool:
    """Basic S3 bucket naming rules: 3-63 chars of a-z, 0-9, '.', '-', not edged by '.' or '-'."""
    if not 3 <= len(bucket) <= 63:
        return False
    if not _BUCKET_PATTERN.fullmatch(bucket):
        return False
    return not (bucket[0] in ".-" or bucket[-1] in ".-")


def _required(name: str) -> str:
    return f"field '{name}' is required"


def _too_short(name: str, limit: int) -> str:
    return f"field '{name}' must contain at least {limit} characters/elements"


def _too_long(name: str, limit: int) -> str:
    return f"field '{name}' may contain at most {limit} characters/elements"


def validate_backup_policy(policy: BackupPolicy) -> None:
    """Check a policy; raise ValidationError listing every failing field."""
    errors: list[str] = []
    if not policy.id:
        errors.append(_required("id"))
    if not policy.name:
        errors.append(_required("name"))
    elif len(policy.name) > 100:
        errors.append(_too_long("name", 100))
    if not policy.source_path:
        errors.append(_required("source_path"))
    elif not os.path.isdir(policy.source_path):
        errors.append("field 'source_path' must be the path of an existing directory")
    if not policy.destination_path:
        errors.append(_required("destination_path"))
    if policy.schedule and not is_valid_cron(policy.schedule):
        errors.append("field 'schedule' contains an invalid cron expression")
    if policy.retention_count < 1:
        errors.append(_too_short("retention_count", 1))
    elif policy.retention_count > 100:
        errors.append(_too_long("retention_count", 100))
    if errors:
        raise ValidationError("validation errors: " + "; ".join(errors), errors)


def validate_s3_config(config: S3Config | None) -> None:
    """Check S3 settings; raise ValidationError on the first problem."""
    if config is None:
        raise ValidationError("S3 configuration must not be empty")
    if not config.bucket:
        raise ValidationError("S3 bucket name is required")
    if not config.region:
        raise ValidationError("S3 region is required")
    if not config.access_key_id:
        raise ValidationError("Access Key ID is required")
    if not config.secret_access_key:
        raise ValidationError("Secret Access Key is required")
    if not is_valid_s3_bucket_name(config.bucket):
        raise ValidationError("invalid S3 bucket name")


def validate_gcs_config(config: GCSConfig | None) -> None:
    """Check Google Cloud Storage settings; raise ValidationError on the first problem."""
    if config is None:
        raise ValidationError("GCS configuration must not be empty")
    if not config.bucket:
        raise ValidationError("GCS bucket name is required")
    if not config.project_id:
        raise ValidationError("Project ID is required")
    if not config.credentials_path and not config.service_account_json:
        raise ValidationError("a credentials file path or a JSON key must be given")
    if config.credentials_path and not os.path.exists(config.credentials_path):
        raise ValidationError(f"credentials file not found: {config.credentials_path}")