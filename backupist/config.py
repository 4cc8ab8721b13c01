"""Application configuration: defaults, loading from a file and saving."""

from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from backupist.types import StorageConfig, StorageType

_CONFIG_NAME = "backup-cli"
_ENV_PREFIX = "BACKUP"
_SEARCH_DIRS = (".", "$HOME/.config/backup-cli", "/etc/backup-cli")
_SEARCH_EXTENSIONS = (".json", ".yaml", ".yml", "")
_SUPPORTED_EXTENSIONS = {".json", ".yaml", ".yml"}


class ConfigError(Exception):
    """Raised when configuration cannot be read, parsed or written."""


def _home() -> Path | None:
    try:
        return Path.home()
    except (RuntimeError, KeyError):
        return None


def _default_database_path() -> str:
    home = _home()
    if home is None:
        return "./backup-cli.db"
    return str(home / ".config" / "backup-cli" / "backup.db")


def _default_backup_path() -> str:
    home = _home()
    if home is None:
        return "./backups"
    return str(home / "backups")


def _default_storage_configs() -> dict[str, StorageConfig]:
    return {"local": StorageConfig(type=StorageType.LOCAL, local_path=_default_backup_path())}


@dataclass
class DatabaseSettings:
    path: str = field(default_factory=_default_database_path)


@dataclass
class LoggingSettings:
    level: str = "info"
    format: str = "json"
    file: str = ""


@dataclass
class StorageSettings:
    type: str = "local"
    local_path: str = field(default_factory=_default_backup_path)
    s3_endpoint: str = ""
    s3_access_key: str = ""
    s3_secret_key: str = field(default="", repr=False)
    s3_bucket_name: str = ""
    s3_use_ssl: bool = True
    gcs_bucket_name: str = ""
    gcs_credentials_path: str = ""
    default: str = "local"
    configs: dict[str, StorageConfig] = field(default_factory=_default_storage_configs)


@dataclass
class KeyDerivationSettings:
    algorithm: str = "PBKDF2"
    iterations: int = 100000
    salt_size: int = 32


@dataclass
class EncryptionSettings:
    default_algorithm: str = "AES-256-GCM"
    key_derivation: KeyDerivationSettings = field(default_factory=KeyDerivationSettings)


@dataclass
class CompressionSettings:
    default_algorithm: str = "gzip"
    level: int = 6


@dataclass
class Config:
    """Complete application configuration."""

    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    encryption: EncryptionSettings = field(default_factory=EncryptionSettings)
    compression: CompressionSettings = field(default_factory=CompressionSettings)

    def to_dict(self) -> dict[str, Any]:
        """Nested mapping of every setting."""
        storage = {
            f.name: getattr(self.storage, f.name)
            for f in dataclasses.fields(self.storage)
            if f.name != "configs"
        }
        storage["configs"] = {name: cfg.to_dict() for name, cfg in self.storage.configs.items()}
        return {
            "database": dataclasses.asdict(self.database),
            "logging": dataclasses.asdict(self.logging),
            "storage": storage,
            "encryption": dataclasses.asdict(self.encryption),
            "compression": dataclasses.asdict(self.compression),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Config:
        """Defaults overridden by whatever keys the mapping holds."""
        config = cls()
        _apply(config, data, "")
        return config

    def save(self, path: str | os.PathLike[str]) -> None:
        """Write the configuration as YAML, creating parent directories."""
        target = Path(path)
        try:
            text = yaml.safe_dump(self.to_dict(), sort_keys=False, allow_unicode=True)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(text, encoding="utf-8")
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigError(f"cannot write configuration file {target}: {exc}") from exc


def default_config() -> Config:
    """A configuration holding only default values."""
    return Config()


def load_config(config_path: str | os.PathLike[str] | None = None) -> Config:
    """Load configuration from the given file, or from the standard locations.

    An explicitly given file must exist; when searching, a missing file means defaults.
    Keys present in the file can be overridden by BACKUP_<SECTION>.<KEY> variables.
    """
    path = Path(config_path) if config_path else _find_config_file()
    if path is None:
        return Config()
    if config_path and path.suffix.lower() not in _SUPPORTED_EXTENSIONS:
        raise ConfigError(f"unsupported configuration file type: {path}")
    data = _apply_env_overrides(_read_config_file(path), ())
    return Config.from_dict(data)


def _find_config_file() -> Path | None:
    for directory in _SEARCH_DIRS:
        base = Path(os.path.expandvars(directory))
        for extension in _SEARCH_EXTENSIONS:
            candidate = base / f"{_CONFIG_NAME}{extension}"
            if candidate.is_file():
                return candidate
    return None


def _read_config_file(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"cannot read configuration file {path}: {exc}") from exc
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"cannot parse configuration file {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"configuration file {path} must hold a mapping")
    return _lower_keys(data)


def _lower_keys(data: dict[Any, Any]) -> dict[str, Any]:
    return {
        str(key).lower(): _lower_keys(value) if isinstance(value, dict) else value
        for key, value in data.items()
    }


def _apply_env_overrides(data: dict[str, Any], prefix: tuple[str, ...]) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, value in data.items():
        path = (*prefix, key)
        if isinstance(value, dict):
            result[key] = _apply_env_overrides(value, path)
            continue
        override = os.environ.get(f"{_ENV_PREFIX}_{'.'.join(path).upper()}")
        result[key] = override if override else value
    return result


def _join(where: str, name: str) -> str:
    return f"{where}.{name}" if where else name


def _apply(target: Any, data: Any, where: str) -> None:
    if not isinstance(data, dict):
        raise ConfigError(f"section '{where or 'root'}' must be a mapping")
    known = {f.name for f in dataclasses.fields(target)}
    for key, value in data.items():
        name = str(key).lower()
        if name not in known or value is None:
            continue
        location = _join(where, name)
        current = getattr(target, name)
        if dataclasses.is_dataclass(current):
            _apply(current, value, location)
        elif isinstance(target, StorageSettings) and name == "configs":
            _merge_storage_configs(target.configs, value, location)
        else:
            setattr(target, name, _coerce(value, current, location))


def _merge_storage_configs(configs: dict[str, StorageConfig], value: Any, where: str) -> None:
    if not isinstance(value, dict):
        raise ConfigError(f"'{where}' must be a mapping")
    for name, entry in value.items():
        try:
            configs[str(name)] = StorageConfig.from_dict(entry)
        except ValueError as exc:
            raise ConfigError(f"'{_join(where, str(name))}': {exc}") from exc


_TRUE = {"1", "t", "true"}
_FALSE = {"0", "f", "false", ""}


def _coerce(value: Any, current: Any, where: str) -> Any:
    if isinstance(current, bool):
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return value != 0
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in _TRUE:
                return True
            if lowered in _FALSE:
                return False
        raise ConfigError(f"'{where}' expects a boolean, got {value!r}")
    if isinstance(current, int):
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, str):
            text = value.strip()
            if not text:
                return 0
            try:
                return int(text, 0)
            except ValueError:
                pass
        raise ConfigError(f"'{where}' expects an integer, got {value!r}")
    if isinstance(current, str):
        if isinstance(value, bool):
            return "1" if value else "0"
        if isinstance(value, (str, int, float)):
            return str(value)
        raise ConfigError(f"'{where}' expects a string, got {value!r}")
    return value