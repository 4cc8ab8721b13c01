from pathlib import Path

import pytest

from backupist.config import (
    CompressionSettings,
    Config,
    ConfigError,
    KeyDerivationSettings,
    default_config,
    load_config,
)
from backupist.types import StorageType


@pytest.fixture
def isolated(tmp_path, monkeypatch):
    home = tmp_path / "home"
    home.mkdir()
    work = tmp_path / "work"
    work.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(work)
    return home, work


def test_defaults_match_documented_values():
    cfg = default_config()
    assert cfg.encryption.default_algorithm == "AES-256-GCM"
    assert cfg.encryption.key_derivation == KeyDerivationSettings("PBKDF2", 100000, 32)
    assert cfg.compression == CompressionSettings("gzip", 6)
    assert cfg.logging.level == "info"
    assert cfg.logging.format == "json"
    assert cfg.storage.type == "local"
    assert cfg.storage.default == "local"
    assert cfg.storage.s3_use_ssl is True
    assert cfg.storage.configs["local"].type is StorageType.LOCAL


def test_default_paths_follow_home(isolated):
    home, _ = isolated
    cfg = default_config()
    assert cfg.database.path == str(home / ".config" / "backup-cli" / "backup.db")
    assert cfg.storage.local_path == str(home / "backups")
    assert cfg.storage.configs["local"].local_path == cfg.storage.local_path


def test_from_dict_merges_over_defaults():
    cfg = Config.from_dict({"logging": {"level": "debug"}})
    assert cfg.logging.level == "debug"
    assert cfg.logging.format == default_config().logging.format


def test_from_dict_keys_are_case_insensitive_and_coerced():
    cfg = Config.from_dict({"Compression": {"Level": "9"}, "storage": {"s3_use_ssl": "false"}})
    assert cfg.compression.level == 9
    assert cfg.storage.s3_use_ssl is False


def test_from_dict_rejects_bad_integer():
    with pytest.raises(ConfigError):
        Config.from_dict({"compression": {"level": "high"}})


def test_from_dict_rejects_non_mapping_section():
    with pytest.raises(ConfigError):
        Config.from_dict({"database": "nope"})


def test_storage_configs_are_merged():
    cfg = Config.from_dict(
        {"storage": {"configs": {"remote": {"type": "s3", "s3_config": {"bucket": "bkt"}}}}}
    )
    assert set(cfg.storage.configs) == {"local", "remote"}
    assert cfg.storage.configs["remote"].type is StorageType.S3
    assert cfg.storage.configs["remote"].s3_config.bucket == "bkt"


def test_storage_config_with_unknown_type_is_an_error():
    with pytest.raises(ConfigError):
        Config.from_dict({"storage": {"configs": {"x": {"type": "ftp"}}}})


def test_save_and_load_round_trip(tmp_path):
    cfg = default_config()
    cfg.logging.level = "warn"
    cfg.compression.level = 3
    cfg.storage.s3_bucket_name = "bucket"
    target = tmp_path / "nested" / "dir" / "config.yaml"
    cfg.save(target)
    assert target.is_file()
    assert load_config(target) == cfg


def test_explicit_missing_file_is_an_error(tmp_path):
    with pytest.raises(ConfigError):
        load_config(tmp_path / "absent.yaml")


def test_explicit_unsupported_extension_is_an_error(tmp_path):
    path = tmp_path / "config.txt"
    path.write_text("logging:\n  level: debug\n")
    with pytest.raises(ConfigError):
        load_config(path)


def test_non_mapping_file_is_an_error(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("- a\n- b\n")
    with pytest.raises(ConfigError):
        load_config(path)


def test_invalid_yaml_is_an_error(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("logging: [unclosed\n")
    with pytest.raises(ConfigError):
        load_config(path)


def test_json_file_is_read(tmp_path):
    path = tmp_path / "config.json"
    path.write_text('{"database": {"path": "/data/db.sqlite"}}')
    assert load_config(path).database.path == "/data/db.sqlite"


def test_search_finds_file_in_working_directory(isolated):
    _, work = isolated
    (work / "backup-cli.yaml").write_text("logging:\n  level: warn\n")
    assert load_config().logging.level == "warn"


def test_search_finds_file_in_home_config(isolated):
    home, _ = isolated
    directory = home / ".config" / "backup-cli"
    directory.mkdir(parents=True)
    (directory / "backup-cli.yaml").write_text("compression:\n  level: 1\n")
    assert load_config(None).compression.level == 1


def test_no_file_found_gives_defaults(isolated):
    assert load_config() == default_config()


def test_env_overrides_key_present_in_file(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text("database:\n  path: /from/file.db\n")
    monkeypatch.setenv("BACKUP_DATABASE.PATH", "/from/env.db")
    assert load_config(path).database.path == "/from/env.db"


def test_env_ignored_for_keys_absent_from_file(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text("database:\n  path: /from/file.db\n")
    monkeypatch.setenv("BACKUP_LOGGING.LEVEL", "debug")
    cfg = load_config(path)
    assert cfg.logging.level == default_config().logging.level
    assert Path(cfg.database.path) == Path("/from/file.db")