# backupist

A Python library with the pieces of a backup tool: backup policies and
jobs as data types, configuration loading, policy validation (including
cron schedules), gzip-compressed tar archives, storage of finished backups
in a local directory, a SQLite record of policies, jobs and results, and
retention cleanup.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Modules

### `backupist.types`

Dataclasses `BackupPolicy`, `BackupJob`, `JobProgress`, `BackupResult`,
`StorageConfig`, `S3Config` and `GCSConfig`, and the string enums
`BackupStatus`, `JobStatus` and `StorageType`. `to_dict()` gives a
serialisable form; secrets such as a policy's `encryption_password` are
never included. `StorageConfig.from_dict()` raises `ValueError` on an
unknown storage type.

### `backupist.config`

`Config` holds the sections `database`, `logging`, `storage`, `encryption`
and `compression`. `default_config()` returns defaults: a database at
`~/.config/backup-cli/backup.db` and local storage under `~/backups`.

`load_config(config_path)` reads a `.yaml`, `.yml` or `.json` file. Without
a path it looks for `backup-cli` (with one of those extensions, or none) in
the current directory, in `~/.config/backup-cli` and in `/etc/backup-cli`,
and falls back to defaults if nothing is found. A key present in the file
can be overridden by an environment variable named
`BACKUP_<SECTION>.<KEY>`, for example `BACKUP_STORAGE.LOCAL_PATH`.
`Config.save(path)` writes YAML. Problems raise `ConfigError`.

```yaml
database:
  path: /var/lib/backupist/backup.db
storage:
  type: local
  local_path: /srv/backups
compression:
  default_algorithm: gzip
  level: 6
```

### `backupist.validate`

`validate_backup_policy(policy)` raises `ValidationError`, whose `errors`
attribute lists every failing field (missing id, name or destination, a
source that is not an existing directory, an invalid cron schedule, a
retention count outside 1–100). Also `is_valid_cron`,
`is_valid_storage_type`, `is_valid_s3_bucket_name`, `validate_s3_config`
and `validate_gcs_config`.

### `backupist.archive`

```python
from backupist.archive import archive_info, create_archive, extract_archive, validate_archive

create_archive("/home/user/documents", "/tmp/documents.tar.gz")
print(archive_info("/tmp/documents.tar.gz"))
validate_archive("/tmp/documents.tar.gz")
extract_archive("/tmp/documents.tar.gz", "/tmp/restore")
```

Entry names start with the base name of the source directory.
`extract_archive` refuses entries that would land outside the destination.
`create_incremental_archive(source, archive, baseline)` packs only entries
modified no earlier than the baseline file. `directory_size` and
`file_size` report sizes in bytes. Failures raise `ArchiveError`.

### `backupist.storage`

`StorageProvider` is the abstract interface (`upload`, `download`,
`delete`, `list`, `exists`). `LocalStorage(base_path)` keeps files in a
directory; `MultiStorage(*storages)` uploads to and deletes from all of
them and reads from the first that works. `create_storage(url)` and
`storage_from_config(config)` build a provider. Failures raise
`StorageError`.

### `backupist.database`

`BackupDatabase(path)` opens or creates the SQLite file and works as a
context manager. It saves and reads policies (`save_policy`, `get_policy`,
`get_all_policies`, `delete_policy`), jobs (`save_job`,
`get_backup_history`) and results (`save_result`). `get_policy` raises
`PolicyNotFoundError` for an unknown id; other failures raise
`DatabaseError`.

### `backupist.cleanup`

`Cleaner(database, storage)` removes backups: beyond a policy's retention
count (`cleanup_old_backups`, or `apply_retention_policies` for every
policy), older than a given age (`apply_age_based_retention`), whose
policy is gone (`cleanup_orphaned_backups`), failed jobs older than a
given age (`cleanup_failed_backups`), and leftover `backup-*` directories
in the temporary directory (`cleanup_temp_files`).

## What it does not do

- There is no command-line program; everything is used from Python.
- There is nothing that runs a whole backup from a policy in one call:
  scanning, copying, archiving, checksumming and uploading are left to the
  caller to combine from the modules above.
- Backups are not encrypted. The configuration and policy types carry
  encryption settings, but nothing acts on them.
- Only local storage is available. `s3://` and `gcs://` destinations, and
  storage types `s3` and `gcs` in the configuration, raise `StorageError`.
- Schedules are validated but never run.