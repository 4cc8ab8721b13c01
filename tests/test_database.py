from datetime import datetime, timedelta, timezone

import pytest

from backupist.database import BackupDatabase, DatabaseError, PolicyNotFoundError
from backupist.types import BackupJob, BackupPolicy, BackupResult, JobStatus

PASSWORD = "password"


@pytest.fixture
def db(tmp_path):
    database = BackupDatabase(tmp_path / "backup.db")
    yield database
    database.close()


def make_policy(policy_id="p1", name="docs"):
    return BackupPolicy(
        id=policy_id,
        name=name,
        source_path="/data/docs",
        destination_path="/backups",
        schedule="0 2 * * *",
        retention_count=3,
        archive_enabled=True,
        encryption_enabled=True,
        encryption_password=PASSWORD,
    )


def make_job(job_id, policy_id="p1", status=JobStatus.COMPLETED):
    return BackupJob(
        id=job_id,
        policy_id=policy_id,
        status=status,
        started_at=datetime(2024, 5, 1, 10, 30, 15, 123456, tzinfo=timezone.utc),
        files_processed=4,
        total_size=2048,
        backup_path=f"/backups/{job_id}.tar.gz",
    )


def count(db, table):
    with db.transaction() as conn:
        return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]


def test_policy_round_trip(db):
    db.save_policy(make_policy())
    got = db.get_policy("p1")
    assert got.id == "p1"
    assert got.name == "docs"
    assert got.source_path == "/data/docs"
    assert got.destination_path == "/backups"
    assert got.schedule == "0 2 * * *"
    assert got.retention_count == 3
    assert got.archive_enabled is True
    assert got.encryption_enabled is True
    assert got.encryption_password == PASSWORD
    assert got.created_at.tzinfo == timezone.utc


def test_missing_policy_raises(db):
    with pytest.raises(PolicyNotFoundError):
        db.get_policy("nope")


def test_save_policy_replaces_existing(db):
    db.save_policy(make_policy(name="first"))
    db.save_policy(make_policy(name="second"))
    policies = db.get_all_policies()
    assert [p.name for p in policies] == ["second"]


def test_get_all_policies_hides_password(db):
    db.save_policy(make_policy("p1"))
    db.save_policy(make_policy("p2", name="photos"))
    policies = db.get_all_policies()
    assert {p.id for p in policies} == {"p1", "p2"}
    assert all(p.encryption_password == "" for p in policies)


def test_job_round_trip(db):
    job = make_job("j1")
    job.completed_at = job.started_at + timedelta(minutes=5)
    job.error = "disk full"
    db.save_job(job)
    (got,) = db.get_backup_history("p1", 10)
    assert got.id == "j1"
    assert got.status is JobStatus.COMPLETED
    assert got.started_at == job.started_at
    assert got.completed_at == job.completed_at
    assert got.error == "disk full"
    assert got.files_processed == 4
    assert got.total_size == 2048
    assert got.backup_path == "/backups/j1.tar.gz"
    assert got.created_at is not None and got.created_at.tzinfo == timezone.utc


def test_naive_times_are_stored_as_local(db):
    job = make_job("j1")
    job.started_at = datetime(2024, 1, 2, 3, 4, 5)
    db.save_job(job)
    (got,) = db.get_backup_history("p1", 1)
    assert got.started_at == job.started_at.astimezone(timezone.utc)


def test_history_limit_and_policy_filter(db):
    for job_id in ("a", "b", "c"):
        db.save_job(make_job(job_id))
    db.save_job(make_job("other", policy_id="p2"))
    assert len(db.get_backup_history("p1", 2)) == 2
    assert {j.id for j in db.get_backup_history("p1", 10)} == {"a", "b", "c"}
    assert [j.id for j in db.get_backup_history("p2", 10)] == ["other"]


def test_save_result_stores_whole_seconds(db):
    db.save_job(make_job("j1"))
    result = BackupResult(
        job_id="j1",
        backup_path="/backups/j1.tar.gz",
        files_processed=4,
        total_size=2048,
        duration=timedelta(seconds=90, milliseconds=700),
        checksum="abc",
    )
    db.save_result(result)
    with db.transaction() as conn:
        row = conn.execute("SELECT id, duration_seconds FROM backup_results").fetchone()
    assert row["id"] == "result_j1"
    assert row["duration_seconds"] == 90


def test_duplicate_result_raises(db):
    result = BackupResult(job_id="j1", backup_path="/b/j1")
    db.save_result(result)
    with pytest.raises(DatabaseError):
        db.save_result(result)


def test_delete_policy_removes_related_rows(db):
    db.save_policy(make_policy("p1"))
    db.save_policy(make_policy("p2"))
    db.save_job(make_job("j1", "p1"))
    db.save_job(make_job("j2", "p2"))
    db.save_result(BackupResult(job_id="j1", backup_path="/b/j1"))
    db.delete_policy("p1")
    with pytest.raises(PolicyNotFoundError):
        db.get_policy("p1")
    assert db.get_backup_history("p1", 10) == []
    assert count(db, "backup_results") == 0
    assert [j.id for j in db.get_backup_history("p2", 10)] == ["j2"]


def test_transaction_rolls_back_on_error(db):
    with pytest.raises(RuntimeError):
        with db.transaction() as conn:
            conn.execute(
                "INSERT INTO backup_policies (id, name, source_path, destination_path) "
                "VALUES ('px', 'n', '/s', '/d')"
            )
            raise RuntimeError("boom")
    with pytest.raises(PolicyNotFoundError):
        db.get_policy("px")


def test_transaction_wraps_sql_errors(db):
    with pytest.raises(DatabaseError):
        with db.transaction() as conn:
            conn.execute("SELECT * FROM no_such_table")


def test_data_persists_across_connections(tmp_path):
    path = tmp_path / "backup.db"
    with BackupDatabase(path) as first:
        first.save_policy(make_policy())
    with BackupDatabase(path) as second:
        assert second.get_policy("p1").name == "docs"


def test_closed_database_raises(tmp_path):
    database = BackupDatabase(tmp_path / "backup.db")
    database.close()
    with pytest.raises(DatabaseError):
        database.get_all_policies()


def test_unopenable_path_raises(tmp_path):
    with pytest.raises(DatabaseError):
        BackupDatabase(tmp_path / "missing" / "backup.db")