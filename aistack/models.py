"""
Database models for aistack.

Uses Peewee ORM with SQLite. Stores the history of supervisory passes and the
per-service outcome of each. Service definitions and live states are never
persisted; they come from the registry and from probing.
"""

import os
from datetime import datetime

from peewee import (
    AutoField,
    BooleanField,
    CharField,
    DatabaseProxy,
    DateTimeField,
    ForeignKeyField,
    IntegerField,
    Model,
    SqliteDatabase,
    TextField,
)

from .config import config

database = DatabaseProxy()


def initialize_db(db_path: str = None):
    """Initialize database connection and create tables."""
    db_path = str(db_path or config.db_path)
    if db_path != ":memory:":
        os.makedirs(os.path.dirname(db_path), exist_ok=True)
    db = SqliteDatabase(
        db_path,
        pragmas={
            "journal_mode": "wal",
            "cache_size": -64 * 1000,
            "foreign_keys": 1,
            "busy_timeout": 5000,
        },
    )
    database.initialize(db)
    database.create_tables([SupervisoryPass, PassResult], safe=True)
    return db


class BaseModel(Model):
    """Base model with common configuration."""

    class Meta:
        database = database


class SupervisoryPass(BaseModel):
    """One run of ensure-all."""

    id = AutoField()
    trigger = CharField(default="cli")  # cli, api
    ok = BooleanField(default=True)
    started_at = DateTimeField(default=datetime.now, index=True)
    finished_at = DateTimeField(null=True)

    class Meta:
        table_name = "passes"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "trigger": self.trigger,
            "ok": self.ok,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "results": [r.to_dict() for r in self.results.order_by(PassResult.id)],
        }


class PassResult(BaseModel):
    """Outcome of one service within a pass."""

    id = AutoField()
    supervisory_pass = ForeignKeyField(SupervisoryPass, backref="results", on_delete="CASCADE")
    service_name = CharField(index=True)
    port = IntegerField()
    outcome = CharField()  # already_running, started, start_failed
    pid = IntegerField(null=True)
    reason = TextField(null=True)
    listener_pid = IntegerField(null=True)
    listener_name = CharField(null=True)

    class Meta:
        table_name = "pass_results"

    def to_dict(self) -> dict:
        return {
            "name": self.service_name,
            "port": self.port,
            "outcome": self.outcome,
            "pid": self.pid,
            "reason": self.reason,
            "listener": (
                {"pid": self.listener_pid, "name": self.listener_name}
                if self.listener_pid or self.listener_name
                else None
            ),
        }


def record_pass(report, trigger: str = "cli") -> SupervisoryPass:
    """Persist a SummaryReport."""
    with database.atomic():
        record = SupervisoryPass.create(
            trigger=trigger,
            ok=report.ok,
            started_at=report.started_at,
            finished_at=report.finished_at,
        )
        for result in report.results:
            listener = result.listener or {}
            PassResult.create(
                supervisory_pass=record,
                service_name=result.name,
                port=result.port,
                outcome=result.outcome.value,
                pid=result.pid,
                reason=result.reason,
                listener_pid=listener.get("pid"),
                listener_name=listener.get("name"),
            )
    return record


def recent_passes(limit: int = 20) -> list[SupervisoryPass]:
    """Most recent passes first."""
    return list(
        SupervisoryPass.select()
        .order_by(SupervisoryPass.started_at.desc(), SupervisoryPass.id.desc())
        .limit(limit)
    )
