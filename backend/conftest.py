from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

ROOT = Path(__file__).resolve().parent
sys.path.append(str(ROOT))

os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["DATABASE_WRITE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["SHOPFLOORDB_SKIP_MODEL_IMPORTS"] = "1"
os.environ.setdefault("SHOP_TIMEZONE", "UTC")

from shopfloordb.database import Base  # noqa: E402
from shopfloordb.apps.accounts import models as account_models  # noqa: E402
from shopfloordb.apps.machines import models as machine_models  # noqa: E402
from shopfloordb.apps.maintenance import models as maintenance_models  # noqa: E402
from shopfloordb.apps.audit import models as audit_models  # noqa: E402


def _enable_savepoints(engine) -> None:
    # pysqlite issues its own BEGIN lazily, which breaks SAVEPOINT; take over
    # transaction control so begin_nested() works as on PostgreSQL.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


@pytest.fixture()
def db_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    _enable_savepoints(engine)
    Base.metadata.create_all(
        bind=engine,
        tables=[
            account_models.User.__table__,
            machine_models.Machine.__table__,
            machine_models.OperatingHoursReading.__table__,
            maintenance_models.MaintenanceType.__table__,
            maintenance_models.MaintenancePlan.__table__,
            maintenance_models.ChecklistItem.__table__,
            maintenance_models.MaintenanceInstruction.__table__,
            maintenance_models.MaintenanceTask.__table__,
            maintenance_models.ChecklistItemResult.__table__,
            maintenance_models.Escalation.__table__,
            maintenance_models.TaskAssignment.__table__,
            audit_models.AuditEvent.__table__,
        ],
    )
    TestingSession = sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()
