"""SQLAlchemy metadata and engine helpers for the recovery tables."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import sqlalchemy as sa
from sqlalchemy import Engine
from sqlalchemy.engine import URL
from sqlalchemy.orm import sessionmaker

from npatrack.settings import Settings, get_settings

TIMESTAMP = sa.DateTime(timezone=True)
ID_TYPE = sa.String(length=64)
AMOUNT = sa.Numeric(16, 2, asdecimal=False)
COORDINATE = sa.Float()

METADATA = sa.MetaData()

owners = sa.Table(
    "owners",
    METADATA,
    sa.Column("owner_id", ID_TYPE, primary_key=True),
    sa.Column("username", sa.Text(), nullable=False, unique=True),
    sa.Column("role", sa.Text(), nullable=False, server_default="user"),
    sa.Column("branch", sa.Text(), nullable=False, server_default=""),
    sa.Column("created_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
)
sa.Index("idx_owners_role_branch", owners.c.role, owners.c.branch)

customers = sa.Table(
    "customers",
    METADATA,
    sa.Column("record_id", ID_TYPE, primary_key=True),
    sa.Column("account_number", sa.Text(), nullable=False),
    sa.Column("sr_no", sa.Text(), nullable=False, server_default=""),
    sa.Column("branch", sa.Text(), nullable=False),
    sa.Column("customer_name", sa.Text(), nullable=False),
    sa.Column("product_type", sa.Text(), nullable=False),
    sa.Column("scheme_code", sa.Text(), nullable=False),
    sa.Column("sanction_limit", AMOUNT, nullable=False),
    sa.Column("date_of_npa", sa.Date(), nullable=False),
    sa.Column("outstanding_balance", AMOUNT, nullable=False),
    sa.Column("principal_overdue", AMOUNT, nullable=False),
    sa.Column("interest_overdue", AMOUNT, nullable=False),
    sa.Column("net_balance", AMOUNT, nullable=False, server_default="0"),
    sa.Column("provision", sa.Text(), nullable=False, server_default=""),
    sa.Column("anomalies", sa.Text(), nullable=False, server_default="None"),
    sa.Column("asset_classification", sa.Text(), nullable=False, server_default=""),
    sa.Column("asset_tagging", sa.Text(), nullable=False, server_default=""),
    sa.Column("contact_no", sa.Text(), nullable=False, server_default=""),
    sa.Column("address", sa.Text(), nullable=False, server_default=""),
    sa.Column("assigned_owner_id", ID_TYPE, sa.ForeignKey("owners.owner_id", ondelete="SET NULL"), nullable=True),
    sa.Column("is_recovered", sa.Boolean(), nullable=False, server_default=sa.text("0")),
    sa.Column("recovery_date", sa.Date(), nullable=True),
    sa.Column("recovered_by", ID_TYPE, sa.ForeignKey("owners.owner_id", ondelete="SET NULL"), nullable=True),
    sa.Column("created_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    sa.Column("updated_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    sa.UniqueConstraint("account_number", name="uq_customers_account_number"),
)
sa.Index("idx_customers_branch_recovered", customers.c.branch, customers.c.is_recovered)
sa.Index("idx_customers_assigned_owner", customers.c.assigned_owner_id)
sa.Index("idx_customers_asset_classification", customers.c.asset_classification)
sa.Index("idx_customers_date_of_npa", customers.c.date_of_npa)

customer_locations = sa.Table(
    "customer_locations",
    METADATA,
    sa.Column("location_id", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column(
        "record_id",
        ID_TYPE,
        sa.ForeignKey("customers.record_id", ondelete="CASCADE"),
        nullable=False,
    ),
    sa.Column("lat", COORDINATE, nullable=False),
    sa.Column("lng", COORDINATE, nullable=False),
    sa.Column("captured_at", TIMESTAMP, nullable=False),
    sa.Column("captured_by", ID_TYPE, nullable=True),
)
sa.Index("idx_customer_locations_record", customer_locations.c.record_id, customer_locations.c.captured_at)

visits = sa.Table(
    "visits",
    METADATA,
    sa.Column("visit_id", ID_TYPE, primary_key=True),
    sa.Column(
        "record_id",
        ID_TYPE,
        sa.ForeignKey("customers.record_id", ondelete="CASCADE"),
        nullable=False,
    ),
    sa.Column("owner_id", ID_TYPE, nullable=False),
    sa.Column("feedback_text", sa.Text(), nullable=False),
    sa.Column("image_url", sa.Text(), nullable=True),
    sa.Column("lat", COORDINATE, nullable=True),
    sa.Column("lng", COORDINATE, nullable=True),
    sa.Column("visit_date", TIMESTAMP, nullable=False),
)
sa.Index("idx_visits_record_date", visits.c.record_id, visits.c.visit_date)
sa.Index("idx_visits_owner_date", visits.c.owner_id, visits.c.visit_date)


def _resolve_database_url(settings: Settings | None = None) -> str:
    """Return ``NPATRACK_DATABASE_URL`` when set, else the configured SQLite file URL."""

    url_override = os.getenv("NPATRACK_DATABASE_URL")
    if url_override:
        return url_override

    resolved = settings or get_settings()
    sqlite_path = Path(resolved.storage.sqlite_path)
    sqlite_path.parent.mkdir(parents=True, exist_ok=True)
    return URL.create("sqlite", database=sqlite_path.as_posix()).render_as_string(hide_password=False)


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_sql_engine(url: str, *, echo: bool = False) -> Engine:
    """Create an engine for ``url`` and make sure the schema exists."""

    connect_args: dict[str, Any] = {}
    is_sqlite = url.startswith("sqlite")
    if is_sqlite:
        connect_args["check_same_thread"] = False
    engine = sa.create_engine(url, echo=echo, future=True, pool_pre_ping=True, connect_args=connect_args)
    if is_sqlite:
        sa.event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    METADATA.create_all(engine)
    return engine


def build_engine(*, echo: bool = False, settings: Settings | None = None) -> Engine:
    """Instantiate a SQLAlchemy engine aligned with project settings."""

    return create_sql_engine(_resolve_database_url(settings), echo=echo)


def session_factory(*, settings: Settings | None = None, engine: Engine | None = None) -> sessionmaker:
    """Return a configured sessionmaker bound to the active engine."""

    bound = engine or build_engine(settings=settings)
    return sessionmaker(bind=bound, autoflush=False, autocommit=False, future=True)
