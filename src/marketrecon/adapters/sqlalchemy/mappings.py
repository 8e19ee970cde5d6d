"""SQLAlchemy mapping metadata for the reconciliation domain model."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from functools import cache
from typing import TYPE_CHECKING

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Dialect,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    TypeDecorator,
    UniqueConstraint,
    orm,
)
from sqlalchemy.orm import configure_mappers

from marketrecon.domain.model import (
    BatchStatus,
    CanonicalEntity,
    ChangeAction,
    ChangeEvent,
    IdentityKind,
    ImportBatch,
    PassStatus,
    ReconciliationPass,
    RecordErrorEntry,
    RecordErrorKind,
)

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

log = logging.getLogger(__name__)

ENTITY_ID_LENGTH = 64


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


mapper_registry = orm.registry()
mapper_registry.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_label)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_label)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# Canonical state ---------------------------------------------------------------

canonical_entity_table = Table(
    "canonical_entity",
    mapper_registry.metadata,
    Column("entity_id", String(ENTITY_ID_LENGTH), primary_key=True),
    Column("external_id", String, nullable=True),
    Column("canonical_url", String, nullable=True),
    Column("fields", JSON, nullable=False),
    Column("field_confidence", JSON, nullable=False),
    Column("content_hash", String(64), nullable=False),
    Column("first_seen_at", UTCDateTime, nullable=False),
    Column("last_seen_at", UTCDateTime, nullable=False),
    Column("updated_at", UTCDateTime, nullable=False),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("missed_pass_count", Integer, nullable=False, default=0),
    Column("last_seen_pass", Integer, nullable=True),
    Index("ix_canonical_entity_active_seen", "is_active", "last_seen_pass"),
    Index("ix_canonical_entity_updated_at", "updated_at"),
)

# One owner per hint value; this is what keeps external ids unique across entities.
identity_key_table = Table(
    "identity_key",
    mapper_registry.metadata,
    Column("kind", Enum(IdentityKind, native_enum=False), primary_key=True),
    Column("value", String, primary_key=True),
    Column(
        "entity_id",
        String(ENTITY_ID_LENGTH),
        ForeignKey("canonical_entity.entity_id"),
        nullable=False,
    ),
    Index("ix_identity_key_entity", "entity_id"),
)

# Audit trail -------------------------------------------------------------------

change_event_table = Table(
    "change_event",
    mapper_registry.metadata,
    Column("event_id", Integer, primary_key=True, autoincrement=True),
    Column("batch_id", String(ENTITY_ID_LENGTH), nullable=False),
    Column("sequence", Integer, nullable=False),
    Column("action", Enum(ChangeAction, native_enum=False), nullable=False),
    Column(
        "entity_id",
        String(ENTITY_ID_LENGTH),
        ForeignKey("canonical_entity.entity_id"),
        nullable=False,
    ),
    Column("field_name", String, nullable=True),
    Column("old_value", JSON(none_as_null=True), nullable=True),
    Column("new_value", JSON(none_as_null=True), nullable=True),
    Column("change_percentage", Float, nullable=True),
    Column("occurred_at", UTCDateTime, nullable=False),
    Column("source", String, nullable=False, default=""),
    UniqueConstraint("batch_id", "sequence", name="uq_change_event_batch_sequence"),
    Index("ix_change_event_entity", "entity_id"),
    Index("ix_change_event_action", "action"),
)

import_batch_table = Table(
    "import_batch",
    mapper_registry.metadata,
    Column("batch_id", String(ENTITY_ID_LENGTH), primary_key=True),
    Column("source_descriptor", String, nullable=False, default=""),
    Column("pass_id", String(ENTITY_ID_LENGTH), ForeignKey("reconciliation_pass.pass_id"), nullable=True),
    Column("started_at", UTCDateTime, nullable=False),
    Column("completed_at", UTCDateTime, nullable=True),
    Column("status", Enum(BatchStatus, native_enum=False), nullable=False),
    Column("inserted", Integer, nullable=False, default=0),
    Column("updated", Integer, nullable=False, default=0),
    Column("duplicates", Integer, nullable=False, default=0),
    Column("restored", Integer, nullable=False, default=0),
    Column("deleted", Integer, nullable=False, default=0),
    Column("errored", Integer, nullable=False, default=0),
    Index("ix_import_batch_pass", "pass_id"),
)

reconciliation_pass_table = Table(
    "reconciliation_pass",
    mapper_registry.metadata,
    Column("pass_id", String(ENTITY_ID_LENGTH), primary_key=True),
    Column("sequence", Integer, nullable=False, unique=True),
    Column("source_descriptor", String, nullable=False, default=""),
    Column("started_at", UTCDateTime, nullable=False),
    Column("completed_at", UTCDateTime, nullable=True),
    Column("status", Enum(PassStatus, native_enum=False), nullable=False),
    Column("inserted", Integer, nullable=False, default=0),
    Column("updated", Integer, nullable=False, default=0),
    Column("duplicates", Integer, nullable=False, default=0),
    Column("restored", Integer, nullable=False, default=0),
    Column("deleted", Integer, nullable=False, default=0),
    Column("errored", Integer, nullable=False, default=0),
)

record_error_table = Table(
    "record_error",
    mapper_registry.metadata,
    Column("error_id", Integer, primary_key=True, autoincrement=True),
    Column("batch_id", String(ENTITY_ID_LENGTH), nullable=False),
    Column("position", Integer, nullable=False),
    Column("kind", Enum(RecordErrorKind, native_enum=False), nullable=False),
    Column("message", String, nullable=False),
    Column("external_id", String, nullable=True),
    Column("canonical_url", String, nullable=True),
    Column("flagged_for_review", Boolean, nullable=False, default=False),
    Column("occurred_at", UTCDateTime, nullable=False),
    Index("ix_record_error_batch", "batch_id"),
)


@cache
def start_mappers() -> orm.registry:
    """Map the domain dataclasses onto their tables (idempotent)."""

    mapper_registry.map_imperatively(CanonicalEntity, canonical_entity_table)
    mapper_registry.map_imperatively(ChangeEvent, change_event_table)
    mapper_registry.map_imperatively(ImportBatch, import_batch_table)
    mapper_registry.map_imperatively(ReconciliationPass, reconciliation_pass_table)
    mapper_registry.map_imperatively(RecordErrorEntry, record_error_table)

    configure_mappers()
    return mapper_registry


def create_all_tables(engine: Engine) -> None:
    """Create database tables for the mapped metadata."""

    log.info("Creating all tables")
    mapper_registry.metadata.create_all(engine)
