"""Initial reconciliation schema.

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

from marketrecon.adapters.sqlalchemy.mappings import UTCDateTime

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

_ID = sa.String(64)


def _enum(name: str, *members: str) -> sa.Enum:
    return sa.Enum(*members, name=name, native_enum=False)


def _counts() -> list[sa.Column[int]]:
    return [
        sa.Column(name, sa.Integer(), nullable=False)
        for name in ("inserted", "updated", "duplicates", "restored", "deleted", "errored")
    ]


def upgrade() -> None:
    op.create_table(
        "canonical_entity",
        sa.Column("entity_id", _ID, nullable=False),
        sa.Column("external_id", sa.String(), nullable=True),
        sa.Column("canonical_url", sa.String(), nullable=True),
        sa.Column("fields", sa.JSON(), nullable=False),
        sa.Column("field_confidence", sa.JSON(), nullable=False),
        sa.Column("content_hash", sa.String(64), nullable=False),
        sa.Column("first_seen_at", UTCDateTime(), nullable=False),
        sa.Column("last_seen_at", UTCDateTime(), nullable=False),
        sa.Column("updated_at", UTCDateTime(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("missed_pass_count", sa.Integer(), nullable=False),
        sa.Column("last_seen_pass", sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint("entity_id", name=op.f("pk_canonical_entity")),
    )
    op.create_index(
        "ix_canonical_entity_active_seen",
        "canonical_entity",
        ["is_active", "last_seen_pass"],
    )
    op.create_index("ix_canonical_entity_updated_at", "canonical_entity", ["updated_at"])

    op.create_table(
        "identity_key",
        sa.Column(
            "kind",
            _enum("identitykind", "EXTERNAL_ID", "CANONICAL_URL", "TITLE_PRICE"),
            nullable=False,
        ),
        sa.Column("value", sa.String(), nullable=False),
        sa.Column("entity_id", _ID, nullable=False),
        sa.ForeignKeyConstraint(
            ["entity_id"],
            ["canonical_entity.entity_id"],
            name=op.f("fk_identity_key_entity_id_canonical_entity"),
        ),
        sa.PrimaryKeyConstraint("kind", "value", name=op.f("pk_identity_key")),
    )
    op.create_index("ix_identity_key_entity", "identity_key", ["entity_id"])

    op.create_table(
        "change_event",
        sa.Column("event_id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("batch_id", _ID, nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column(
            "action",
            _enum("changeaction", "INSERT", "UPDATE", "DELETE", "RESTORE"),
            nullable=False,
        ),
        sa.Column("entity_id", _ID, nullable=False),
        sa.Column("field_name", sa.String(), nullable=True),
        sa.Column("old_value", sa.JSON(none_as_null=True), nullable=True),
        sa.Column("new_value", sa.JSON(none_as_null=True), nullable=True),
        sa.Column("change_percentage", sa.Float(), nullable=True),
        sa.Column("occurred_at", UTCDateTime(), nullable=False),
        sa.Column("source", sa.String(), nullable=False),
        sa.ForeignKeyConstraint(
            ["entity_id"],
            ["canonical_entity.entity_id"],
            name=op.f("fk_change_event_entity_id_canonical_entity"),
        ),
        sa.PrimaryKeyConstraint("event_id", name=op.f("pk_change_event")),
        sa.UniqueConstraint("batch_id", "sequence", name="uq_change_event_batch_sequence"),
    )
    op.create_index("ix_change_event_entity", "change_event", ["entity_id"])
    op.create_index("ix_change_event_action", "change_event", ["action"])

    op.create_table(
        "reconciliation_pass",
        sa.Column("pass_id", _ID, nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("source_descriptor", sa.String(), nullable=False),
        sa.Column("started_at", UTCDateTime(), nullable=False),
        sa.Column("completed_at", UTCDateTime(), nullable=True),
        sa.Column("status", _enum("passstatus", "OPEN", "COMPLETED"), nullable=False),
        *_counts(),
        sa.PrimaryKeyConstraint("pass_id", name=op.f("pk_reconciliation_pass")),
        sa.UniqueConstraint("sequence", name=op.f("uq_reconciliation_pass_sequence")),
    )

    op.create_table(
        "import_batch",
        sa.Column("batch_id", _ID, nullable=False),
        sa.Column("source_descriptor", sa.String(), nullable=False),
        sa.Column("pass_id", _ID, nullable=True),
        sa.Column("started_at", UTCDateTime(), nullable=False),
        sa.Column("completed_at", UTCDateTime(), nullable=True),
        sa.Column(
            "status",
            _enum("batchstatus", "RUNNING", "COMMITTED", "FAILED", "CANCELLED"),
            nullable=False,
        ),
        *_counts(),
        sa.ForeignKeyConstraint(
            ["pass_id"],
            ["reconciliation_pass.pass_id"],
            name=op.f("fk_import_batch_pass_id_reconciliation_pass"),
        ),
        sa.PrimaryKeyConstraint("batch_id", name=op.f("pk_import_batch")),
    )
    op.create_index("ix_import_batch_pass", "import_batch", ["pass_id"])

    op.create_table(
        "record_error",
        sa.Column("error_id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("batch_id", _ID, nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column(
            "kind",
            _enum("recorderrorkind", "MALFORMED_RECORD", "CONFLICTING_IDENTITY"),
            nullable=False,
        ),
        sa.Column("message", sa.String(), nullable=False),
        sa.Column("external_id", sa.String(), nullable=True),
        sa.Column("canonical_url", sa.String(), nullable=True),
        sa.Column("flagged_for_review", sa.Boolean(), nullable=False),
        sa.Column("occurred_at", UTCDateTime(), nullable=False),
        sa.PrimaryKeyConstraint("error_id", name=op.f("pk_record_error")),
    )
    op.create_index("ix_record_error_batch", "record_error", ["batch_id"])


def downgrade() -> None:
    op.drop_index("ix_record_error_batch", table_name="record_error")
    op.drop_table("record_error")
    op.drop_index("ix_import_batch_pass", table_name="import_batch")
    op.drop_table("import_batch")
    op.drop_table("reconciliation_pass")
    op.drop_index("ix_change_event_action", table_name="change_event")
    op.drop_index("ix_change_event_entity", table_name="change_event")
    op.drop_table("change_event")
    op.drop_index("ix_identity_key_entity", table_name="identity_key")
    op.drop_table("identity_key")
    op.drop_index("ix_canonical_entity_updated_at", table_name="canonical_entity")
    op.drop_index("ix_canonical_entity_active_seen", table_name="canonical_entity")
    op.drop_table("canonical_entity")
