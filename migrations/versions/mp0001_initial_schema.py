"""type defs, entities and import audit tables

Revision ID: mp0001
Revises:
Create Date: 2026-10-19
"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "mp0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "type_defs",
        sa.Column("name", sa.String(length=255), primary_key=True),
        sa.Column("category", sa.String(length=32), nullable=False),
        sa.Column("definition", sa.JSON(), nullable=False),
        sa.Column("structural_hash", sa.String(length=64), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_type_defs_category", "type_defs", ["category"])

    op.create_table(
        "entities",
        sa.Column("guid", sa.String(length=64), primary_key=True),
        sa.Column("type_name", sa.String(length=255), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("content_hash", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="ACTIVE"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_entities_type_name", "entities", ["type_name"])

    op.create_table(
        "import_audits",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("import_id", sa.String(length=32), nullable=False, unique=True),
        sa.Column("package_id", sa.String(length=128), nullable=True),
        sa.Column("user", sa.String(length=128), nullable=False),
        sa.Column("host", sa.String(length=255), nullable=True),
        sa.Column("client_address", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("metrics", sa.JSON(), nullable=False),
        sa.Column("creation_order", sa.JSON(), nullable=False),
        sa.Column("result", sa.JSON(), nullable=False),
        sa.Column("start_position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("resume_position", sa.Integer(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_import_audits_package_id", "import_audits", ["package_id"])

    op.create_table(
        "entity_audits",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("import_id", sa.String(length=32), nullable=False),
        sa.Column("sequence_no", sa.Integer(), nullable=False),
        sa.Column("entity_guid", sa.String(length=64), nullable=False),
        sa.Column("type_name", sa.String(length=255), nullable=True),
        sa.Column("user", sa.String(length=128), nullable=False),
        sa.Column("detail", sa.Text(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("import_id", "sequence_no", name="ux_entity_audits_import_sequence"),
    )
    op.create_index("ix_entity_audits_import", "entity_audits", ["import_id"])
    op.create_index("ix_entity_audits_entity_guid", "entity_audits", ["entity_guid"])


def downgrade() -> None:
    op.drop_index("ix_entity_audits_entity_guid", table_name="entity_audits")
    op.drop_index("ix_entity_audits_import", table_name="entity_audits")
    op.drop_table("entity_audits")
    op.drop_index("ix_import_audits_package_id", table_name="import_audits")
    op.drop_table("import_audits")
    op.drop_index("ix_entities_type_name", table_name="entities")
    op.drop_table("entities")
    op.drop_index("ix_type_defs_category", table_name="type_defs")
    op.drop_table("type_defs")
