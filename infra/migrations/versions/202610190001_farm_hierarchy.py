"""farm hierarchy tables

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610190001"
down_revision = None
branch_labels = None
depends_on = None


def _lifecycle_columns() -> list[sa.Column]:
    return [
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_by", sa.String(), nullable=True),
    ]


def _lifecycle_indexes(table: str) -> None:
    op.create_index(f"ix_{table}_is_active", table, ["is_active"])
    op.create_index(f"ix_{table}_is_deleted", table, ["is_deleted"])
    op.create_index(f"ix_{table}_created_at", table, ["created_at"])


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_tenants_name", "tenants", ["name"], unique=True)
    op.create_index("ix_tenants_created_at", "tenants", ["created_at"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("resource", sa.String(), nullable=False),
        sa.Column("method", sa.String(), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("detail", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_tenant_id", "audit_logs", ["tenant_id"])
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"])
    op.create_index("ix_audit_logs_ts", "audit_logs", ["ts"])

    op.create_table(
        "sites",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        *_lifecycle_columns(),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "code", name="uq_sites_tenant_code"),
    )
    op.create_index("ix_sites_tenant_id", "sites", ["tenant_id"])
    op.create_index("ix_sites_name", "sites", ["name"])
    _lifecycle_indexes("sites")

    op.create_table(
        "departments",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("site_id", sa.String(), nullable=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        *_lifecycle_columns(),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
        sa.ForeignKeyConstraint(["site_id"], ["sites.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "code", name="uq_departments_tenant_code"),
    )
    op.create_index("ix_departments_tenant_id", "departments", ["tenant_id"])
    op.create_index("ix_departments_site_id", "departments", ["site_id"])
    op.create_index("ix_departments_name", "departments", ["name"])
    op.create_index("ix_departments_tenant_site", "departments", ["tenant_id", "site_id"])
    _lifecycle_indexes("departments")

    op.create_table(
        "systems",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("site_id", sa.String(), nullable=False),
        sa.Column("department_id", sa.String(), nullable=True),
        sa.Column("parent_system_id", sa.String(), nullable=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("sub_system_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("equipment_count", sa.Integer(), nullable=False, server_default="0"),
        *_lifecycle_columns(),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
        sa.ForeignKeyConstraint(["site_id"], ["sites.id"]),
        sa.ForeignKeyConstraint(["department_id"], ["departments.id"]),
        sa.ForeignKeyConstraint(["parent_system_id"], ["systems.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "site_id", "code", name="uq_systems_tenant_site_code"),
    )
    op.create_index("ix_systems_tenant_id", "systems", ["tenant_id"])
    op.create_index("ix_systems_site_id", "systems", ["site_id"])
    op.create_index("ix_systems_name", "systems", ["name"])
    op.create_index("ix_systems_tenant_parent", "systems", ["tenant_id", "parent_system_id"])
    op.create_index("ix_systems_tenant_department", "systems", ["tenant_id", "department_id"])
    _lifecycle_indexes("systems")

    op.create_table(
        "equipment",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("department_id", sa.String(), nullable=True),
        sa.Column("parent_equipment_id", sa.String(), nullable=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("sub_equipment_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_tank", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("current_biomass", sa.Float(), nullable=False, server_default="0"),
        *_lifecycle_columns(),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
        sa.ForeignKeyConstraint(["department_id"], ["departments.id"]),
        sa.ForeignKeyConstraint(["parent_equipment_id"], ["equipment.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "code", name="uq_equipment_tenant_code"),
    )
    op.create_index("ix_equipment_tenant_id", "equipment", ["tenant_id"])
    op.create_index("ix_equipment_name", "equipment", ["name"])
    op.create_index("ix_equipment_is_tank", "equipment", ["is_tank"])
    op.create_index("ix_equipment_tenant_parent", "equipment", ["tenant_id", "parent_equipment_id"])
    op.create_index("ix_equipment_tenant_department", "equipment", ["tenant_id", "department_id"])
    _lifecycle_indexes("equipment")

    op.create_table(
        "sub_equipment",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("parent_equipment_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_by", sa.String(), nullable=True),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
        sa.ForeignKeyConstraint(["parent_equipment_id"], ["equipment.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_sub_equipment_tenant_id", "sub_equipment", ["tenant_id"])
    op.create_index("ix_sub_equipment_is_active", "sub_equipment", ["is_active"])
    op.create_index(
        "ix_sub_equipment_tenant_parent",
        "sub_equipment",
        ["tenant_id", "parent_equipment_id"],
    )

    op.create_table(
        "equipment_systems",
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("equipment_id", sa.String(), nullable=False),
        sa.Column("system_id", sa.String(), nullable=False),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("criticality_level", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
        sa.ForeignKeyConstraint(["equipment_id"], ["equipment.id"]),
        sa.ForeignKeyConstraint(["system_id"], ["systems.id"]),
        sa.PrimaryKeyConstraint("equipment_id", "system_id"),
    )
    op.create_index("ix_equipment_systems_tenant_id", "equipment_systems", ["tenant_id"])
    op.create_index(
        "ix_equipment_systems_tenant_system",
        "equipment_systems",
        ["tenant_id", "system_id"],
    )


def downgrade() -> None:
    op.drop_table("equipment_systems")
    op.drop_table("sub_equipment")
    op.drop_table("equipment")
    op.drop_table("systems")
    op.drop_table("departments")
    op.drop_table("sites")
    op.drop_table("audit_logs")
    op.drop_table("tenants")
