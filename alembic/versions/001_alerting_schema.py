"""Alert lifecycle tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19

Adds:
- alerts: Alerts with status, escalation level and dedup fingerprint
- alert_deliveries: Delivery attempts per channel
- oncall_rotation: Persisted on-call rotation offset
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Alerts
    op.create_table(
        "alerts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("component", sa.String(100), nullable=False),
        sa.Column("level", sa.String(20), nullable=False),
        sa.Column("alert_type", sa.String(100), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("fingerprint", sa.String(64), nullable=False),
        sa.Column("metadata", sa.JSON, nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("escalation_level", sa.Integer, nullable=False, server_default="0"),
        sa.Column("occurrence_count", sa.Integer, nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
        sa.Column("acknowledged_at", sa.DateTime, nullable=True),
        sa.Column("acknowledged_by", sa.String(100), nullable=True),
        sa.Column("resolved_at", sa.DateTime, nullable=True),
        sa.Column("resolved_by", sa.String(100), nullable=True),
        sa.CheckConstraint(
            "status IN ('active', 'acknowledged', 'resolved')", name="ck_alerts_status"
        ),
        sa.CheckConstraint("escalation_level >= 0", name="ck_alerts_escalation_level"),
    )
    # At most one active alert per fingerprint
    op.create_index(
        "uq_alerts_active_fingerprint",
        "alerts", ["fingerprint"],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
        sqlite_where=sa.text("status = 'active'"),
    )
    op.create_index("ix_alerts_component_status", "alerts", ["component", "status"])
    op.create_index("ix_alerts_created_at", "alerts", ["created_at"])

    # Delivery attempts
    op.create_table(
        "alert_deliveries",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "alert_id", sa.String(36),
            sa.ForeignKey("alerts.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("channel", sa.String(20), nullable=False),
        sa.Column("target", sa.String(500), nullable=False),
        sa.Column("outcome", sa.String(20), nullable=False),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column("escalation_level", sa.Integer, nullable=False, server_default="0"),
        sa.Column("attempted_at", sa.DateTime, nullable=False),
    )
    op.create_index("ix_alert_deliveries_alert_id", "alert_deliveries", ["alert_id"])

    # On-call rotation
    op.create_table(
        "oncall_rotation",
        sa.Column("name", sa.String(50), primary_key=True),
        sa.Column("rotation_offset", sa.Integer, nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime, nullable=False),
        sa.Column("updated_by", sa.String(100), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("oncall_rotation")
    op.drop_index("ix_alert_deliveries_alert_id", table_name="alert_deliveries")
    op.drop_table("alert_deliveries")
    op.drop_index("ix_alerts_created_at", table_name="alerts")
    op.drop_index("ix_alerts_component_status", table_name="alerts")
    op.drop_index("uq_alerts_active_fingerprint", table_name="alerts")
    op.drop_table("alerts")
