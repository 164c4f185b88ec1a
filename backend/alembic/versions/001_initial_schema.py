"""Initial schema: customers, campaigns, strategies, versions, performance, recommendations, conflicts.

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    conn = op.get_bind()
    insp = sa.inspect(conn)
    existing = insp.get_table_names()

    if "customers" in existing:
        return  # Already applied (e.g. from create_all)

    op.create_table(
        "customers",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("total_daily_budget", sa.Float(), nullable=True),
        sa.Column("google_ads_customer_id", sa.String(255), nullable=True),
        sa.Column("facebook_ads_account_id", sa.String(255), nullable=True),
        sa.Column("facebook_page_id", sa.String(255), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "campaigns",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("customer_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(512), nullable=False),
        sa.Column("landing_page_url", sa.Text(), nullable=True),
        sa.Column("daily_budget", sa.Float(), nullable=True),
        sa.Column("total_budget", sa.Float(), nullable=True),
        sa.Column("status", sa.String(20), nullable=True, server_default="draft"),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("google_ads_campaign_id", sa.String(255), nullable=True),
        sa.Column("facebook_ads_campaign_id", sa.String(255), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_campaigns_customer_id", "campaigns", ["customer_id"])
    op.create_index("ix_campaigns_status", "campaigns", ["status"])

    op.create_table(
        "strategies",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("campaign_id", sa.Uuid(), nullable=False),
        sa.Column("platform", sa.String(50), nullable=False),
        sa.Column("campaign_type", sa.String(20), nullable=True, server_default="display"),
        sa.Column("ad_copy_strategy", sa.Text(), nullable=True),
        sa.Column("imagery_strategy", sa.Text(), nullable=True),
        sa.Column("video_strategy", sa.Text(), nullable=True),
        sa.Column("bidding_strategy", sa.JSON(), nullable=True),
        sa.Column("cpa_target_micros", sa.BigInteger(), nullable=True),
        sa.Column("revenue_cpa_multiple", sa.Float(), nullable=True, server_default="1.0"),
        sa.Column("daily_budget", sa.Float(), nullable=True),
        sa.Column("signed_off_at", sa.DateTime(), nullable=True),
        sa.Column("platform_budget_id", sa.String(255), nullable=True),
        sa.Column("platform_campaign_id", sa.String(255), nullable=True),
        sa.Column("ad_group_id", sa.String(255), nullable=True),
        sa.Column("creative_id", sa.String(255), nullable=True),
        sa.Column("ad_id", sa.String(255), nullable=True),
        sa.Column("asset_ids", sa.JSON(), nullable=True),
        sa.Column("deployment_status", sa.String(20), nullable=True, server_default="pending"),
        sa.Column("deployed_at", sa.DateTime(), nullable=True),
        sa.Column("deployment_error", sa.Text(), nullable=True),
        sa.Column("deployment_failures", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("restored_from", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_strategies_campaign_id", "strategies", ["campaign_id"])
    op.create_index(
        "uq_strategies_active_platform", "strategies", ["campaign_id", "platform"],
        unique=True,
        postgresql_where=sa.text("signed_off_at IS NOT NULL"),
        sqlite_where=sa.text("signed_off_at IS NOT NULL"),
    )

    op.create_table(
        "strategy_versions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("strategy_id", sa.Uuid(), nullable=True),
        sa.Column("campaign_id", sa.Uuid(), nullable=False),
        sa.Column("platform", sa.String(50), nullable=False),
        sa.Column("campaign_type", sa.String(20), nullable=True),
        sa.Column("ad_copy_strategy", sa.Text(), nullable=True),
        sa.Column("imagery_strategy", sa.Text(), nullable=True),
        sa.Column("video_strategy", sa.Text(), nullable=True),
        sa.Column("bidding_strategy", sa.JSON(), nullable=True),
        sa.Column("cpa_target_micros", sa.BigInteger(), nullable=True),
        sa.Column("revenue_cpa_multiple", sa.Float(), nullable=True),
        sa.Column("daily_budget", sa.Float(), nullable=True),
        sa.Column("platform_budget_id", sa.String(255), nullable=True),
        sa.Column("platform_campaign_id", sa.String(255), nullable=True),
        sa.Column("ad_group_id", sa.String(255), nullable=True),
        sa.Column("creative_id", sa.String(255), nullable=True),
        sa.Column("ad_id", sa.String(255), nullable=True),
        sa.Column("asset_ids", sa.JSON(), nullable=True),
        sa.Column("versioned_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["strategy_id"], ["strategies.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_strategy_versions_generation", "strategy_versions", ["campaign_id", "versioned_at"])

    op.create_table(
        "performance_data",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("strategy_id", sa.Uuid(), nullable=False),
        sa.Column("window_start", sa.Date(), nullable=True),
        sa.Column("window_end", sa.Date(), nullable=True),
        sa.Column("impressions", sa.BigInteger(), nullable=True, server_default="0"),
        sa.Column("clicks", sa.BigInteger(), nullable=True, server_default="0"),
        sa.Column("conversions", sa.BigInteger(), nullable=True, server_default="0"),
        sa.Column("spend", sa.Float(), nullable=True, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["strategy_id"], ["strategies.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_performance_data_strategy_id", "performance_data", ["strategy_id"])
    op.create_index("ix_performance_data_window_end", "performance_data", ["window_end"])

    op.create_table(
        "recommendations",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("campaign_id", sa.Uuid(), nullable=False),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("target_entity", sa.JSON(), nullable=False),
        sa.Column("parameters", sa.JSON(), nullable=False),
        sa.Column("rationale", sa.Text(), nullable=False),
        sa.Column("requires_approval", sa.Boolean(), nullable=True, server_default=sa.false()),
        sa.Column("status", sa.String(20), nullable=True, server_default="pending"),
        sa.Column("reviewed_at", sa.DateTime(), nullable=True),
        sa.Column("review_note", sa.Text(), nullable=True),
        sa.Column("applied_at", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_recommendations_campaign_id", "recommendations", ["campaign_id"])
    op.create_index("ix_recommendations_status", "recommendations", ["status"])
    op.create_index(
        "uq_recommendations_pending_type", "recommendations", ["campaign_id", "type"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
        sqlite_where=sa.text("status = 'pending'"),
    )

    op.create_table(
        "conflicts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("campaign_id", sa.Uuid(), nullable=False),
        sa.Column("recommendation_id", sa.Uuid(), nullable=False),
        sa.Column("status", sa.String(20), nullable=True, server_default="unresolved"),
        sa.Column("campaign_status", sa.String(20), nullable=True),
        sa.Column("resolution_note", sa.Text(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["recommendation_id"], ["recommendations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_conflicts_campaign_id", "conflicts", ["campaign_id"])
    op.create_index("ix_conflicts_status", "conflicts", ["status"])

    op.create_table(
        "ad_copies",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("strategy_id", sa.Uuid(), nullable=False),
        sa.Column("platform", sa.String(50), nullable=False),
        sa.Column("headlines", sa.JSON(), nullable=False),
        sa.Column("descriptions", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["strategy_id"], ["strategies.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )

    for table in ("image_collaterals", "video_collaterals"):
        op.create_table(
            table,
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("strategy_id", sa.Uuid(), nullable=False),
            sa.Column("storage_path", sa.Text(), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=True, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
            sa.ForeignKeyConstraint(["strategy_id"], ["strategies.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )

    op.create_table(
        "activity_log",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("customer_id", sa.Uuid(), nullable=True),
        sa.Column("campaign_id", sa.Uuid(), nullable=True),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("category", sa.String(50), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("entity_type", sa.String(50), nullable=True),
        sa.Column("entity_id", sa.String(255), nullable=True),
        sa.Column("status", sa.String(20), nullable=True, server_default="success"),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_activity_log_customer_id", "activity_log", ["customer_id"])
    op.create_index("ix_activity_log_category", "activity_log", ["category"])
    op.create_index("ix_activity_log_action", "activity_log", ["action"])
    op.create_index("ix_activity_log_created_at", "activity_log", ["created_at"])
    op.create_index("ix_activity_log_entity", "activity_log", ["entity_type", "entity_id"])


def downgrade() -> None:
    for table in (
        "activity_log", "video_collaterals", "image_collaterals", "ad_copies",
        "conflicts", "recommendations", "performance_data", "strategy_versions",
        "strategies", "campaigns", "customers",
    ):
        op.drop_table(table)
