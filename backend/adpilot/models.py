"""
Ad Pilot — Database Models
Customers, campaigns, per-platform strategies and their version history,
ingested performance data, recommendations and the conflicts that block them.
"""

import uuid
import enum
from datetime import date, datetime, timezone
from sqlalchemy import (
    String, Text, Float, Integer, BigInteger, Boolean, Date, DateTime,
    JSON, ForeignKey, Index, Uuid, text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from adpilot.database import Base


def _utcnow() -> datetime:
    """Naive UTC now — matches DB columns (TIMESTAMP WITHOUT TIME ZONE)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ══════════════════════════════════════════════════════════════════════
#  ENUMS
# ══════════════════════════════════════════════════════════════════════

class CampaignStatus(str, enum.Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    REMOVED = "removed"


class Platform(str, enum.Enum):
    GOOGLE_ADS = "google_ads"
    FACEBOOK_ADS = "facebook_ads"


class CampaignType(str, enum.Enum):
    DISPLAY = "display"
    SEARCH = "search"
    VIDEO = "video"
    SHOPPING = "shopping"
    APP = "app"


class DeploymentStatus(str, enum.Enum):
    PENDING = "pending"
    DEPLOYING = "deploying"
    DEPLOYED = "deployed"
    FAILED = "failed"


class RecommendationType(str, enum.Enum):
    PAUSE_CAMPAIGN = "PAUSE_CAMPAIGN"
    INCREASE_BUDGET = "INCREASE_BUDGET"


class RecommendationStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    APPLIED = "applied"


class ConflictStatus(str, enum.Enum):
    UNRESOLVED = "unresolved"
    RESOLVED = "resolved"


# ══════════════════════════════════════════════════════════════════════
#  CUSTOMERS — Advertisers and their linked platform accounts
# ══════════════════════════════════════════════════════════════════════

class Customer(Base):
    """An advertiser whose campaigns the control loop manages."""
    __tablename__ = "customers"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    total_daily_budget: Mapped[float] = mapped_column(Float, nullable=True)
    google_ads_customer_id: Mapped[str] = mapped_column(String(255), nullable=True)
    facebook_ads_account_id: Mapped[str] = mapped_column(String(255), nullable=True)
    facebook_page_id: Mapped[str] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    # Relationships
    campaigns: Mapped[list["Campaign"]] = relationship("Campaign", back_populates="customer")


# ══════════════════════════════════════════════════════════════════════
#  CAMPAIGNS
# ══════════════════════════════════════════════════════════════════════

class Campaign(Base):
    """
    A customer's campaign. Holds one external campaign id per platform it has
    been deployed to; never hard-deleted while those resources exist.
    """
    __tablename__ = "campaigns"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    customer_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("customers.id", ondelete="RESTRICT"), nullable=False)
    name: Mapped[str] = mapped_column(String(512), nullable=False)
    landing_page_url: Mapped[str] = mapped_column(Text, nullable=True)
    daily_budget: Mapped[float] = mapped_column(Float, nullable=True)
    total_budget: Mapped[float] = mapped_column(Float, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=CampaignStatus.DRAFT.value)
    start_date: Mapped[date] = mapped_column(Date, nullable=True)
    end_date: Mapped[date] = mapped_column(Date, nullable=True)
    google_ads_campaign_id: Mapped[str] = mapped_column(String(255), nullable=True)
    facebook_ads_campaign_id: Mapped[str] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    # Relationships
    customer: Mapped["Customer"] = relationship("Customer", back_populates="campaigns")
    strategies: Mapped[list["Strategy"]] = relationship(
        "Strategy", back_populates="campaign", cascade="all, delete-orphan", passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_campaigns_customer_id", "customer_id"),
        Index("ix_campaigns_status", "status"),
    )

    def external_campaign_id(self, platform: str):
        if platform == Platform.GOOGLE_ADS.value:
            return self.google_ads_campaign_id
        if platform == Platform.FACEBOOK_ADS.value:
            return self.facebook_ads_campaign_id
        return None

    def set_external_campaign_id(self, platform: str, external_id: str) -> None:
        if platform == Platform.GOOGLE_ADS.value:
            self.google_ads_campaign_id = external_id
        elif platform == Platform.FACEBOOK_ADS.value:
            self.facebook_ads_campaign_id = external_id
        else:
            raise ValueError(f"Unknown platform: {platform}")

    @property
    def has_external_campaigns(self) -> bool:
        return bool(self.google_ads_campaign_id or self.facebook_ads_campaign_id)


# ══════════════════════════════════════════════════════════════════════
#  STRATEGIES — Platform-specific configuration of a campaign
# ══════════════════════════════════════════════════════════════════════

class Strategy(Base):
    """
    One platform configuration of a campaign. Active when signed_off_at is set;
    at most one active strategy per (campaign, platform).
    External ids are written step by step as deployment progresses.
    """
    __tablename__ = "strategies"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    campaign_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False)
    platform: Mapped[str] = mapped_column(String(50), nullable=False)
    campaign_type: Mapped[str] = mapped_column(String(20), default=CampaignType.DISPLAY.value)
    ad_copy_strategy: Mapped[str] = mapped_column(Text, nullable=True)
    imagery_strategy: Mapped[str] = mapped_column(Text, nullable=True)
    video_strategy: Mapped[str] = mapped_column(Text, nullable=True)
    bidding_strategy: Mapped[dict] = mapped_column(JSON, nullable=True)
    cpa_target_micros: Mapped[int] = mapped_column(BigInteger, nullable=True)
    revenue_cpa_multiple: Mapped[float] = mapped_column(Float, default=1.0)
    daily_budget: Mapped[float] = mapped_column(Float, nullable=True)
    signed_off_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)

    # Deployment checkpoints
    platform_budget_id: Mapped[str] = mapped_column(String(255), nullable=True)
    platform_campaign_id: Mapped[str] = mapped_column(String(255), nullable=True)
    ad_group_id: Mapped[str] = mapped_column(String(255), nullable=True)  # ad set on Facebook
    creative_id: Mapped[str] = mapped_column(String(255), nullable=True)
    ad_id: Mapped[str] = mapped_column(String(255), nullable=True)
    asset_ids: Mapped[dict] = mapped_column(JSON, nullable=True)  # storage path -> uploaded asset id

    # Deployment tracking
    deployment_status: Mapped[str] = mapped_column(String(20), default=DeploymentStatus.PENDING.value)
    deployed_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    deployment_error: Mapped[str] = mapped_column(Text, nullable=True)
    deployment_failures: Mapped[int] = mapped_column(Integer, default=0)  # non-retryable, in a row
    restored_from: Mapped[datetime] = mapped_column(DateTime, nullable=True)  # versioned_at it was rolled back to

    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    # Relationships
    campaign: Mapped["Campaign"] = relationship("Campaign", back_populates="strategies")
    performance_data: Mapped[list["PerformanceData"]] = relationship("PerformanceData", back_populates="strategy")
    ad_copies: Mapped[list["AdCopy"]] = relationship("AdCopy", back_populates="strategy")
    image_collaterals: Mapped[list["ImageCollateral"]] = relationship("ImageCollateral", back_populates="strategy")
    video_collaterals: Mapped[list["VideoCollateral"]] = relationship("VideoCollateral", back_populates="strategy")

    __table_args__ = (
        Index("ix_strategies_campaign_id", "campaign_id"),
        Index(
            "uq_strategies_active_platform", "campaign_id", "platform",
            unique=True,
            postgresql_where=text("signed_off_at IS NOT NULL"),
            sqlite_where=text("signed_off_at IS NOT NULL"),
        ),
    )

    @property
    def is_active(self) -> bool:
        return self.signed_off_at is not None

    @property
    def has_external_resources(self) -> bool:
        return bool(
            self.platform_budget_id or self.platform_campaign_id or self.ad_group_id
            or self.creative_id or self.ad_id or self.asset_ids
        )

    @property
    def cpa_target(self) -> float:
        """CPA target in currency units (stored in micros)."""
        return (self.cpa_target_micros or 0) / 1_000_000


# Fields copied between a Strategy and its StrategyVersion snapshots
VERSIONED_STRATEGY_FIELDS = (
    "platform",
    "campaign_type",
    "ad_copy_strategy",
    "imagery_strategy",
    "video_strategy",
    "bidding_strategy",
    "cpa_target_micros",
    "revenue_cpa_multiple",
    "daily_budget",
    "platform_budget_id",
    "platform_campaign_id",
    "ad_group_id",
    "creative_id",
    "ad_id",
    "asset_ids",
)


class StrategyVersion(Base):
    """
    Immutable snapshot of a strategy. Versions of one campaign sharing a
    versioned_at form a single generation restored together on rollback.
    """
    __tablename__ = "strategy_versions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    strategy_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("strategies.id", ondelete="SET NULL"), nullable=True)
    campaign_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False)
    platform: Mapped[str] = mapped_column(String(50), nullable=False)
    campaign_type: Mapped[str] = mapped_column(String(20), nullable=True)
    ad_copy_strategy: Mapped[str] = mapped_column(Text, nullable=True)
    imagery_strategy: Mapped[str] = mapped_column(Text, nullable=True)
    video_strategy: Mapped[str] = mapped_column(Text, nullable=True)
    bidding_strategy: Mapped[dict] = mapped_column(JSON, nullable=True)
    cpa_target_micros: Mapped[int] = mapped_column(BigInteger, nullable=True)
    revenue_cpa_multiple: Mapped[float] = mapped_column(Float, default=1.0)
    daily_budget: Mapped[float] = mapped_column(Float, nullable=True)
    platform_budget_id: Mapped[str] = mapped_column(String(255), nullable=True)
    platform_campaign_id: Mapped[str] = mapped_column(String(255), nullable=True)
    ad_group_id: Mapped[str] = mapped_column(String(255), nullable=True)
    creative_id: Mapped[str] = mapped_column(String(255), nullable=True)
    ad_id: Mapped[str] = mapped_column(String(255), nullable=True)
    asset_ids: Mapped[dict] = mapped_column(JSON, nullable=True)
    versioned_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    __table_args__ = (
        Index("ix_strategy_versions_generation", "campaign_id", "versioned_at"),
    )


# ══════════════════════════════════════════════════════════════════════
#  PERFORMANCE DATA — Written by the metrics ingestion jobs, read-only here
# ══════════════════════════════════════════════════════════════════════

class PerformanceData(Base):
    """Spend and conversions of one strategy over a reporting window (append-only)."""
    __tablename__ = "performance_data"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    strategy_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("strategies.id", ondelete="CASCADE"), nullable=False)
    window_start: Mapped[date] = mapped_column(Date, nullable=True)
    window_end: Mapped[date] = mapped_column(Date, nullable=True)
    impressions: Mapped[int] = mapped_column(BigInteger, default=0)
    clicks: Mapped[int] = mapped_column(BigInteger, default=0)
    conversions: Mapped[int] = mapped_column(BigInteger, default=0)
    spend: Mapped[float] = mapped_column(Float, default=0.0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    # Relationships
    strategy: Mapped["Strategy"] = relationship("Strategy", back_populates="performance_data")

    __table_args__ = (
        Index("ix_performance_data_strategy_id", "strategy_id"),
        Index("ix_performance_data_window_end", "window_end"),
    )


# ══════════════════════════════════════════════════════════════════════
#  RECOMMENDATIONS & CONFLICTS — Approval queue for automated changes
# ══════════════════════════════════════════════════════════════════════

class Recommendation(Base):
    """
    A proposed change to a campaign produced by the portfolio optimizer.
    Nothing is applied until approved, and application passes the conflict gate.
    """
    __tablename__ = "recommendations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    campaign_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_entity: Mapped[dict] = mapped_column(JSON, nullable=False)
    parameters: Mapped[dict] = mapped_column(JSON, nullable=False)
    rationale: Mapped[str] = mapped_column(Text, nullable=False)
    requires_approval: Mapped[bool] = mapped_column(Boolean, default=False)
    status: Mapped[str] = mapped_column(String(20), default=RecommendationStatus.PENDING.value)
    reviewed_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    review_note: Mapped[str] = mapped_column(Text, nullable=True)
    applied_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index("ix_recommendations_campaign_id", "campaign_id"),
        Index("ix_recommendations_status", "status"),
        Index(
            "uq_recommendations_pending_type", "campaign_id", "type",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )


class Conflict(Base):
    """A recommendation blocked by the conflict gate. Only a human resolves it."""
    __tablename__ = "conflicts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    campaign_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False)
    recommendation_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("recommendations.id", ondelete="CASCADE"), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=ConflictStatus.UNRESOLVED.value)
    campaign_status: Mapped[str] = mapped_column(String(20), nullable=True)  # campaign state seen by the gate
    resolution_note: Mapped[str] = mapped_column(Text, nullable=True)
    resolved_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    __table_args__ = (
        Index("ix_conflicts_campaign_id", "campaign_id"),
        Index("ix_conflicts_status", "status"),
    )


# ══════════════════════════════════════════════════════════════════════
#  CREATIVE INPUTS — Produced by content generation, consumed by deployment
# ══════════════════════════════════════════════════════════════════════

class AdCopy(Base):
    __tablename__ = "ad_copies"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    strategy_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("strategies.id", ondelete="CASCADE"), nullable=False)
    platform: Mapped[str] = mapped_column(String(50), nullable=False)
    headlines: Mapped[list] = mapped_column(JSON, nullable=False)
    descriptions: Mapped[list] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    strategy: Mapped["Strategy"] = relationship("Strategy", back_populates="ad_copies")


class ImageCollateral(Base):
    __tablename__ = "image_collaterals"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    strategy_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("strategies.id", ondelete="CASCADE"), nullable=False)
    storage_path: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    strategy: Mapped["Strategy"] = relationship("Strategy", back_populates="image_collaterals")


class VideoCollateral(Base):
    __tablename__ = "video_collaterals"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    strategy_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("strategies.id", ondelete="CASCADE"), nullable=False)
    storage_path: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    strategy: Mapped["Strategy"] = relationship("Strategy", back_populates="video_collaterals")


# ══════════════════════════════════════════════════════════════════════
#  ACTIVITY LOG — Audit trail of every control-loop action
# ══════════════════════════════════════════════════════════════════════

class ActivityLog(Base):
    """Logs all actions taken in the system for audit trail."""
    __tablename__ = "activity_log"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    customer_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("customers.id", ondelete="SET NULL"), nullable=True)
    campaign_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=True)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False)  # budget, optimizer, conflicts, deployment, rollback
    description: Mapped[str] = mapped_column(Text, nullable=True)
    details: Mapped[dict] = mapped_column(JSON, nullable=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=True)  # campaign, strategy, recommendation, conflict
    entity_id: Mapped[str] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="success")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    __table_args__ = (
        Index("ix_activity_log_customer_id", "customer_id"),
        Index("ix_activity_log_category", "category"),
        Index("ix_activity_log_action", "action"),
        Index("ix_activity_log_created_at", "created_at"),
        Index("ix_activity_log_entity", "entity_type", "entity_id"),
    )
