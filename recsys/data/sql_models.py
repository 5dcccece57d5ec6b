from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from recsys.core.database import Base
from recsys.data.models import utcnow


class ABTestVariantRow(Base):
    """推荐权重实验分组。config 为 camelCase 权重 JSON。"""

    __tablename__ = "rec_ab_variants"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), index=True)
    description: Mapped[str] = mapped_column(Text, default="")
    config: Mapped[dict] = mapped_column(JSON)
    is_control: Mapped[bool] = mapped_column(Boolean, default=False)
    traffic_percent: Mapped[float] = mapped_column(Float, default=0.0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    total_assignments: Mapped[int] = mapped_column(Integer, default=0)
    total_positive_feedback: Mapped[int] = mapped_column(Integer, default=0)
    total_negative_feedback: Mapped[int] = mapped_column(Integer, default=0)
    avg_click_through_rate: Mapped[float] = mapped_column(Float, default=0.0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class ABTestAssignmentRow(Base):
    """用户分流结果（sticky assignment）。

    key = (user_id, variant_id)，唯一约束保证并发首次请求不会重复创建。
    """

    __tablename__ = "rec_ab_assignments"
    __table_args__ = (
        UniqueConstraint("user_id", "variant_id", name="uq_rec_ab_assign_user_variant"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), index=True)
    variant_id: Mapped[str] = mapped_column(String(64), index=True)
    recommendations_shown: Mapped[int] = mapped_column(Integer, default=0)
    recommendations_clicked: Mapped[int] = mapped_column(Integer, default=0)
    positive_feedback: Mapped[int] = mapped_column(Integer, default=0)
    negative_feedback: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class EngagementTimeRow(Base):
    __tablename__ = "rec_engagement_times"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), index=True)
    hour_of_day: Mapped[int] = mapped_column(Integer)
    day_of_week: Mapped[int] = mapped_column(Integer, index=True)
    content_type: Mapped[str] = mapped_column(String(32))
    content_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    tags: Mapped[list] = mapped_column(JSON)
    engagement_score: Mapped[float] = mapped_column(Float, default=5.0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)


class RecommendationFeedbackRow(Base):
    __tablename__ = "rec_feedback"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), index=True)
    item_type: Mapped[str] = mapped_column(String(32))
    item_id: Mapped[str] = mapped_column(String(128))
    feedback: Mapped[str] = mapped_column(String(32))
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    session_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    position: Mapped[int | None] = mapped_column(Integer, nullable=True)
    variant_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
