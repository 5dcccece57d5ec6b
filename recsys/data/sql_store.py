"""
SQLAlchemy 存储实现（实验分配、时间互动日志、推荐反馈）

Session 为同步 API，统一通过 asyncio.to_thread 执行，避免阻塞事件循环。
数据库异常统一转换为 StoreUnavailableError。
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Callable, List, Optional, Tuple, TypeVar

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from recsys.core.exceptions import InvalidWeightsError, StoreUnavailableError
from recsys.data.interfaces import EngagementStore, ExperimentStore, FeedbackStore
from recsys.data.models import (
    ABAssignment,
    ABVariant,
    AlgorithmWeights,
    EngagementTimeRecord,
    FeedbackRecord,
    FeedbackType,
)
from recsys.data.sql_models import (
    ABTestAssignmentRow,
    ABTestVariantRow,
    EngagementTimeRow,
    RecommendationFeedbackRow,
)

T = TypeVar("T")

SessionFactory = Callable[[], Session]


class _SqlStoreBase:
    store_name = "sql store"

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    async def _run(self, fn: Callable[[Session], T]) -> T:
        def _call() -> T:
            with self._session_factory() as db:
                return fn(db)

        try:
            return await asyncio.to_thread(_call)
        except SQLAlchemyError as exc:
            logger.error(f"[{self.store_name}] 数据库操作失败: {exc}")
            raise StoreUnavailableError(self.store_name, str(exc)) from exc


def _variant_from_row(row: ABTestVariantRow) -> ABVariant:
    try:
        weights: Optional[AlgorithmWeights] = AlgorithmWeights.from_config(row.config)
    except InvalidWeightsError as exc:
        logger.warning(f"[ABTest] 分组 {row.id} 的权重配置非法，按对照组处理: {exc}")
        weights = None
    return ABVariant(
        id=row.id,
        name=row.name,
        description=row.description or "",
        weights=weights,
        traffic_percent=float(row.traffic_percent or 0.0),
        is_active=bool(row.is_active),
        is_control=bool(row.is_control),
        total_assignments=int(row.total_assignments or 0),
        total_positive_feedback=int(row.total_positive_feedback or 0),
        total_negative_feedback=int(row.total_negative_feedback or 0),
        avg_click_through_rate=float(row.avg_click_through_rate or 0.0),
        created_at=row.created_at,
    )


def _assignment_from_row(row: ABTestAssignmentRow) -> ABAssignment:
    return ABAssignment(
        user_id=row.user_id,
        variant_id=row.variant_id,
        recommendations_shown=int(row.recommendations_shown or 0),
        recommendations_clicked=int(row.recommendations_clicked or 0),
        positive_feedback=int(row.positive_feedback or 0),
        negative_feedback=int(row.negative_feedback or 0),
        created_at=row.created_at,
    )


class SqlExperimentStore(_SqlStoreBase, ExperimentStore):
    store_name = "experiment store"

    async def load_active_variants(self) -> List[ABVariant]:
        return await self.list_variants(active_only=True)

    async def load_variant(self, variant_id: str) -> Optional[ABVariant]:
        def _q(db: Session) -> Optional[ABVariant]:
            row = db.get(ABTestVariantRow, variant_id)
            return _variant_from_row(row) if row else None

        return await self._run(_q)

    async def list_variants(self, active_only: bool = False) -> List[ABVariant]:
        def _q(db: Session) -> List[ABVariant]:
            stmt = select(ABTestVariantRow)
            if active_only:
                stmt = stmt.where(ABTestVariantRow.is_active.is_(True))
            stmt = stmt.order_by(ABTestVariantRow.created_at.asc(), ABTestVariantRow.id.asc())
            return [_variant_from_row(r) for r in db.execute(stmt).scalars().all()]

        return await self._run(_q)

    async def load_assignment(self, user_id: str) -> Optional[ABAssignment]:
        def _q(db: Session) -> Optional[ABAssignment]:
            row = db.execute(
                select(ABTestAssignmentRow)
                .where(ABTestAssignmentRow.user_id == user_id)
                .order_by(ABTestAssignmentRow.id.desc())
                .limit(1)
            ).scalar_one_or_none()
            return _assignment_from_row(row) if row else None

        return await self._run(_q)

    async def create_assignment_if_absent(
        self, user_id: str, variant_id: str
    ) -> Tuple[ABAssignment, bool]:
        def _q(db: Session) -> Tuple[ABAssignment, bool]:
            # sticky assignment：先查指向启用分组的历史分配
            active = db.execute(
                select(ABTestAssignmentRow)
                .join(ABTestVariantRow, ABTestVariantRow.id == ABTestAssignmentRow.variant_id)
                .where(ABTestAssignmentRow.user_id == user_id)
                .where(ABTestVariantRow.is_active.is_(True))
                .order_by(ABTestAssignmentRow.id.desc())
                .limit(1)
            ).scalar_one_or_none()
            if active:
                return _assignment_from_row(active), False

            existing = self._find(db, user_id, variant_id)
            if existing:
                return _assignment_from_row(existing), False

            row = ABTestAssignmentRow(user_id=user_id, variant_id=variant_id)
            db.add(row)
            db.execute(
                update(ABTestVariantRow)
                .where(ABTestVariantRow.id == variant_id)
                .values(total_assignments=ABTestVariantRow.total_assignments + 1)
            )
            try:
                db.commit()
            except IntegrityError:
                # 并发请求已抢先写入同一 (user_id, variant_id)
                db.rollback()
                winner = self._find(db, user_id, variant_id)
                if winner is None:
                    raise
                return _assignment_from_row(winner), False
            db.refresh(row)
            return _assignment_from_row(row), True

        return await self._run(_q)

    async def record_feedback(
        self, user_id: str, variant_id: str, positive: bool, clicked: bool
    ) -> bool:
        def _q(db: Session) -> bool:
            values = {
                "recommendations_shown": ABTestAssignmentRow.recommendations_shown + 1,
            }
            if clicked:
                values["recommendations_clicked"] = ABTestAssignmentRow.recommendations_clicked + 1
            if positive:
                values["positive_feedback"] = ABTestAssignmentRow.positive_feedback + 1
            else:
                values["negative_feedback"] = ABTestAssignmentRow.negative_feedback + 1

            result = db.execute(
                update(ABTestAssignmentRow)
                .where(ABTestAssignmentRow.user_id == user_id)
                .where(ABTestAssignmentRow.variant_id == variant_id)
                .values(**values)
            )
            if not result.rowcount:
                db.rollback()
                return False

            if positive:
                variant_values = {
                    "total_positive_feedback": ABTestVariantRow.total_positive_feedback + 1
                }
            else:
                variant_values = {
                    "total_negative_feedback": ABTestVariantRow.total_negative_feedback + 1
                }
            db.execute(
                update(ABTestVariantRow)
                .where(ABTestVariantRow.id == variant_id)
                .values(**variant_values)
            )
            db.commit()
            return True

        return await self._run(_q)

    async def assignment_totals(self, variant_id: str) -> Tuple[int, int, int]:
        def _q(db: Session) -> Tuple[int, int, int]:
            count, shown, clicked = db.execute(
                select(
                    func.count(ABTestAssignmentRow.id),
                    func.coalesce(func.sum(ABTestAssignmentRow.recommendations_shown), 0),
                    func.coalesce(func.sum(ABTestAssignmentRow.recommendations_clicked), 0),
                ).where(ABTestAssignmentRow.variant_id == variant_id)
            ).one()
            return int(count), int(shown), int(clicked)

        return await self._run(_q)

    async def set_click_through_rate(self, variant_id: str, ctr: float) -> None:
        def _q(db: Session) -> None:
            db.execute(
                update(ABTestVariantRow)
                .where(ABTestVariantRow.id == variant_id)
                .values(avg_click_through_rate=float(ctr))
            )
            db.commit()

        await self._run(_q)

    async def create_variant(
        self,
        name: str,
        weights: AlgorithmWeights,
        traffic_percent: float,
        *,
        description: str = "",
        is_control: bool = False,
    ) -> ABVariant:
        def _q(db: Session) -> ABVariant:
            row = ABTestVariantRow(
                id=f"var_{uuid.uuid4().hex[:12]}",
                name=name,
                description=description,
                config=weights.to_config(),
                is_control=is_control,
                traffic_percent=float(traffic_percent),
                is_active=True,
                total_assignments=0,
                total_positive_feedback=0,
                total_negative_feedback=0,
                avg_click_through_rate=0.0,
            )
            db.add(row)
            db.commit()
            db.refresh(row)
            return _variant_from_row(row)

        return await self._run(_q)

    async def deactivate_variant(self, variant_id: str) -> bool:
        def _q(db: Session) -> bool:
            result = db.execute(
                update(ABTestVariantRow)
                .where(ABTestVariantRow.id == variant_id)
                .values(is_active=False)
            )
            db.commit()
            return bool(result.rowcount)

        return await self._run(_q)

    async def assigned_user_ids(self, variant_id: str) -> List[str]:
        def _q(db: Session) -> List[str]:
            rows = db.execute(
                select(ABTestAssignmentRow.user_id)
                .where(ABTestAssignmentRow.variant_id == variant_id)
                .distinct()
            ).scalars().all()
            return [str(r) for r in rows]

        return await self._run(_q)

    @staticmethod
    def _find(db: Session, user_id: str, variant_id: str) -> Optional[ABTestAssignmentRow]:
        return db.execute(
            select(ABTestAssignmentRow)
            .where(ABTestAssignmentRow.user_id == user_id)
            .where(ABTestAssignmentRow.variant_id == variant_id)
        ).scalar_one_or_none()


class SqlEngagementStore(_SqlStoreBase, EngagementStore):
    store_name = "engagement store"

    async def record_engagement_time(self, record: EngagementTimeRecord) -> None:
        def _q(db: Session) -> None:
            db.add(
                EngagementTimeRow(
                    user_id=record.user_id,
                    hour_of_day=record.hour_of_day,
                    day_of_week=record.day_of_week,
                    content_type=record.content_type,
                    content_id=record.content_id,
                    tags=list(record.tags),
                    engagement_score=float(record.engagement_score),
                    created_at=record.created_at,
                )
            )
            db.commit()

        await self._run(_q)

    async def recent_engagements(
        self,
        user_id: str,
        hour_from: int,
        hour_to: int,
        day_of_week: int,
        limit: int = 50,
    ) -> List[EngagementTimeRecord]:
        def _q(db: Session) -> List[EngagementTimeRecord]:
            rows = db.execute(
                select(EngagementTimeRow)
                .where(EngagementTimeRow.user_id == user_id)
                .where(EngagementTimeRow.hour_of_day >= hour_from)
                .where(EngagementTimeRow.hour_of_day <= hour_to)
                .where(EngagementTimeRow.day_of_week == day_of_week)
                .order_by(EngagementTimeRow.created_at.desc(), EngagementTimeRow.id.desc())
                .limit(limit)
            ).scalars().all()
            return [
                EngagementTimeRecord(
                    user_id=r.user_id,
                    hour_of_day=r.hour_of_day,
                    day_of_week=r.day_of_week,
                    content_type=r.content_type,
                    content_id=r.content_id,
                    tags=list(r.tags or []),
                    engagement_score=float(r.engagement_score or 0.0),
                    created_at=r.created_at,
                )
                for r in rows
            ]

        return await self._run(_q)


class SqlFeedbackStore(_SqlStoreBase, FeedbackStore):
    store_name = "feedback store"

    async def save_feedback(self, record: FeedbackRecord) -> None:
        def _q(db: Session) -> None:
            db.add(
                RecommendationFeedbackRow(
                    user_id=record.user_id,
                    item_type=record.item_type,
                    item_id=record.item_id,
                    feedback=record.feedback.value,
                    reason=record.reason,
                    session_id=record.session_id,
                    position=record.position,
                    variant_id=record.variant_id,
                    created_at=record.created_at,
                )
            )
            db.commit()

        await self._run(_q)

    async def list_feedback(
        self, user_id: str, item_type: Optional[str] = None, limit: int = 50
    ) -> List[FeedbackRecord]:
        def _q(db: Session) -> List[FeedbackRecord]:
            stmt = select(RecommendationFeedbackRow).where(
                RecommendationFeedbackRow.user_id == user_id
            )
            if item_type:
                stmt = stmt.where(RecommendationFeedbackRow.item_type == item_type)
            stmt = stmt.order_by(
                RecommendationFeedbackRow.created_at.desc(), RecommendationFeedbackRow.id.desc()
            ).limit(limit)
            return [
                FeedbackRecord(
                    user_id=r.user_id,
                    item_type=r.item_type,
                    item_id=r.item_id,
                    feedback=FeedbackType(r.feedback),
                    reason=r.reason,
                    session_id=r.session_id,
                    position=r.position,
                    variant_id=r.variant_id,
                    created_at=r.created_at,
                )
                for r in db.execute(stmt).scalars().all()
            ]

        return await self._run(_q)
