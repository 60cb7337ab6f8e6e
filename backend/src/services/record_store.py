"""
Read access to provider transactional records.

The analytics calculators never touch ORM rows directly: they receive frozen
records from a RecordStore. SqlRecordStore is the production implementation;
it opens a fresh session per query so that calculator tasks gathered
concurrently never share one.
"""
import functools
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select, func, and_, case
from sqlalchemy.exc import DBAPIError, OperationalError, InterfaceError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from src.api.middleware.error_handler import DataUnavailableException
from src.lib.logging import get_logger, log_with_context
from src.lib.settings import settings
from src.models.messages import Message
from src.models.payments import Payment, PaymentStatus
from src.models.ratings import Rating
from src.models.work_orders import WorkOrder, WorkOrderStatus, ACCEPTED_SUPERSET


logger = get_logger(__name__)


@dataclass(frozen=True)
class WorkOrderRecord:
    id: int
    provider_id: int
    customer_id: int
    status: str
    category: str
    created_at: datetime
    updated_at: datetime
    priority: Optional[str] = None
    cancellation_reason: Optional[str] = None
    location_key: Optional[str] = None
    first_response_at: Optional[datetime] = None


@dataclass(frozen=True)
class PaymentRecord:
    id: int
    work_order_id: int
    provider_id: int
    customer_id: int
    category: str
    amount: float
    status: str
    payment_date: datetime


@dataclass(frozen=True)
class RatingRecord:
    id: int
    work_order_id: int
    provider_id: int
    customer_id: int
    category: str
    value: int
    created_at: datetime
    comment: Optional[str] = None


@dataclass(frozen=True)
class MessageRecord:
    """A message sent by the provider on one of its work orders."""
    id: int
    work_order_id: int
    provider_id: int
    customer_id: int
    sent_at: datetime


@dataclass(frozen=True)
class ProviderAggregate:
    """Population-wide per-provider totals used by benchmarking."""
    provider_id: int
    total_work_orders: int = 0
    accepted_count: int = 0
    completed_count: int = 0
    cancelled_count: int = 0
    total_revenue: float = 0.0
    rating_count: int = 0
    average_rating: float = 0.0
    average_response_minutes: Optional[float] = None

    @property
    def completion_rate(self) -> float:
        if self.accepted_count == 0:
            return 0.0
        return self.completed_count / self.accepted_count * 100

    @property
    def cancellation_rate(self) -> float:
        if self.total_work_orders == 0:
            return 0.0
        return self.cancelled_count / self.total_work_orders * 100


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def response_minutes(record: WorkOrderRecord) -> Optional[float]:
    """
    Minutes from creation to the provider's first reaction: the earlier of
    its first message and the last status update. None when neither is
    after creation.
    """
    candidates = [
        ts for ts in (record.first_response_at, record.updated_at)
        if ts is not None and ts >= record.created_at
    ]
    if not candidates:
        return None
    return (min(candidates) - record.created_at).total_seconds() / 60


class RecordStore(ABC):
    """
    Query capability over provider records.

    Time ranges are half-open: date_from <= t < date_to.
    """

    @abstractmethod
    async def query_work_orders(
        self,
        provider_id: int,
        status_in: Optional[Sequence[str]] = None,
        category: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        updated_since: Optional[datetime] = None,
    ) -> List[WorkOrderRecord]:
        """Work orders filtered on created_at (and updated_at for updated_since)."""

    @abstractmethod
    async def query_payments(
        self,
        provider_id: int,
        status_in: Optional[Sequence[str]] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> List[PaymentRecord]:
        """Payments filtered on payment_date."""

    @abstractmethod
    async def query_ratings(
        self,
        provider_id: int,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> List[RatingRecord]:
        """Ratings filtered on created_at."""

    @abstractmethod
    async def query_messages(
        self,
        provider_id: int,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> List[MessageRecord]:
        """Provider-sent messages filtered on sent_at."""

    @abstractmethod
    async def query_all_provider_aggregates(self) -> List[ProviderAggregate]:
        """One aggregate per provider with at least one work order."""


def _store_query(func):
    """Retry transient database errors, then surface DataUnavailable."""
    retrying = retry(
        stop=stop_after_attempt(settings.record_query_attempts),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        retry=retry_if_exception_type((OperationalError, InterfaceError)),
        reraise=True,
    )(func)

    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs):
        try:
            return await retrying(self, *args, **kwargs)
        except DBAPIError as e:
            log_with_context(
                logger,
                "error",
                f"Record query {func.__name__} failed",
                query=func.__name__,
                error=str(e),
            )
            raise DataUnavailableException(
                "Provider records are temporarily unavailable",
                details={"query": func.__name__},
            ) from e

    return wrapper


def _time_filters(column, date_from: Optional[datetime], date_to: Optional[datetime]) -> list:
    conditions = []
    if date_from is not None:
        conditions.append(column >= date_from)
    if date_to is not None:
        conditions.append(column < date_to)
    return conditions


def _status_value(status) -> str:
    return status.value if hasattr(status, "value") else str(status)


class SqlRecordStore(RecordStore):
    """RecordStore backed by the SQLAlchemy models."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @_store_query
    async def query_work_orders(
        self,
        provider_id: int,
        status_in: Optional[Sequence[str]] = None,
        category: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        updated_since: Optional[datetime] = None,
    ) -> List[WorkOrderRecord]:
        first_message = func.min(Message.sent_at).label("first_response_at")
        stmt = (
            select(WorkOrder, first_message)
            .outerjoin(
                Message,
                and_(
                    Message.work_order_id == WorkOrder.id,
                    Message.sender_id == WorkOrder.provider_id,
                ),
            )
            .where(WorkOrder.provider_id == provider_id)
            .group_by(WorkOrder.id)
        )
        if status_in:
            stmt = stmt.where(WorkOrder.status.in_([WorkOrderStatus(s) for s in status_in]))
        if category is not None:
            stmt = stmt.where(WorkOrder.category == category)
        for condition in _time_filters(WorkOrder.created_at, date_from, date_to):
            stmt = stmt.where(condition)
        if updated_since is not None:
            stmt = stmt.where(WorkOrder.updated_at >= updated_since)

        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()

        return [
            WorkOrderRecord(
                id=wo.id,
                provider_id=wo.provider_id,
                customer_id=wo.customer_id,
                status=_status_value(wo.status),
                category=wo.category,
                created_at=as_utc(wo.created_at),
                updated_at=as_utc(wo.updated_at),
                priority=wo.priority,
                cancellation_reason=wo.cancellation_reason,
                location_key=wo.location_key,
                first_response_at=as_utc(first_response_at),
            )
            for wo, first_response_at in rows
        ]

    @_store_query
    async def query_payments(
        self,
        provider_id: int,
        status_in: Optional[Sequence[str]] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> List[PaymentRecord]:
        stmt = (
            select(Payment, WorkOrder.customer_id, WorkOrder.category)
            .join(WorkOrder, Payment.work_order_id == WorkOrder.id)
            .where(WorkOrder.provider_id == provider_id)
        )
        if status_in:
            stmt = stmt.where(Payment.status.in_([PaymentStatus(s) for s in status_in]))
        for condition in _time_filters(Payment.payment_date, date_from, date_to):
            stmt = stmt.where(condition)

        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()

        return [
            PaymentRecord(
                id=payment.id,
                work_order_id=payment.work_order_id,
                provider_id=provider_id,
                customer_id=customer_id,
                category=category,
                amount=float(payment.amount),
                status=_status_value(payment.status),
                payment_date=as_utc(payment.payment_date),
            )
            for payment, customer_id, category in rows
        ]

    @_store_query
    async def query_ratings(
        self,
        provider_id: int,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> List[RatingRecord]:
        stmt = (
            select(Rating, WorkOrder.customer_id, WorkOrder.category)
            .join(WorkOrder, Rating.work_order_id == WorkOrder.id)
            .where(WorkOrder.provider_id == provider_id)
        )
        for condition in _time_filters(Rating.created_at, date_from, date_to):
            stmt = stmt.where(condition)

        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()

        return [
            RatingRecord(
                id=rating.id,
                work_order_id=rating.work_order_id,
                provider_id=provider_id,
                customer_id=customer_id,
                category=category,
                value=rating.value,
                created_at=as_utc(rating.created_at),
                comment=rating.comment,
            )
            for rating, customer_id, category in rows
        ]

    @_store_query
    async def query_messages(
        self,
        provider_id: int,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> List[MessageRecord]:
        stmt = (
            select(Message, WorkOrder.customer_id)
            .join(WorkOrder, Message.work_order_id == WorkOrder.id)
            .where(
                WorkOrder.provider_id == provider_id,
                Message.sender_id == WorkOrder.provider_id,
            )
        )
        for condition in _time_filters(Message.sent_at, date_from, date_to):
            stmt = stmt.where(condition)

        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()

        return [
            MessageRecord(
                id=message.id,
                work_order_id=message.work_order_id,
                provider_id=provider_id,
                customer_id=customer_id,
                sent_at=as_utc(message.sent_at),
            )
            for message, customer_id in rows
        ]

    @_store_query
    async def query_all_provider_aggregates(self) -> List[ProviderAggregate]:
        accepted_statuses = [WorkOrderStatus(s) for s in ACCEPTED_SUPERSET]

        counts_stmt = select(
            WorkOrder.provider_id,
            func.count(WorkOrder.id),
            func.sum(case((WorkOrder.status.in_(accepted_statuses), 1), else_=0)),
            func.sum(case((WorkOrder.status == WorkOrderStatus.COMPLETED, 1), else_=0)),
            func.sum(case((WorkOrder.status == WorkOrderStatus.CANCELLED, 1), else_=0)),
        ).group_by(WorkOrder.provider_id)

        revenue_stmt = (
            select(WorkOrder.provider_id, func.coalesce(func.sum(Payment.amount), 0))
            .join(Payment, Payment.work_order_id == WorkOrder.id)
            .where(Payment.status == PaymentStatus.COMPLETED)
            .group_by(WorkOrder.provider_id)
        )

        ratings_stmt = (
            select(WorkOrder.provider_id, func.count(Rating.id), func.avg(Rating.value))
            .join(Rating, Rating.work_order_id == WorkOrder.id)
            .group_by(WorkOrder.provider_id)
        )

        # Timestamps come back per work order; minute arithmetic stays in Python
        # so it is identical to the per-provider calculators.
        response_stmt = (
            select(
                WorkOrder.id,
                WorkOrder.provider_id,
                WorkOrder.created_at,
                WorkOrder.updated_at,
                func.min(Message.sent_at),
            )
            .outerjoin(
                Message,
                and_(
                    Message.work_order_id == WorkOrder.id,
                    Message.sender_id == WorkOrder.provider_id,
                ),
            )
            .where(WorkOrder.status.in_(accepted_statuses))
            .group_by(WorkOrder.id)
        )

        async with self._session_factory() as session:
            count_rows = (await session.execute(counts_stmt)).all()
            revenue_rows = (await session.execute(revenue_stmt)).all()
            rating_rows = (await session.execute(ratings_stmt)).all()
            response_rows = (await session.execute(response_stmt)).all()

        revenue_by_provider = {pid: float(total or 0) for pid, total in revenue_rows}
        ratings_by_provider = {pid: (count, float(avg or 0)) for pid, count, avg in rating_rows}

        response_by_provider: Dict[int, List[float]] = defaultdict(list)
        for wo_id, pid, created_at, updated_at, first_message_at in response_rows:
            minutes = response_minutes(
                WorkOrderRecord(
                    id=wo_id,
                    provider_id=pid,
                    customer_id=0,
                    status=WorkOrderStatus.ACCEPTED.value,
                    category="",
                    created_at=as_utc(created_at),
                    updated_at=as_utc(updated_at),
                    first_response_at=as_utc(first_message_at),
                )
            )
            if minutes is not None:
                response_by_provider[pid].append(minutes)

        aggregates = []
        for pid, total, accepted, completed, cancelled in count_rows:
            rating_count, average_rating = ratings_by_provider.get(pid, (0, 0.0))
            responses = response_by_provider.get(pid)
            aggregates.append(
                ProviderAggregate(
                    provider_id=pid,
                    total_work_orders=int(total or 0),
                    accepted_count=int(accepted or 0),
                    completed_count=int(completed or 0),
                    cancelled_count=int(cancelled or 0),
                    total_revenue=revenue_by_provider.get(pid, 0.0),
                    rating_count=int(rating_count),
                    average_rating=average_rating,
                    average_response_minutes=sum(responses) / len(responses) if responses else None,
                )
            )

        logger.debug(f"Loaded aggregates for {len(aggregates)} providers")
        return aggregates
