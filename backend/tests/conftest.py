"""
Shared fixtures: an in-memory record store, record builders and tokens.
"""
import itertools
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.lib.jwt import ROLE_ADMIN, ROLE_PROVIDER, create_access_token
from src.lib.metrics import reset_metrics
from src.models.payments import PaymentStatus
from src.models.work_orders import ACCEPTED_SUPERSET, WorkOrderStatus
from src.services.record_store import (
    MessageRecord,
    PaymentRecord,
    ProviderAggregate,
    RatingRecord,
    RecordStore,
    WorkOrderRecord,
    response_minutes,
)


NOW = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)

_ids = itertools.count(1)


def _in_range(moment: datetime, date_from: Optional[datetime], date_to: Optional[datetime]) -> bool:
    if date_from is not None and moment < date_from:
        return False
    if date_to is not None and moment >= date_to:
        return False
    return True


class InMemoryRecordStore(RecordStore):
    """RecordStore over plain lists, with the same half-open range rules."""

    def __init__(
        self,
        work_orders: Sequence[WorkOrderRecord] = (),
        payments: Sequence[PaymentRecord] = (),
        ratings: Sequence[RatingRecord] = (),
        messages: Sequence[MessageRecord] = (),
        aggregates: Optional[List[ProviderAggregate]] = None,
    ):
        self.work_orders = list(work_orders)
        self.payments = list(payments)
        self.ratings = list(ratings)
        self.messages = list(messages)
        self.aggregates = aggregates

    async def query_work_orders(
        self,
        provider_id,
        status_in=None,
        category=None,
        date_from=None,
        date_to=None,
        updated_since=None,
    ):
        return [
            wo for wo in self.work_orders
            if wo.provider_id == provider_id
            and (not status_in or wo.status in status_in)
            and (category is None or wo.category == category)
            and _in_range(wo.created_at, date_from, date_to)
            and (updated_since is None or wo.updated_at >= updated_since)
        ]

    async def query_payments(self, provider_id, status_in=None, date_from=None, date_to=None):
        return [
            p for p in self.payments
            if p.provider_id == provider_id
            and (not status_in or p.status in status_in)
            and _in_range(p.payment_date, date_from, date_to)
        ]

    async def query_ratings(self, provider_id, date_from=None, date_to=None):
        return [
            r for r in self.ratings
            if r.provider_id == provider_id and _in_range(r.created_at, date_from, date_to)
        ]

    async def query_messages(self, provider_id, date_from=None, date_to=None):
        return [
            m for m in self.messages
            if m.provider_id == provider_id and _in_range(m.sent_at, date_from, date_to)
        ]

    async def query_all_provider_aggregates(self):
        if self.aggregates is not None:
            return list(self.aggregates)

        orders: Dict[int, List[WorkOrderRecord]] = defaultdict(list)
        for wo in self.work_orders:
            orders[wo.provider_id].append(wo)

        aggregates = []
        for provider_id, work_orders in orders.items():
            ratings = [r.value for r in self.ratings if r.provider_id == provider_id]
            revenue = sum(
                p.amount for p in self.payments
                if p.provider_id == provider_id and p.status == PaymentStatus.COMPLETED.value
            )
            minutes = [
                m for m in (response_minutes(wo) for wo in work_orders if wo.status in ACCEPTED_SUPERSET)
                if m is not None
            ]
            aggregates.append(ProviderAggregate(
                provider_id=provider_id,
                total_work_orders=len(work_orders),
                accepted_count=sum(1 for wo in work_orders if wo.status in ACCEPTED_SUPERSET),
                completed_count=sum(1 for wo in work_orders if wo.status == WorkOrderStatus.COMPLETED.value),
                cancelled_count=sum(1 for wo in work_orders if wo.status == WorkOrderStatus.CANCELLED.value),
                total_revenue=revenue,
                rating_count=len(ratings),
                average_rating=sum(ratings) / len(ratings) if ratings else 0.0,
                average_response_minutes=sum(minutes) / len(minutes) if minutes else None,
            ))
        return aggregates


def make_work_order(
    provider_id: int = 1,
    customer_id: int = 100,
    status: str = WorkOrderStatus.COMPLETED.value,
    category: str = "Plumbing",
    created_at: datetime = NOW,
    updated_at: Optional[datetime] = None,
    **kwargs,
) -> WorkOrderRecord:
    return WorkOrderRecord(
        id=kwargs.pop("id", next(_ids)),
        provider_id=provider_id,
        customer_id=customer_id,
        status=status,
        category=category,
        created_at=created_at,
        updated_at=updated_at or created_at,
        **kwargs,
    )


def make_payment(
    amount: float,
    provider_id: int = 1,
    customer_id: int = 100,
    status: str = PaymentStatus.COMPLETED.value,
    category: str = "Plumbing",
    payment_date: datetime = NOW,
    work_order_id: Optional[int] = None,
) -> PaymentRecord:
    return PaymentRecord(
        id=next(_ids),
        work_order_id=work_order_id or next(_ids),
        provider_id=provider_id,
        customer_id=customer_id,
        category=category,
        amount=amount,
        status=status,
        payment_date=payment_date,
    )


def make_rating(
    value: int,
    provider_id: int = 1,
    customer_id: int = 100,
    category: str = "Plumbing",
    created_at: datetime = NOW,
) -> RatingRecord:
    return RatingRecord(
        id=next(_ids),
        work_order_id=next(_ids),
        provider_id=provider_id,
        customer_id=customer_id,
        category=category,
        value=value,
        created_at=created_at,
    )


def make_message(work_order_id: int, sent_at: datetime, provider_id: int = 1, customer_id: int = 100) -> MessageRecord:
    return MessageRecord(
        id=next(_ids),
        work_order_id=work_order_id,
        provider_id=provider_id,
        customer_id=customer_id,
        sent_at=sent_at,
    )


def execute_result(
    scalar=None,
    scalars: Optional[list] = None,
    rowcount: Optional[int] = None,
) -> MagicMock:
    """A mocked Result for session.execute()."""
    result = MagicMock()
    result.scalar_one_or_none.return_value = scalar
    result.scalar_one.return_value = scalar
    result.scalars.return_value.all.return_value = scalars or []
    result.rowcount = rowcount
    return result


@pytest.fixture(autouse=True)
def clean_metrics():
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def mock_db_session():
    """Mock async database session; add() is synchronous like the real one."""
    session = AsyncMock()
    session.add = MagicMock()
    session.bind = None
    session.execute = AsyncMock(return_value=execute_result())
    return session


@pytest.fixture
def provider_token() -> str:
    return create_access_token("1", ROLE_PROVIDER)


@pytest.fixture
def other_provider_token() -> str:
    return create_access_token("2", ROLE_PROVIDER)


@pytest.fixture
def admin_token() -> str:
    return create_access_token("99", ROLE_ADMIN)
