"""
Public order lookup.

The database lookup and a carrier trace of the raw query run side by side,
each bounded by a deadline taken at submit time. A follow-up trace of the
stored tracking number shares the trace deadline. Either side may come
back empty; the caller gets whatever finished.
"""
import logging
import re
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from rudark.core.config import settings
from rudark.core.observability import log_event
from rudark.models.order import Order
from rudark.services.carrier_provider import CarrierProvider, TraceResult, get_carrier_provider
from rudark.services.payment_provider import ProviderError

MIN_QUERY_LENGTH = 3
ORDER_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
PLACEHOLDER_TRACKING = {"PENDING", "N/A"}

_executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="order-lookup")


class LookupQueryError(ValueError):
    pass


@dataclass(frozen=True)
class OrderLookupResult:
    source: str  # ORDER | EXTERNAL
    order: Order | None
    trace: TraceResult | None


def validate_order_id(order_id: str) -> str:
    cleaned = (order_id or "").strip()
    if not cleaned or not ORDER_ID_PATTERN.match(cleaned):
        raise LookupQueryError("Invalid order ID")
    return cleaned


def _find_order_id(session_factory: sessionmaker, query: str) -> str | None:
    with session_factory() as session:
        for condition in (
            Order.id == query,
            Order.customer_phone == query,
            Order.tracking_no == query,
        ):
            found = session.execute(
                select(Order.id).where(condition).order_by(Order.created_at.desc()).limit(1)
            ).scalar_one_or_none()
            if found:
                return found
    return None


def _safe_trace(carrier: CarrierProvider, tracking_no: str) -> TraceResult | None:
    try:
        return carrier.trace(tracking_no)
    except ProviderError as exc:
        log_event("order_lookup_trace_failed", level=logging.INFO, tracking_no=tracking_no, error=str(exc))
        return None


def _await(future: Any, deadline: float, label: str) -> Any:
    """Waits until a deadline taken from time.monotonic() at submit time."""
    try:
        return future.result(timeout=max(0.0, deadline - time.monotonic()))
    except FutureTimeout:
        log_event("order_lookup_timeout", level=logging.WARNING, step=label)
        return None


def search_order(
    db: Session,
    query: str,
    *,
    carrier: CarrierProvider | None = None,
) -> OrderLookupResult | None:
    cleaned = (query or "").strip()
    if len(cleaned) < MIN_QUERY_LENGTH:
        raise LookupQueryError("Please enter a valid Order ID, Phone Number, or Tracking Number.")
    carrier = carrier or get_carrier_provider()

    # The lookup thread needs its own session; sessions are not thread-safe.
    session_factory = sessionmaker(bind=db.get_bind(), autoflush=False, autocommit=False)
    started = time.monotonic()
    db_deadline = started + settings.order_search_db_timeout_seconds
    trace_deadline = started + settings.order_search_trace_timeout_seconds
    db_future = _executor.submit(_find_order_id, session_factory, cleaned)
    trace_future = _executor.submit(_safe_trace, carrier, cleaned)
    order_id = _await(db_future, db_deadline, "database")
    direct_trace = _await(trace_future, trace_deadline, "trace")

    if order_id:
        order = db.get(Order, order_id)
        trace = direct_trace
        stored = order.tracking_no if order else None
        if trace is None and stored and stored not in PLACEHOLDER_TRACKING and stored != cleaned:
            trace = _await(
                _executor.submit(_safe_trace, carrier, stored),
                trace_deadline,
                "stored_trace",
            )
        if order is not None:
            return OrderLookupResult(source="ORDER", order=order, trace=trace)

    if direct_trace is not None:
        return OrderLookupResult(source="EXTERNAL", order=None, trace=direct_trace)
    return None


def get_public_order(db: Session, order_id: str) -> Order | None:
    return db.get(Order, validate_order_id(order_id))
