"""Dispatch status state machine.

Pure logic: checks an edge against the transition table, validates the edge
payload, and applies the edge's business fields and audit stamps to the
record in memory. Persistence and cache invalidation belong to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, FrozenSet, Mapping, Optional, Tuple, Type, Union

from pydantic import BaseModel

from app.core.clock import to_naive_utc
from app.core.errors import InvalidTransitionError
from app.models.dispatch import EXIT_STATUSES, DispatchRecord, DispatchStatus
from app.schemas.dispatch import (
    CancelPayload,
    DepartureOrderPayload,
    DeparturePayload,
    ExitPayload,
    PassengerDropPayload,
    PaymentPayload,
    PermitIssuePayload,
    PermitRejectionPayload,
)

S = DispatchStatus

INITIAL_STATUS = S.ENTERED

ALLOWED_TRANSITIONS: Dict[DispatchStatus, FrozenSet[DispatchStatus]] = {
    S.ENTERED: frozenset({S.PASSENGERS_DROPPED, S.CANCELLED}),
    S.PASSENGERS_DROPPED: frozenset({S.PERMIT_ISSUED, S.PERMIT_REJECTED}),
    S.PERMIT_ISSUED: frozenset({S.PAID}),
    S.PERMIT_REJECTED: frozenset(),
    S.PAID: frozenset({S.DEPARTURE_ORDERED}),
    S.DEPARTURE_ORDERED: frozenset({S.DEPARTED}),
    S.DEPARTED: frozenset({S.EXITED}),
    S.EXITED: frozenset(),
    S.CANCELLED: frozenset(),
}

# Entry details (vehicle, driver, route, entry time) can still be corrected.
EDITABLE_STATUSES = frozenset({S.ENTERED, S.PASSENGERS_DROPPED})


@dataclass(frozen=True)
class Actor:
    id: Optional[str] = None
    name: Optional[str] = None


def _coerce_status(value: Union[str, DispatchStatus]) -> Optional[DispatchStatus]:
    try:
        return DispatchStatus(value)
    except ValueError:
        return None


def allowed_targets(status: Union[str, DispatchStatus]) -> FrozenSet[DispatchStatus]:
    current = _coerce_status(status)
    if current is None:
        return frozenset()
    return ALLOWED_TRANSITIONS[current]


def is_allowed(from_status: Union[str, DispatchStatus], to_status: Union[str, DispatchStatus]) -> bool:
    target = _coerce_status(to_status)
    return target is not None and target in allowed_targets(from_status)


def check_transition(
    from_status: Union[str, DispatchStatus],
    to_status: Union[str, DispatchStatus],
) -> Tuple[DispatchStatus, DispatchStatus]:
    if not is_allowed(from_status, to_status):
        raise InvalidTransitionError(from_status, to_status)
    return DispatchStatus(from_status), DispatchStatus(to_status)


# -- edge handlers ---------------------------------------------------------


def _passengers_dropped(record: DispatchRecord, payload: PassengerDropPayload, actor: Actor, now: datetime) -> None:
    record.passenger_drop_time = now
    record.passenger_drop_by = actor.id
    record.passenger_drop_by_name = actor.name
    if payload.passengers_arrived is not None:
        record.passengers_arrived = payload.passengers_arrived
    if payload.route_id:
        record.route_id = payload.route_id


def _permit_issued(record: DispatchRecord, payload: PermitIssuePayload, actor: Actor, now: datetime) -> None:
    record.boarding_permit_time = now
    record.boarding_permit_by = actor.id
    record.boarding_permit_by_name = actor.name
    record.permit_status = "approved"
    record.rejection_reason = None
    record.transport_order_code = payload.transport_order_code
    if payload.planned_departure_time is not None:
        record.planned_departure_time = to_naive_utc(payload.planned_departure_time)
    for field in ("seat_count", "bed_count", "hh_ticket_count", "hh_percentage"):
        value = getattr(payload, field)
        if value is not None:
            setattr(record, field, value)
    if payload.route_id:
        record.route_id = payload.route_id
    if payload.schedule_id:
        record.schedule_id = payload.schedule_id
    if payload.replacement_vehicle_id:
        record.replacement_vehicle_id = payload.replacement_vehicle_id


def _permit_rejected(record: DispatchRecord, payload: PermitRejectionPayload, actor: Actor, now: datetime) -> None:
    record.boarding_permit_time = now
    record.boarding_permit_by = actor.id
    record.boarding_permit_by_name = actor.name
    record.permit_status = "rejected"
    record.rejection_reason = payload.rejection_reason
    if payload.transport_order_code:
        record.transport_order_code = payload.transport_order_code


def _paid(record: DispatchRecord, payload: PaymentPayload, actor: Actor, now: datetime) -> None:
    record.payment_time = now
    record.payment_by = actor.id
    record.payment_by_name = actor.name
    record.payment_amount = payload.payment_amount
    record.payment_method = payload.payment_method
    record.invoice_number = payload.invoice_number


def _departure_ordered(record: DispatchRecord, payload: DepartureOrderPayload, actor: Actor, now: datetime) -> None:
    record.departure_order_time = now
    record.departure_order_by = actor.id
    record.departure_order_by_name = actor.name
    if payload.passengers_departing is not None:
        record.passengers_departing = payload.passengers_departing


def _departed(record: DispatchRecord, payload: DeparturePayload, actor: Actor, now: datetime) -> None:
    record.departed_time = now
    record.departed_by = actor.id
    record.departed_by_name = actor.name
    record.exit_time = to_naive_utc(payload.exit_time) if payload.exit_time else now
    if payload.passengers_departing is not None:
        record.passengers_departing = payload.passengers_departing


def _exited(record: DispatchRecord, payload: ExitPayload, actor: Actor, now: datetime) -> None:
    record.exited_time = now
    record.exited_by = actor.id
    record.exited_by_name = actor.name
    if record.exit_time is None:
        record.exit_time = now


def _cancelled(record: DispatchRecord, payload: CancelPayload, actor: Actor, now: datetime) -> None:
    record.cancelled_time = now
    record.cancelled_by = actor.id
    record.cancelled_by_name = actor.name
    record.cancellation_reason = payload.reason
    record.previous_status = record.current_status


EdgeHandler = Callable[[DispatchRecord, Any, Actor, datetime], None]

EDGE_HANDLERS: Dict[DispatchStatus, Tuple[Type[BaseModel], EdgeHandler]] = {
    S.PASSENGERS_DROPPED: (PassengerDropPayload, _passengers_dropped),
    S.PERMIT_ISSUED: (PermitIssuePayload, _permit_issued),
    S.PERMIT_REJECTED: (PermitRejectionPayload, _permit_rejected),
    S.PAID: (PaymentPayload, _paid),
    S.DEPARTURE_ORDERED: (DepartureOrderPayload, _departure_ordered),
    S.DEPARTED: (DeparturePayload, _departed),
    S.EXITED: (ExitPayload, _exited),
    S.CANCELLED: (CancelPayload, _cancelled),
}

_unmapped = set(DispatchStatus) - set(ALLOWED_TRANSITIONS)
_unhandled = {target for targets in ALLOWED_TRANSITIONS.values() for target in targets} - set(EDGE_HANDLERS)
if _unmapped or _unhandled:
    raise RuntimeError(
        f"dispatch state machine incomplete: no transitions for {sorted(_unmapped)}, "
        f"no handler for {sorted(_unhandled)}"
    )


def parse_transition(
    record: DispatchRecord,
    target: Union[str, DispatchStatus],
    payload: Union[Mapping[str, Any], BaseModel, None],
) -> Tuple[DispatchStatus, BaseModel]:
    """Check the edge, then validate the payload for it.

    The edge is checked first so an illegal request always fails with
    InvalidTransitionError whatever its payload looks like.
    """
    _, to_status = check_transition(record.current_status, target)
    payload_model, _ = EDGE_HANDLERS[to_status]
    # Prebuilt payloads are validated again so record-dependent checks run.
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(exclude_unset=True)
    context = {"entry_time": record.entry_time}
    return to_status, payload_model.model_validate(payload or {}, context=context)


def apply_transition(
    record: DispatchRecord,
    target: DispatchStatus,
    payload: BaseModel,
    actor: Actor,
    now: datetime,
) -> DispatchRecord:
    """Mutate ``record`` along the edge to ``target``."""
    check_transition(record.current_status, target)
    _, handler = EDGE_HANDLERS[target]
    handler(record, payload, actor, now)
    record.current_status = target.value
    return record


def stamp_entry(record: DispatchRecord, actor: Actor, entry_time: datetime) -> DispatchRecord:
    record.current_status = INITIAL_STATUS.value
    record.entry_time = entry_time
    record.exit_time = None
    record.entry_by = actor.id
    record.entry_by_name = actor.name
    return record


def exit_time_consistent(record: DispatchRecord) -> bool:
    has_exit = record.exit_time is not None
    return has_exit == (DispatchStatus(record.current_status) in EXIT_STATUSES)
