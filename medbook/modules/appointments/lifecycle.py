"""Appointment state machine.

Every transition is a pure function of the current state, the acting party
and the current instant. It either raises ``InvalidTransition`` naming the
guard that failed or returns a ``Transition`` carrying the new state and the
events to publish. Persisting the result is the service's job.

    pending -> confirmed -> in_progress -> completed
       |           |   \\________________/ (asynchronous kinds)
       +-----------+--> cancelled
                   +--> no_show
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from medbook.core.config import settings
from medbook.core.exceptions import InvalidTransition
from medbook.shared.actors import Actor
from medbook.shared.enums import ActorRole, AppointmentStatus, ConsultationKind, EventType

MAX_REASON_LENGTH = 500

CANCELLABLE = frozenset({AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED})
RESCHEDULABLE = CANCELLABLE
REMINDABLE = CANCELLABLE


@dataclass(frozen=True)
class AppointmentState:
    status: AppointmentStatus
    scheduled_at: datetime
    duration_minutes: int
    consultation_kind: ConsultationKind
    fee: Decimal
    confirmed_at: datetime | None = None
    confirmed_by: str | None = None
    cancelled_at: datetime | None = None
    cancelled_by: str | None = None
    cancelled_by_role: ActorRole | None = None
    cancellation_reason: str | None = None
    completed_at: datetime | None = None
    call_started_at: datetime | None = None
    call_ended_at: datetime | None = None
    call_duration_seconds: int | None = None
    reminder_sent_at: datetime | None = None

    @classmethod
    def of(cls, record: Any) -> AppointmentState:
        """Snapshot any object exposing the appointment attributes."""
        return cls(**{item.name: getattr(record, item.name) for item in fields(cls)})

    @property
    def ends_at(self) -> datetime:
        return self.scheduled_at + timedelta(minutes=self.duration_minutes)


@dataclass(frozen=True)
class PendingEvent:
    event_type: EventType
    payload: dict[str, Any]


@dataclass(frozen=True)
class Transition:
    before: AppointmentState
    after: AppointmentState
    events: tuple[PendingEvent, ...] = ()

    def changes(self) -> dict[str, Any]:
        """Fields whose value differs between ``before`` and ``after``."""
        return {
            item.name: getattr(self.after, item.name)
            for item in fields(AppointmentState)
            if getattr(self.before, item.name) != getattr(self.after, item.name)
        }


@dataclass(frozen=True)
class CancellationPolicy:
    """Minimum notice for cancelling, waived for the listed roles."""

    notice: timedelta
    bypass_roles: frozenset[str] = frozenset()

    @classmethod
    def from_settings(cls) -> CancellationPolicy:
        return cls(
            notice=timedelta(hours=settings.cancellation_notice_hours),
            bypass_roles=settings.bypass_roles,
        )

    def allows(self, role: ActorRole, scheduled_at: datetime, now: datetime) -> bool:
        if role.value in self.bypass_roles:
            return True
        return scheduled_at - now >= self.notice


def _ensure_not_terminal(state: AppointmentState) -> None:
    if state.status.is_terminal:
        raise InvalidTransition(f"Appointment is already {state.status.value}", guard="terminal")


def _ensure_status(state: AppointmentState, allowed: frozenset[AppointmentStatus], action: str) -> None:
    _ensure_not_terminal(state)
    if state.status not in allowed:
        expected = " or ".join(sorted(item.value for item in allowed))
        raise InvalidTransition(
            f"Cannot {action} an appointment that is {state.status.value} (expected {expected})",
            guard="status",
        )


def _event(event_type: EventType, state: AppointmentState, **extra: Any) -> PendingEvent:
    payload = {
        "status": state.status.value,
        "scheduled_at": state.scheduled_at.isoformat(),
        "consultation_kind": state.consultation_kind.value,
    }
    payload.update(extra)
    return PendingEvent(event_type, payload)


def confirm(state: AppointmentState, actor: Actor, now: datetime) -> Transition:
    _ensure_status(state, frozenset({AppointmentStatus.PENDING}), "confirm")
    after = replace(state, status=AppointmentStatus.CONFIRMED, confirmed_at=now, confirmed_by=actor.actor_id)
    # The payment collaborator captures the fee on confirmation.
    return Transition(state, after, (_event(EventType.CONFIRMED, after, fee=str(after.fee)),))


def start_consultation(state: AppointmentState, actor: Actor, now: datetime) -> Transition:
    _ensure_status(state, frozenset({AppointmentStatus.CONFIRMED}), "start")
    after = replace(state, status=AppointmentStatus.IN_PROGRESS)
    if state.consultation_kind.is_realtime_call:
        after = replace(after, call_started_at=now)
    return Transition(state, after, (_event(EventType.STARTED, after, started_by=actor.actor_id),))


def complete(state: AppointmentState, actor: Actor, now: datetime) -> Transition:
    allowed = {AppointmentStatus.IN_PROGRESS}
    if state.consultation_kind.is_asynchronous:
        allowed.add(AppointmentStatus.CONFIRMED)
    _ensure_status(state, frozenset(allowed), "complete")

    after = replace(state, status=AppointmentStatus.COMPLETED, completed_at=now)
    if state.call_started_at is not None:
        after = replace(
            after,
            call_ended_at=now,
            call_duration_seconds=max(0, int((now - state.call_started_at).total_seconds())),
        )
    extra: dict[str, Any] = {"completed_by": actor.actor_id}
    if after.call_duration_seconds is not None:
        extra["call_duration_seconds"] = after.call_duration_seconds
    return Transition(state, after, (_event(EventType.COMPLETED, after, **extra),))


def cancel(
    state: AppointmentState,
    actor: Actor,
    now: datetime,
    reason: str,
    policy: CancellationPolicy | None = None,
) -> Transition:
    _ensure_status(state, CANCELLABLE, "cancel")
    reason = (reason or "").strip()
    if not reason:
        raise InvalidTransition("A cancellation reason is required", guard="reason")
    if len(reason) > MAX_REASON_LENGTH:
        raise InvalidTransition(f"Cancellation reason exceeds {MAX_REASON_LENGTH} characters", guard="reason")

    policy = policy or CancellationPolicy.from_settings()
    if not policy.allows(actor.role, state.scheduled_at, now):
        hours = int(policy.notice.total_seconds() // 3600)
        raise InvalidTransition(
            f"Appointments must be cancelled at least {hours} hours in advance",
            guard="notice_window",
        )

    after = replace(
        state,
        status=AppointmentStatus.CANCELLED,
        cancelled_at=now,
        cancelled_by=actor.actor_id,
        cancelled_by_role=actor.role,
        cancellation_reason=reason,
    )
    event = _event(
        EventType.CANCELLED,
        after,
        cancelled_by=actor.actor_id,
        cancelled_by_role=actor.role.value,
        reason=reason,
        # A confirmed appointment had its fee captured; the payment side decides on refunds.
        was_confirmed=state.status is AppointmentStatus.CONFIRMED,
    )
    return Transition(state, after, (event,))


def mark_no_show(state: AppointmentState, actor: Actor, now: datetime) -> Transition:
    _ensure_status(state, frozenset({AppointmentStatus.CONFIRMED}), "mark as no-show")
    if now <= state.scheduled_at:
        raise InvalidTransition("Appointment has not started yet", guard="not_yet_started")
    after = replace(state, status=AppointmentStatus.NO_SHOW)
    return Transition(state, after, (_event(EventType.NO_SHOW, after, marked_by=actor.actor_id),))


def reschedule(
    state: AppointmentState,
    actor: Actor,
    now: datetime,
    new_start: datetime,
    duration_minutes: int | None = None,
) -> Transition:
    """Move to ``new_start``; status is kept. Availability is checked by the caller."""
    _ensure_status(state, RESCHEDULABLE, "reschedule")
    if new_start.tzinfo is None:
        raise InvalidTransition("New time must include a time zone", guard="not_future")
    if new_start <= now:
        raise InvalidTransition("New time must be in the future", guard="not_future")

    after = replace(
        state,
        scheduled_at=new_start,
        duration_minutes=duration_minutes or state.duration_minutes,
        reminder_sent_at=None,
    )
    event = _event(
        EventType.RESCHEDULED,
        after,
        previous_scheduled_at=state.scheduled_at.isoformat(),
        rescheduled_by=actor.actor_id,
    )
    return Transition(state, after, (event,))


def mark_reminder_sent(state: AppointmentState, now: datetime) -> Transition:
    _ensure_status(state, REMINDABLE, "remind")
    if state.reminder_sent_at is not None:
        raise InvalidTransition("Reminder already sent", guard="reminder_sent")
    after = replace(state, reminder_sent_at=now)
    return Transition(state, after, (_event(EventType.REMINDER_DUE, after),))
