"""Change orchestrator - drives one change request to a terminal status.

Flow for a claimed request:
claim → validate → fetch booking → classify channel → resolve availability
(reschedule only) → try write strategies in order → COMPLETED or FAILED.

Every run that claims a request writes a terminal status and at least one
action log entry. A request that is not PENDING is never touched.
"""

from __future__ import annotations

import time
from datetime import date, datetime
from typing import Any, Callable

from changedesk.infra.repositories.action_log_repository import ActionLog
from changedesk.infra.repositories.change_requests_repository import ChangeRequestLedger
from changedesk.infra.repositories.outbox_repository import (
    CHANGE_REQUEST_ESCALATED,
    Escalations,
)
from changedesk.infra.settings import OrchestratorSettings
from changedesk.infra.time import operator_today, utc_now
from changedesk.observability.correlation import get_correlation_id
from changedesk.observability.logging import get_logger
from changedesk.observability.redaction import safe_log_context
from changedesk.reservations.budget import RunBudget
from changedesk.reservations.errors import (
    BookingNotFoundError,
    UpstreamAuthError,
    UpstreamError,
    UpstreamNotFoundError,
)
from changedesk.reservations.legacy import LegacyReservationClient, snapshot_from_legacy
from changedesk.reservations.standard import StandardReservationClient

from .availability import AvailabilityResolver, NoAvailabilityError
from .models import (
    NOT_OTA,
    ActionLogEntry,
    AvailabilitySlot,
    BookingSnapshot,
    ChangeRequest,
    ChangeStatus,
    ChangeType,
    FailureKind,
    OTAInfo,
)
from .ota import classify, guidance_message
from .strategies import (
    ChangeContext,
    ChangePlan,
    DestructivePartialFailure,
    StrategyNotApplicable,
    build_plans,
)

logger = get_logger(__name__)

MANUAL_ACTION_MESSAGE = "Contact support, manual action required."

_CHANGE_LABELS = {
    ChangeType.RESCHEDULE: "date change",
    ChangeType.CANCEL: "cancellation",
    ChangeType.CHANGE_PICKUP: "pickup change",
}


class _RunFailed(Exception):
    """Ends a run as FAILED with a classified, staff-readable message."""

    def __init__(self, kind: FailureKind, message: str, *, method: str | None = None) -> None:
        self.kind = kind
        self.method = method
        super().__init__(message)


class _RunState:
    """What one run has learned so far. Never shared between runs."""

    def __init__(self, request: ChangeRequest, budget: RunBudget) -> None:
        self.request = request
        self.budget = budget
        self.snapshot: BookingSnapshot | None = None
        self.ota: OTAInfo = NOT_OTA
        self.slot: AvailabilitySlot | None = None
        self.attempts = 0


class ChangeOrchestrator:
    """Applies change requests against the two reservation APIs.

    Usage:
        orchestrator = ChangeOrchestrator(
            ledger=stores.ledger,
            action_log=stores.action_log,
            escalations=stores.escalations,
            legacy=LegacyReservationClient(load_legacy_credentials()),
            standard=StandardReservationClient(load_standard_credentials()),
        )
        orchestrator.process(request_id)
    """

    def __init__(
        self,
        *,
        ledger: ChangeRequestLedger,
        action_log: ActionLog,
        escalations: Escalations,
        legacy: LegacyReservationClient,
        standard: StandardReservationClient,
        settings: OrchestratorSettings | None = None,
        resolver: AvailabilityResolver | None = None,
        clock: Callable[[], datetime] = utc_now,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ledger = ledger
        self._action_log = action_log
        self._escalations = escalations
        self._legacy = legacy
        self._settings = settings or OrchestratorSettings()
        self._resolver = resolver or AvailabilityResolver(standard)
        self._plans: dict[ChangeType, ChangePlan] = build_plans(legacy, standard)
        self._clock = clock
        self._monotonic = monotonic

    def process(self, request_id: str) -> ChangeRequest | None:
        """Run a PENDING change request to completion.

        Returns:
            The terminal ledger entry, or None if the request was not
            PENDING (already claimed, finished, or unknown).
        """
        request = self._ledger.claim(request_id)
        if request is None:
            logger.info(
                "change request not pending, skipping",
                extra={"extra_fields": safe_log_context(change_request_id=request_id)},
            )
            return None

        logger.info(
            "change request processing",
            extra={
                "extra_fields": safe_log_context(
                    change_request_id=request.id,
                    booking_id=request.booking_id,
                    change_type=request.change_type.value,
                )
            },
        )

        state = _RunState(
            request,
            RunBudget(
                self._settings.run_budget_seconds,
                self._settings.call_timeout_seconds,
                clock=self._monotonic,
            ),
        )
        try:
            status, fields = self._execute(state)
        except Exception:
            logger.exception(
                "change request processing crashed",
                extra={"extra_fields": safe_log_context(change_request_id=request.id)},
            )
            failure = _RunFailed(FailureKind.GENERIC, MANUAL_ACTION_MESSAGE)
            if state.attempts == 0:
                self._record(state, method=None, success=False, error=str(failure))
            self._finish(state, ChangeStatus.FAILED, self._failure_fields(state, failure))
            raise

        return self._finish(state, status, fields)

    # ------------------------------------------------------------------
    # Run steps
    # ------------------------------------------------------------------

    def _execute(self, state: _RunState) -> tuple[ChangeStatus, dict[str, Any]]:
        try:
            return self._run(state)
        except _RunFailed as failure:
            if state.attempts == 0:
                self._record(state, method=None, success=False, error=str(failure))
            return ChangeStatus.FAILED, self._failure_fields(state, failure)

    def _run(self, state: _RunState) -> tuple[ChangeStatus, dict[str, Any]]:
        request = state.request
        plan = self._plans[request.change_type]

        # Step 1: Validate parameters (no upstream calls yet)
        self._validate(request)

        # Step 2: Fresh booking snapshot
        state.snapshot = self._load_snapshot(state)
        self._reject_no_op(request, state.snapshot)

        # Step 3: Resale channel
        state.ota = classify(state.snapshot)

        # Step 4: Availability, before any write
        if plan.needs_availability:
            state.slot = self._find_slot(state)

        # Step 5: Write strategies
        ctx = ChangeContext(
            request=request,
            snapshot=state.snapshot,
            ota=state.ota,
            budget=state.budget,
            slot=state.slot,
        )
        return self._run_strategies(state, plan, ctx)

    def _validate(self, request: ChangeRequest) -> None:
        if request.change_type == ChangeType.RESCHEDULE:
            new_date = request.new_date
            if new_date is None:
                raise _RunFailed(FailureKind.VALIDATION, "newDate must be a YYYY-MM-DD date")
            today = operator_today(self._settings.operator_timezone, self._clock())
            if new_date < today:
                raise _RunFailed(
                    FailureKind.VALIDATION,
                    f"Cannot reschedule to {new_date.isoformat()}: "
                    f"date is in the past (today is {today.isoformat()})",
                )
        elif request.change_type == ChangeType.CHANGE_PICKUP:
            if request.new_pickup_place_id is None:
                raise _RunFailed(FailureKind.VALIDATION, "newPickupPlaceId is required")

    def _load_snapshot(self, state: _RunState) -> BookingSnapshot:
        request = state.request
        try:
            booking = self._legacy.get(request.booking_id, timeout=state.budget.timeout())
            return snapshot_from_legacy(booking, request.parameters.get("productBookingId"))
        except (BookingNotFoundError, UpstreamNotFoundError):
            raise _RunFailed(
                FailureKind.NOT_FOUND, f"Booking {request.booking_id} not found"
            ) from None
        except ValueError as e:
            raise _RunFailed(FailureKind.NOT_FOUND, str(e)) from e
        except UpstreamError as e:
            raise _RunFailed(_upstream_kind(e), f"Could not load booking: {e}") from e

    def _reject_no_op(self, request: ChangeRequest, snapshot: BookingSnapshot) -> None:
        if (
            request.change_type == ChangeType.RESCHEDULE
            and snapshot.current_date is not None
            and snapshot.current_date == request.new_date
        ):
            raise _RunFailed(
                FailureKind.VALIDATION,
                f"Booking is already on {snapshot.current_date.isoformat()}",
            )
        if (
            request.change_type == ChangeType.CHANGE_PICKUP
            and snapshot.current_pickup_place_id == request.new_pickup_place_id
        ):
            raise _RunFailed(
                FailureKind.VALIDATION,
                "Booking already uses that pickup location",
            )

    def _find_slot(self, state: _RunState) -> AvailabilitySlot:
        snapshot = state.snapshot
        try:
            return self._resolver.find_availability(
                snapshot.product_id,
                snapshot.option_id,
                state.request.new_date,
                budget=state.budget,
            )
        except NoAvailabilityError as e:
            raise _RunFailed(FailureKind.NO_AVAILABILITY, str(e)) from e
        except UpstreamError as e:
            raise _RunFailed(_upstream_kind(e), f"Could not check availability: {e}") from e

    def _run_strategies(
        self, state: _RunState, plan: ChangePlan, ctx: ChangeContext
    ) -> tuple[ChangeStatus, dict[str, Any]]:
        last_error: UpstreamError | None = None
        last_method: str | None = None

        for strategy in plan.strategies:
            if state.budget.exhausted:
                raise _RunFailed(
                    FailureKind.BUDGET_EXHAUSTED,
                    f"Ran out of time before {strategy.method}. {MANUAL_ACTION_MESSAGE}",
                    method=last_method,
                )
            if strategy.destructive and state.ota.is_ota:
                logger.info(
                    "destructive fallback skipped for resold booking",
                    extra={
                        "extra_fields": safe_log_context(
                            change_request_id=state.request.id, ota_name=state.ota.ota_name
                        )
                    },
                )
                break

            try:
                result = strategy.apply(ctx)
            except StrategyNotApplicable as e:
                logger.info(
                    "strategy not applicable",
                    extra={
                        "extra_fields": safe_log_context(
                            change_request_id=state.request.id,
                            method=strategy.method,
                            reason=str(e),
                        )
                    },
                )
                continue
            except DestructivePartialFailure as e:
                self._record(
                    state,
                    method=strategy.method,
                    success=False,
                    error=str(e),
                    original_data=e.before_state,
                )
                self._escalate(state, strategy.method, e)
                raise _RunFailed(
                    FailureKind.DESTRUCTIVE_PARTIAL, str(e), method=strategy.method
                ) from e
            except UpstreamError as e:
                last_error, last_method = e, strategy.method
                self._record(state, method=strategy.method, success=False, error=str(e))
                logger.warning(
                    "strategy failed",
                    extra={
                        "extra_fields": safe_log_context(
                            change_request_id=state.request.id,
                            method=strategy.method,
                            api=e.api,
                            status=e.status_code,
                        )
                    },
                )
                if state.ota.is_ota and isinstance(e, UpstreamAuthError):
                    break
                continue

            self._record(state, method=strategy.method, success=True, new_data=result.new_data)
            return ChangeStatus.COMPLETED, {
                **self._booking_fields(state),
                "method": strategy.method,
                "result_message": result.message,
                "details": {"before": self._original_data(state), "after": result.new_data},
            }

        if state.ota.is_ota:
            raise _RunFailed(
                FailureKind.OTA_RESTRICTED,
                guidance_message(state.ota, _CHANGE_LABELS[state.request.change_type]),
                method=last_method,
            )
        if last_error is not None:
            raise _RunFailed(
                _upstream_kind(last_error),
                f"{last_error}. {MANUAL_ACTION_MESSAGE}",
                method=last_method,
            )
        raise _RunFailed(
            FailureKind.GENERIC,
            f"No change method applies to this booking. {MANUAL_ACTION_MESSAGE}",
        )

    # ------------------------------------------------------------------
    # Side effects
    # ------------------------------------------------------------------

    def _record(
        self,
        state: _RunState,
        *,
        method: str | None,
        success: bool,
        error: str | None = None,
        original_data: dict[str, Any] | None = None,
        new_data: dict[str, Any] | None = None,
    ) -> None:
        request = state.request
        state.attempts += 1
        self._action_log.append(
            ActionLogEntry(
                booking_id=request.booking_id,
                action=request.change_type.action_name,
                performed_by=request.requested_by,
                performed_at=self._clock(),
                success=success,
                method=method,
                original_data=(
                    original_data if original_data is not None else self._original_data(state)
                ),
                new_data=new_data if new_data is not None else self._intended_data(state),
                error_message=error,
                change_request_id=request.id,
                confirmation_code=(
                    state.snapshot.confirmation_code if state.snapshot else request.confirmation_code
                )
                or None,
                is_ota_booking=state.ota.is_ota,
                ota_name=state.ota.ota_name,
            )
        )

    def _escalate(
        self, state: _RunState, method: str, error: DestructivePartialFailure
    ) -> None:
        request = state.request
        logger.error(
            "booking cancelled but not rebooked",
            extra={
                "extra_fields": safe_log_context(
                    change_request_id=request.id,
                    booking_id=request.booking_id,
                    method=method,
                )
            },
        )
        try:
            self._escalations.escalate(
                event_type=CHANGE_REQUEST_ESCALATED,
                change_request_id=request.id,
                payload={
                    "change_request_id": request.id,
                    "booking_id": request.booking_id,
                    "method": method,
                    "error": str(error),
                    "requested_by": request.requested_by,
                    "before_state": error.before_state,
                },
                correlation_id=get_correlation_id() or None,
            )
        except Exception:
            # Before-state is already in the action log
            logger.exception(
                "escalation could not be written",
                extra={"extra_fields": safe_log_context(change_request_id=request.id)},
            )

    def _finish(
        self, state: _RunState, status: ChangeStatus, fields: dict[str, Any]
    ) -> ChangeRequest:
        finished = self._ledger.update_status(state.request.id, status, fields)
        logger.info(
            "change request finished",
            extra={
                "extra_fields": safe_log_context(
                    change_request_id=finished.id,
                    status=finished.status.value,
                    method=finished.method,
                    failure_kind=finished.failure_kind.value if finished.failure_kind else None,
                )
            },
        )
        return finished

    # ------------------------------------------------------------------
    # Field builders
    # ------------------------------------------------------------------

    def _booking_fields(self, state: _RunState) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "is_ota_booking": state.ota.is_ota,
            "ota_name": state.ota.ota_name,
            "ota_portal_url": state.ota.portal_url,
        }
        if state.snapshot is not None:
            fields["customer_name"] = state.snapshot.customer_name
        return fields

    def _failure_fields(self, state: _RunState, failure: _RunFailed) -> dict[str, Any]:
        return {
            **self._booking_fields(state),
            "method": failure.method,
            "error_message": str(failure),
            "failure_kind": failure.kind,
        }

    def _original_data(self, state: _RunState) -> dict[str, Any]:
        snapshot = state.snapshot
        if snapshot is None:
            return {}
        change_type = state.request.change_type
        if change_type == ChangeType.RESCHEDULE:
            return {"date": _iso(snapshot.current_date)}
        if change_type == ChangeType.CHANGE_PICKUP:
            return {"pickupPlaceId": snapshot.current_pickup_place_id}
        return {"confirmationCode": snapshot.confirmation_code, "date": _iso(snapshot.current_date)}

    def _intended_data(self, state: _RunState) -> dict[str, Any]:
        request = state.request
        if request.change_type == ChangeType.RESCHEDULE:
            data: dict[str, Any] = {"date": request.parameters.get("newDate")}
            if state.slot is not None:
                data["availabilityId"] = state.slot.availability_id
            return data
        if request.change_type == ChangeType.CHANGE_PICKUP:
            return {"pickupPlaceId": request.new_pickup_place_id}
        return {"status": "cancelled"}


def _upstream_kind(error: UpstreamError) -> FailureKind:
    if error.api == "budget":
        return FailureKind.BUDGET_EXHAUSTED
    return FailureKind.UPSTREAM


def _iso(value: date | None) -> str | None:
    return value.isoformat() if value is not None else None
