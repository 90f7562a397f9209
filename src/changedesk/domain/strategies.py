"""Write strategies for applying a booking change upstream.

Each strategy either applies the change and returns a StrategyResult, or
raises:
- StrategyNotApplicable: preconditions not met, nothing was attempted
- UpstreamError: the attempt failed, nothing was changed
- DestructivePartialFailure: part of a destructive sequence succeeded
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from changedesk.observability.logging import get_logger
from changedesk.observability.redaction import safe_log_context
from changedesk.reservations.actions import CancelAction, ChangeDateAction, PickupAction
from changedesk.reservations.budget import RunBudget
from changedesk.reservations.errors import UpstreamError
from changedesk.reservations.legacy import LegacyReservationClient
from changedesk.reservations.standard import StandardReservationClient

from .models import AvailabilitySlot, BookingSnapshot, ChangeRequest, ChangeType, OTAInfo

logger = get_logger(__name__)


class StrategyNotApplicable(Exception):
    """The strategy cannot run for this booking; try the next one."""

    pass


class DestructivePartialFailure(Exception):
    """The cancel half of cancel-then-rebook succeeded but the rebook did not.

    Attributes:
        before_state: Full pre-cancel booking state for manual recreation.
        cancel_result: What the upstream returned for the cancel.
    """

    def __init__(
        self, message: str, *, before_state: dict[str, Any], cancel_result: Any
    ) -> None:
        self.before_state = before_state
        self.cancel_result = cancel_result
        super().__init__(message)


@dataclass(frozen=True)
class ChangeContext:
    """Everything a strategy may look at. Built fresh for every run."""

    request: ChangeRequest
    snapshot: BookingSnapshot
    ota: OTAInfo
    budget: RunBudget
    slot: AvailabilitySlot | None = None


@dataclass(frozen=True)
class StrategyResult:
    message: str
    new_data: dict[str, Any] = field(default_factory=dict)


class Strategy(Protocol):
    method: str
    destructive: bool

    def apply(self, ctx: ChangeContext) -> StrategyResult: ...


def _find_standard_booking(
    standard: StandardReservationClient, ctx: ChangeContext
) -> str:
    """UUID of the standard-API resource mirroring the booking.

    Raises:
        StrategyNotApplicable: If there is none (or it cannot be looked up).
    """
    try:
        booking_uuid = standard.find_booking_uuid(
            supplier_reference=ctx.snapshot.booking_id,
            reseller_reference=ctx.request.confirmation_code or ctx.snapshot.confirmation_code,
            timeout=ctx.budget.timeout(),
        )
    except UpstreamError as e:
        logger.warning(
            "standard booking lookup failed",
            extra={
                "extra_fields": safe_log_context(
                    booking_id=ctx.snapshot.booking_id, error=str(e)
                )
            },
        )
        raise StrategyNotApplicable(f"standard booking lookup failed: {e}") from e
    if booking_uuid is None:
        raise StrategyNotApplicable("booking has no standard API resource")
    return booking_uuid


class StandardAvailabilityPatch:
    """Move the standard-API booking to the new availability slot.

    The only atomic reschedule path.
    """

    method = "standard_availability_patch"
    destructive = False

    def __init__(self, standard: StandardReservationClient) -> None:
        self._standard = standard

    def apply(self, ctx: ChangeContext) -> StrategyResult:
        booking_uuid = _find_standard_booking(self._standard, ctx)
        self._standard.patch(
            booking_uuid,
            {"availabilityId": ctx.slot.availability_id},
            timeout=ctx.budget.timeout(),
        )
        new_date = ctx.slot.local_date.isoformat()
        return StrategyResult(
            message=f"Booking rescheduled to {new_date} via standard API",
            new_data={
                "date": new_date,
                "availabilityId": ctx.slot.availability_id,
                "standardBookingUuid": booking_uuid,
            },
        )


class LegacyChangeDate:
    """Change-date action on the legacy API, addressed by line item."""

    method = "legacy_change_date_action"
    destructive = False

    def __init__(self, legacy: LegacyReservationClient) -> None:
        self._legacy = legacy

    def _start_time_id(self, ctx: ChangeContext) -> str | None:
        try:
            return self._legacy.start_time_id(
                ctx.snapshot.product_id, ctx.request.new_date, timeout=ctx.budget.timeout()
            )
        except UpstreamError as e:
            # The action is still valid without a start time
            logger.warning(
                "legacy start time lookup failed",
                extra={
                    "extra_fields": safe_log_context(
                        product_id=ctx.snapshot.product_id, error=str(e)
                    )
                },
            )
            return None

    def apply(self, ctx: ChangeContext) -> StrategyResult:
        if not ctx.snapshot.product_booking_id:
            raise StrategyNotApplicable("booking has no line-item id")

        new_date = ctx.request.new_date
        start_time_id = self._start_time_id(ctx)
        action = ChangeDateAction(
            activity_booking_id=ctx.snapshot.product_booking_id,
            new_date=new_date,
            start_time_id=start_time_id,
        )
        self._legacy.act(action, timeout=ctx.budget.timeout())
        return StrategyResult(
            message=f"Booking rescheduled to {new_date.isoformat()} via change-date action",
            new_data={
                "date": new_date.isoformat(),
                "activityBookingId": ctx.snapshot.product_booking_id,
                "startTimeId": start_time_id,
            },
        )


class CancelThenRebook:
    """Last resort: cancel the legacy booking, then book the new slot.

    Cannot be rolled back once the cancel lands. A failed rebook raises
    DestructivePartialFailure carrying the full before-state.
    """

    method = "cancel_rebook"
    destructive = True

    def __init__(
        self, legacy: LegacyReservationClient, standard: StandardReservationClient
    ) -> None:
        self._legacy = legacy
        self._standard = standard

    def _rebook_body(self, ctx: ChangeContext) -> dict[str, Any]:
        slot = ctx.slot
        return {
            "productId": slot.product_id,
            "optionId": slot.option_id,
            "availabilityId": slot.availability_id,
            "unitItems": [{"unitId": slot.default_unit_id}] * max(1, ctx.snapshot.participants),
            "notes": (
                f"Rebooked from {ctx.snapshot.confirmation_code} "
                f"(change request {ctx.request.id})"
            ),
        }

    def _contact(self, ctx: ChangeContext) -> dict[str, Any]:
        customer = ctx.snapshot.raw.get("customer") or {}
        return {
            "contact": {
                "fullName": ctx.snapshot.customer_name,
                "firstName": customer.get("firstName"),
                "lastName": customer.get("lastName"),
                "emailAddress": customer.get("email"),
                "phoneNumber": customer.get("phoneNumber"),
            }
        }

    def apply(self, ctx: ChangeContext) -> StrategyResult:
        # Refuse before cancelling if the rebook could never be built
        if ctx.slot is None or not ctx.slot.default_unit_id:
            raise StrategyNotApplicable("no standard unit mapping to rebook with")
        if not ctx.snapshot.confirmation_code:
            raise StrategyNotApplicable("booking has no confirmation code to cancel")

        before_state = ctx.snapshot.before_state()
        new_date = ctx.slot.local_date.isoformat()

        cancel_result = self._legacy.act(
            CancelAction(
                confirmation_code=ctx.snapshot.confirmation_code,
                note=f"Cancelled for rebooking on {new_date} (change request {ctx.request.id})",
            ),
            timeout=ctx.budget.timeout(),
        )

        try:
            created = self._standard.create_booking(
                self._rebook_body(ctx), timeout=ctx.budget.timeout()
            )
            new_uuid = str(created["uuid"])
            self._standard.confirm_booking(
                new_uuid, self._contact(ctx), timeout=ctx.budget.timeout()
            )
        except Exception as e:
            raise DestructivePartialFailure(
                f"Booking {ctx.snapshot.booking_id} was CANCELLED but rebooking on "
                f"{new_date} failed: {e}. Recreate the booking manually.",
                before_state=before_state,
                cancel_result=cancel_result,
            ) from e

        return StrategyResult(
            message=f"Booking cancelled and rebooked on {new_date} (new booking {new_uuid})",
            new_data={
                "date": new_date,
                "availabilityId": ctx.slot.availability_id,
                "newBookingUuid": new_uuid,
                "cancelledConfirmationCode": ctx.snapshot.confirmation_code,
            },
        )


class LegacyPickupChange:
    method = "legacy_pickup_action"
    destructive = False

    def __init__(self, legacy: LegacyReservationClient) -> None:
        self._legacy = legacy

    def apply(self, ctx: ChangeContext) -> StrategyResult:
        if not ctx.snapshot.product_booking_id:
            raise StrategyNotApplicable("booking has no line-item id")

        place_id = ctx.request.new_pickup_place_id
        description = str(ctx.request.parameters.get("pickupDescription") or "")
        self._legacy.act(
            PickupAction(
                activity_booking_id=ctx.snapshot.product_booking_id,
                pickup_place_id=place_id,
                description=description,
            ),
            timeout=ctx.budget.timeout(),
        )
        return StrategyResult(
            message=f"Pickup location changed to {description or place_id}",
            new_data={
                "pickupPlaceId": place_id,
                "activityBookingId": ctx.snapshot.product_booking_id,
            },
        )


class StandardCancel:
    method = "standard_cancel"
    destructive = False

    def __init__(self, standard: StandardReservationClient) -> None:
        self._standard = standard

    def apply(self, ctx: ChangeContext) -> StrategyResult:
        booking_uuid = _find_standard_booking(self._standard, ctx)
        self._standard.cancel(
            booking_uuid, ctx.request.reason or "Cancelled by staff", timeout=ctx.budget.timeout()
        )
        return StrategyResult(
            message="Booking cancelled via standard API",
            new_data={"status": "cancelled", "standardBookingUuid": booking_uuid},
        )


class LegacyCancel:
    method = "legacy_cancel"
    destructive = False

    def __init__(self, legacy: LegacyReservationClient) -> None:
        self._legacy = legacy

    def apply(self, ctx: ChangeContext) -> StrategyResult:
        if not ctx.snapshot.confirmation_code:
            raise StrategyNotApplicable("booking has no confirmation code")
        self._legacy.act(
            CancelAction(
                confirmation_code=ctx.snapshot.confirmation_code,
                note=ctx.request.reason or "Cancelled by staff",
            ),
            timeout=ctx.budget.timeout(),
        )
        return StrategyResult(
            message="Booking cancelled",
            new_data={"status": "cancelled", "confirmationCode": ctx.snapshot.confirmation_code},
        )


@dataclass(frozen=True)
class ChangePlan:
    """Ordered strategies for one change type."""

    strategies: tuple[Strategy, ...]
    needs_availability: bool = False


def build_plans(
    legacy: LegacyReservationClient, standard: StandardReservationClient
) -> dict[ChangeType, ChangePlan]:
    return {
        ChangeType.RESCHEDULE: ChangePlan(
            strategies=(
                StandardAvailabilityPatch(standard),
                LegacyChangeDate(legacy),
                CancelThenRebook(legacy, standard),
            ),
            needs_availability=True,
        ),
        ChangeType.CANCEL: ChangePlan(
            strategies=(StandardCancel(standard), LegacyCancel(legacy)),
        ),
        ChangeType.CHANGE_PICKUP: ChangePlan(
            strategies=(LegacyPickupChange(legacy),),
        ),
    }
