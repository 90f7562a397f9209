"""Change desk domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any


class ChangeType(str, Enum):
    RESCHEDULE = "RESCHEDULE"
    CANCEL = "CANCEL"
    CHANGE_PICKUP = "CHANGE_PICKUP"

    @property
    def action_name(self) -> str:
        """Name used for the action log `action` column."""
        return _ACTION_NAMES[self]


_ACTION_NAMES = {
    ChangeType.RESCHEDULE: "reschedule",
    ChangeType.CANCEL: "cancel",
    ChangeType.CHANGE_PICKUP: "change_pickup",
}


class ChangeStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# The only edges a ledger entry may travel
ALLOWED_TRANSITIONS: dict[ChangeStatus, frozenset[ChangeStatus]] = {
    ChangeStatus.PENDING: frozenset({ChangeStatus.PROCESSING}),
    ChangeStatus.PROCESSING: frozenset({ChangeStatus.COMPLETED, ChangeStatus.FAILED}),
    ChangeStatus.COMPLETED: frozenset(),
    ChangeStatus.FAILED: frozenset(),
}


def parse_new_date(raw: object) -> date | None:
    """Parse a `newDate` parameter. None unless it is a YYYY-MM-DD string."""
    if not isinstance(raw, str) or not raw:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError:
        return None


class FailureKind(str, Enum):
    """Why a change request ended FAILED, ordered roughly by actionability."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    NO_AVAILABILITY = "no_availability"
    OTA_RESTRICTED = "ota_restricted"
    UPSTREAM = "upstream"
    BUDGET_EXHAUSTED = "budget_exhausted"
    DESTRUCTIVE_PARTIAL = "destructive_partial"
    GENERIC = "generic"


@dataclass(frozen=True)
class NewChangeRequest:
    """What an inbound collaborator (UI, inbox) hands to the ledger."""

    booking_id: str
    confirmation_code: str
    change_type: ChangeType
    parameters: dict[str, Any]
    requested_by: str


@dataclass(frozen=True)
class ChangeRequest:
    """A request ledger entry.

    `parameters` is fixed at creation. Outcome fields are filled in by the
    orchestrator only.
    """

    id: str
    booking_id: str
    confirmation_code: str
    change_type: ChangeType
    parameters: dict[str, Any]
    requested_by: str
    status: ChangeStatus
    created_at: datetime
    processing_started_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    method: str | None = None
    result_message: str | None = None
    error_message: str | None = None
    failure_kind: FailureKind | None = None
    is_ota_booking: bool = False
    ota_name: str | None = None
    ota_portal_url: str | None = None
    customer_name: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def new_date(self) -> date | None:
        return parse_new_date(self.parameters.get("newDate"))

    @property
    def new_pickup_place_id(self) -> str | None:
        raw = self.parameters.get("newPickupPlaceId")
        return str(raw) if raw not in (None, "") else None

    @property
    def reason(self) -> str:
        return str(self.parameters.get("reason") or "")

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the public API, using the ledger's camelCase names."""
        return {
            "id": self.id,
            "bookingId": self.booking_id,
            "confirmationCode": self.confirmation_code,
            "changeType": self.change_type.value,
            "parameters": dict(self.parameters),
            "requestedBy": self.requested_by,
            "status": self.status.value,
            "method": self.method,
            "resultMessage": self.result_message,
            "errorMessage": self.error_message,
            "failureKind": self.failure_kind.value if self.failure_kind else None,
            "isOTABooking": self.is_ota_booking,
            "otaName": self.ota_name,
            "otaPortalUrl": self.ota_portal_url,
            "customerName": self.customer_name,
            "details": dict(self.details),
            "createdAt": _iso(self.created_at),
            "processingStartedAt": _iso(self.processing_started_at),
            "completedAt": _iso(self.completed_at),
            "failedAt": _iso(self.failed_at),
        }


@dataclass(frozen=True)
class BookingSnapshot:
    """Read-through view of one booking line item, fetched fresh per run.

    `product_booking_id` is the line-item id; per-item actions must use it
    rather than `booking_id`.
    """

    booking_id: str
    confirmation_code: str
    external_booking_reference: str
    product_id: str
    product_booking_id: str
    option_id: str
    current_date: date | None
    current_pickup_place_id: str | None
    customer_name: str
    participants: int = 1
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    def before_state(self) -> dict[str, Any]:
        """Everything a human needs to recreate the booking by hand."""
        return {
            "bookingId": self.booking_id,
            "confirmationCode": self.confirmation_code,
            "externalBookingReference": self.external_booking_reference,
            "productId": self.product_id,
            "productBookingId": self.product_booking_id,
            "optionId": self.option_id,
            "date": _iso(self.current_date),
            "pickupPlaceId": self.current_pickup_place_id,
            "customerName": self.customer_name,
            "participants": self.participants,
            "upstreamBooking": self.raw,
        }


@dataclass(frozen=True)
class OTAInfo:
    is_ota: bool
    ota_name: str | None = None
    portal_url: str | None = None
    instructions: str | None = None


NOT_OTA = OTAInfo(is_ota=False)


@dataclass(frozen=True)
class AvailabilitySlot:
    """An open slot on the standard API, usable as an availability reference."""

    availability_id: str
    product_id: str
    option_id: str
    local_date: date
    default_unit_id: str | None = None


@dataclass(frozen=True)
class ActionLogEntry:
    """Append-only audit row, one per attempted mutation."""

    booking_id: str
    action: str
    performed_by: str
    performed_at: datetime
    success: bool
    method: str | None
    original_data: dict[str, Any] = field(default_factory=dict)
    new_data: dict[str, Any] = field(default_factory=dict)
    error_message: str | None = None
    change_request_id: str | None = None
    confirmation_code: str | None = None
    is_ota_booking: bool = False
    ota_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "bookingId": self.booking_id,
            "action": self.action,
            "performedBy": self.performed_by,
            "performedAt": _iso(self.performed_at),
            "success": self.success,
            "method": self.method,
            "originalData": self.original_data,
            "newData": self.new_data,
            "errorMessage": self.error_message,
            "changeRequestId": self.change_request_id,
            "confirmationCode": self.confirmation_code,
            "isOTABooking": self.is_ota_booking,
            "otaName": self.ota_name,
        }


def _iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
