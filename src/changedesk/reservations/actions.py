"""Legacy booking API action descriptors.

Each action carries only the fields it needs and is turned into the wire
format by `to_wire()` at the client boundary. Line-item actions are
addressed by the product booking id, never the parent booking id.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, ClassVar, Union


def wire_id(value: str | int) -> int | str:
    """Numeric ids go over the wire as numbers."""
    text = str(value).strip()
    return int(text) if text.isdigit() else text


@dataclass(frozen=True)
class ChangeDateAction:
    activity_booking_id: str
    new_date: date
    start_time_id: str | None = None

    type: ClassVar[str] = "ActivityChangeDateAction"

    def to_wire(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "type": self.type,
            "activityBookingId": wire_id(self.activity_booking_id),
            "date": self.new_date.isoformat(),
        }
        if self.start_time_id:
            body["startTimeId"] = wire_id(self.start_time_id)
        return body


@dataclass(frozen=True)
class PickupAction:
    activity_booking_id: str
    pickup_place_id: str
    description: str = ""

    type: ClassVar[str] = "PickupAction"

    def to_wire(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "activityBookingId": wire_id(self.activity_booking_id),
            "pickup": True,
            "pickupPlaceId": wire_id(self.pickup_place_id),
            "description": self.description,
        }


@dataclass(frozen=True)
class CancelAction:
    """Whole-booking cancel, addressed by confirmation code."""

    confirmation_code: str
    note: str = ""
    notify: bool = False
    refund: bool = False

    type: ClassVar[str] = "CancelAction"

    def to_wire(self) -> dict[str, Any]:
        return {"note": self.note, "notify": self.notify, "refund": self.refund}


LegacyAction = Union[ChangeDateAction, PickupAction, CancelAction]
