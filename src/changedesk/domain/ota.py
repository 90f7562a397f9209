"""Resale channel (OTA) detection.

Bookings resold through a travel marketplace cannot be changed through
either reservation API. Detecting them lets staff be sent to the right
supplier portal instead of seeing a bare authorization error.

Pure and side-effect free; safe to call any number of times per run.
"""

from __future__ import annotations

from dataclasses import dataclass

from .models import NOT_OTA, BookingSnapshot, OTAInfo


@dataclass(frozen=True)
class _Channel:
    name: str
    reference_markers: tuple[str, ...]
    code_prefix: str
    portal_url: str
    instructions: str


# First match wins
KNOWN_CHANNELS: tuple[_Channel, ...] = (
    _Channel(
        name="Viator",
        reference_markers=("viator",),
        code_prefix="VIA-",
        portal_url="https://supplier.viator.com/",
        instructions="Log into Viator Supplier Portal > Bookings > Find by reference > Modify",
    ),
    _Channel(
        name="GetYourGuide",
        reference_markers=("gyg", "getyourguide"),
        code_prefix="GYG-",
        portal_url="https://supplier.getyourguide.com/",
        instructions="Log into GYG Supplier Portal > Bookings > Find by reference > Request change",
    ),
    _Channel(
        name="TourDesk",
        reference_markers=("tdi", "tourdesk"),
        code_prefix="TDI-",
        portal_url="https://tourdesk.io/",
        instructions="Contact TourDesk support or log into their portal to modify",
    ),
    _Channel(
        name="Expedia",
        reference_markers=("expedia",),
        code_prefix="EXP-",
        portal_url="https://www.expediapartnercentral.com/",
        instructions="Log into Expedia Partner Central > Reservations > Modify",
    ),
)


def classify(snapshot: BookingSnapshot) -> OTAInfo:
    """Decide whether a booking was resold through a known channel.

    Matches the external booking reference (case-insensitive substring) and
    the confirmation-code prefix against KNOWN_CHANNELS. Unknown patterns
    are not OTA.
    """
    reference = snapshot.external_booking_reference.lower()
    code = snapshot.confirmation_code.upper()

    for channel in KNOWN_CHANNELS:
        if any(marker in reference for marker in channel.reference_markers) or code.startswith(
            channel.code_prefix
        ):
            return OTAInfo(
                is_ota=True,
                ota_name=channel.name,
                portal_url=channel.portal_url,
                instructions=channel.instructions,
            )

    return NOT_OTA


def guidance_message(ota: OTAInfo, change_type_label: str) -> str:
    """Staff-facing message pointing at the channel's manual portal."""
    return (
        f"{ota.ota_name} booking cannot be changed ({change_type_label}) through the "
        f"reservation API. Use the {ota.ota_name} portal: {ota.portal_url}. {ota.instructions}"
    )
