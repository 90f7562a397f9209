"""Availability resolution against the standard booking API.

The two upstream APIs number products differently. The standard API's
product list is searched for the legacy product id to find the matching
product/option/unit, and availability is then queried with those ids.
Nothing is cached: availability is re-queried on every run.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any

from changedesk.observability.logging import get_logger
from changedesk.observability.redaction import safe_log_context
from changedesk.reservations.budget import RunBudget
from changedesk.reservations.errors import UpstreamError
from changedesk.reservations.standard import StandardReservationClient

from .models import AvailabilitySlot

logger = get_logger(__name__)


class NoAvailabilityError(Exception):
    """No open slot on the requested date. Expected; staff should pick another date."""

    def __init__(self, on_date: date) -> None:
        self.on_date = on_date
        super().__init__(f"No availability found for {on_date.isoformat()}. Please pick another date.")


@dataclass(frozen=True)
class ProductReference:
    """Standard-API identifiers for a legacy product."""

    product_id: str
    option_id: str
    default_unit_id: str | None
    matched: bool


def resolve_product(
    products: list[dict[str, Any]],
    legacy_product_id: str,
    legacy_option_id: str | None = None,
) -> ProductReference:
    """Map a legacy product (and option) onto the standard product list.

    A product matches when its `id` or `reference` equals the legacy id.
    Within it, the option whose id equals `legacy_option_id` is preferred,
    otherwise the first option. Without a match the legacy ids are used
    unchanged.
    """
    wanted = str(legacy_product_id)
    for product in products:
        if wanted not in (str(product.get("id")), str(product.get("reference"))):
            continue
        options = product.get("options") or []
        option = next(
            (o for o in options if legacy_option_id and str(o.get("id")) == str(legacy_option_id)),
            options[0] if options else None,
        )
        units = (option or {}).get("units") or []
        return ProductReference(
            product_id=str(product.get("id")),
            option_id=str(option.get("id")) if option else str(legacy_option_id or wanted),
            default_unit_id=str(units[0]["id"]) if units else None,
            matched=True,
        )

    return ProductReference(
        product_id=wanted,
        option_id=str(legacy_option_id or wanted),
        default_unit_id=None,
        matched=False,
    )


class AvailabilityResolver:
    """Finds an open standard-API slot for a legacy product on a date."""

    def __init__(self, standard: StandardReservationClient) -> None:
        self._standard = standard

    def find_availability(
        self,
        product_id: str,
        option_id: str | None,
        on_date: date,
        *,
        budget: RunBudget | None = None,
    ) -> AvailabilitySlot:
        """Return the first open slot for the product on `on_date`.

        Raises:
            NoAvailabilityError: If the upstream returns zero slots.
            UpstreamError: If the availability query itself fails.
        """
        try:
            products = self._standard.list_products(timeout=_timeout(budget))
        except UpstreamError as e:
            # Availability can still be queried with the legacy ids
            logger.warning(
                "standard product list unavailable, using legacy ids",
                extra={"extra_fields": safe_log_context(product_id=product_id, error=str(e))},
            )
            products = []

        reference = resolve_product(products, product_id, option_id)

        slots = self._standard.availability(
            reference.product_id,
            reference.option_id,
            on_date,
            timeout=_timeout(budget),
        )
        open_slots = [s for s in slots if _is_open(s)]
        if not open_slots:
            raise NoAvailabilityError(on_date)

        first = open_slots[0]
        return AvailabilitySlot(
            availability_id=str(first["id"]),
            product_id=reference.product_id,
            option_id=reference.option_id,
            local_date=on_date,
            default_unit_id=reference.default_unit_id,
        )


def _is_open(slot: dict[str, Any]) -> bool:
    if not slot.get("id"):
        return False
    # Slots without a status field are treated as bookable
    return slot.get("available", True) is not False and slot.get("status") not in (
        "SOLD_OUT",
        "CLOSED",
    )


def _timeout(budget: RunBudget | None) -> float | None:
    return budget.timeout() if budget is not None else None
