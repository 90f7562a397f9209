"""Errors raised at the change request ledger boundary."""


class ChangeValidationError(Exception):
    """Rejected before any upstream call (bad input, past date, ...)."""

    pass


class DuplicateOpenRequestError(Exception):
    """The booking already has a PENDING or PROCESSING change request."""

    def __init__(self, booking_id: str) -> None:
        self.booking_id = booking_id
        super().__init__(
            f"Booking {booking_id} already has a change request in progress"
        )


class ChangeRequestNotFoundError(Exception):
    """No ledger entry with that id."""

    pass


class InvalidTransitionError(Exception):
    """A status write that does not follow PENDING -> PROCESSING -> terminal."""

    pass
