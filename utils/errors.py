"""
Error Types
===========
Every business-rule failure raised by the services.

The API layer maps each class to an HTTP status and a JSON body
`{"error": message}`. The bot loops catch everything, log it and move on.
"""


class SpinnerBotError(Exception):
    """Base class. `status_code` is the HTTP status the API answers with."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(SpinnerBotError):
    """Malformed or out-of-range input."""

    status_code = 400


class NotFoundError(SpinnerBotError):
    """Missing user, bot configuration or transaction."""

    status_code = 404


class InsufficientBalanceError(SpinnerBotError):
    """Wallet balance is below what the operation needs."""

    status_code = 400


class InvalidStateError(SpinnerBotError):
    """Operation not allowed in the bot's current state (e.g. reset while active)."""

    status_code = 400


class UnauthorizedError(SpinnerBotError):
    """Missing bearer token or bad credentials."""

    status_code = 401


class ForbiddenError(SpinnerBotError):
    """Bearer token present but invalid or expired."""

    status_code = 403


class TransferError(SpinnerBotError):
    """A withdrawal could not be sent or confirmed on-chain."""

    status_code = 400


class UpstreamFetchError(SpinnerBotError):
    """Token feed unreachable or returned garbage. Always recovered inside the feed client."""

    status_code = 502


class SimulationError(SpinnerBotError):
    """Reserved for simulated trade failures. The simulator currently always succeeds."""
