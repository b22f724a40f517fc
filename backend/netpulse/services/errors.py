"""Exception hierarchy shared by the subscription lifecycle services."""

from __future__ import annotations


class NetpulseError(RuntimeError):
    """Base class for domain errors raised by the services package."""


class NotFoundError(NetpulseError):
    """A client, credential, package or payment record does not exist."""


class ConfigurationError(NetpulseError):
    """A collaborator client cannot be built from the current environment."""


class GatewayError(NetpulseError):
    """The mobile-money gateway rejected or could not process a request."""


class GatewayTransientError(GatewayError):
    """Temporary gateway or transport failure. Polling treats it as pending."""


class SyncPushFailure(NetpulseError):
    """The access server did not acknowledge a provisioning push."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class InsufficientBalanceError(NetpulseError):
    """The wallet does not cover the monthly rate."""

    def __init__(self, client_id: str, balance, required) -> None:
        super().__init__(
            f"Client {client_id} has balance {balance}, renewal requires {required}"
        )
        self.client_id = client_id
        self.balance = balance
        self.required = required


class DuplicateCallbackError(NetpulseError):
    """A terminal outcome was reported for an already finished monitor."""


class SyncCallbackError(NetpulseError):
    """An access server callback could not be interpreted."""


class CheckoutError(NetpulseError):
    """A checkout could not be initiated."""
