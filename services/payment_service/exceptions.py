class PaymentError(Exception):
    """Base class for payment-flow failures surfaced to the caller."""


class InvalidOrderError(PaymentError):
    """The order request is missing required fields (client error)."""


class GatewayUnavailable(PaymentError):
    """The provider could not be reached or did not answer in time."""


class ProviderRejected(PaymentError):
    """The provider answered the create-order call with a non-2xx status."""

    def __init__(self, status_code: int, data, hint: str | None = None):
        super().__init__(f"Provider rejected payment request with HTTP {status_code}")
        self.status_code = status_code
        self.data = data
        self.hint = hint
