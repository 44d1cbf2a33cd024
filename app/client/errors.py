from enum import Enum


class CheckoutErrorKind(str, Enum):
    AUTH_REDIRECT = "AUTH_REDIRECT"
    UNAUTHORIZED = "UNAUTHORIZED"
    ANTIFORGERY = "ANTIFORGERY"
    NON_JSON = "NON_JSON"
    API_ERROR = "API_ERROR"
    NO_CLIENT_SECRET = "NO_CLIENT_SECRET"
    NO_PRODUCT = "NO_PRODUCT"
    CANCELLED = "CANCELLED"
    TIMEOUT = "TIMEOUT"
    NETWORK = "NETWORK"
    PROVIDER = "PROVIDER"

    @property
    def needs_login(self) -> bool:
        return self in (CheckoutErrorKind.AUTH_REDIRECT, CheckoutErrorKind.UNAUTHORIZED)


class CheckoutError(Exception):
    """A failed checkout attempt. Match on .kind; .message carries the server text for API_ERROR."""

    def __init__(self, kind: CheckoutErrorKind, message: str | None = None):
        self.kind = kind
        self.message = message or kind.value
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"CheckoutError({self.kind.value}, {self.message!r})"
