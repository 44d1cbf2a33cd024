"""Collaborators of the checkout manager: the provider's embedded widget and the page UI."""

from abc import ABC, abstractmethod
from typing import Awaitable, Callable

FetchClientSecret = Callable[[], Awaitable[str]]


class EmbeddedCheckout(ABC):
    @abstractmethod
    async def mount(self, container: str) -> None:
        """Render into container; calls fetch_client_secret, possibly more than once."""
        ...

    @abstractmethod
    async def unmount(self) -> None:
        ...


class EmbeddedCheckoutProvider(ABC):
    @abstractmethod
    async def init_embedded_checkout(self, fetch_client_secret: FetchClientSecret) -> EmbeddedCheckout:
        ...


class CheckoutUI(ABC):
    @abstractmethod
    def show_overlay(self) -> None:
        ...

    @abstractmethod
    def hide_overlay(self) -> None:
        ...

    @abstractmethod
    def show_modal(self) -> None:
        ...

    @abstractmethod
    def hide_modal(self) -> None:
        ...

    @abstractmethod
    def clear_container(self) -> None:
        ...

    @abstractmethod
    def alert(self, message: str) -> None:
        ...

    @abstractmethod
    def redirect_to_login(self) -> None:
        ...
