"""
Embedded-checkout session manager for the chip store.

Drives the modal that hosts the provider's embedded checkout widget:
open for a product, fetch the client secret from /payment/create-checkout-session,
mount the widget, and tear everything down on close. Every open/close bumps run_id;
a fetch that resolves for an older run is discarded and raises CANCELLED, so a
stale response never mounts a widget.
"""

import asyncio
from enum import Enum

import httpx

from app.client.errors import CheckoutError, CheckoutErrorKind
from app.client.widget import CheckoutUI, EmbeddedCheckout, EmbeddedCheckoutProvider
from app.core.logging import get_logger

log = get_logger(__name__)

CREATE_SESSION_PATH = "/payment/create-checkout-session"
BYPASS_CONFIRM_PATH = "/payment/dev/confirm"
ANTIFORGERY_PATH = "/payment/antiforgery"
LOGIN_PATH = "/account/login"
ANTIFORGERY_HEADER = "RequestVerificationToken"
CHECKOUT_CONTAINER = "#checkout"
SECRET_TIMEOUT_SECONDS = 20.0
GENERIC_ALERT = "Could not start the payment. Please try again."


class CheckoutState(str, Enum):
    IDLE = "Idle"
    OPENING = "Opening"
    AWAITING_SECRET = "AwaitingSecret"
    MOUNTED = "Mounted"
    CLOSING = "Closing"
    CANCELLED = "Cancelled"


class AbortHandle:
    """Cancellation handle for one in-flight client-secret fetch."""

    def __init__(self, task: asyncio.Task):
        self.task = task
        self.reason: str | None = None

    @property
    def aborted(self) -> bool:
        return self.reason is not None

    def abort(self, reason: str) -> None:
        if self.aborted:
            return
        self.reason = reason
        if not self.task.done():
            self.task.cancel()


def _is_json(response: httpx.Response) -> bool:
    return "application/json" in response.headers.get("content-type", "").lower()


async def create_session(client: httpx.AsyncClient, product_id: int, antiforgery_token: str | None) -> str:
    """POST the product to the server and return the checkout client secret."""
    headers = {"Content-Type": "application/json"}
    if antiforgery_token:
        headers[ANTIFORGERY_HEADER] = antiforgery_token
    try:
        response = await client.post(CREATE_SESSION_PATH, json={"productId": int(product_id)}, headers=headers)
    except httpx.HTTPError as e:
        raise CheckoutError(CheckoutErrorKind.NETWORK, str(e)) from e

    if response.history and LOGIN_PATH in response.url.path.lower():
        raise CheckoutError(CheckoutErrorKind.AUTH_REDIRECT)
    if response.is_redirect and LOGIN_PATH in response.headers.get("location", "").lower():
        raise CheckoutError(CheckoutErrorKind.AUTH_REDIRECT)
    if response.status_code == 401:
        raise CheckoutError(CheckoutErrorKind.UNAUTHORIZED)
    if response.status_code in (400, 422):
        log.warning("checkout_antiforgery_rejected", status_code=response.status_code, body=response.text[:500])
        raise CheckoutError(CheckoutErrorKind.ANTIFORGERY)
    if not _is_json(response):
        log.warning("checkout_non_json_response", status_code=response.status_code, body=response.text[:500])
        raise CheckoutError(CheckoutErrorKind.NON_JSON)

    try:
        payload = response.json()
    except ValueError as e:
        raise CheckoutError(CheckoutErrorKind.NON_JSON) from e
    if not isinstance(payload, dict) or not payload.get("success"):
        message = payload.get("message") if isinstance(payload, dict) else None
        raise CheckoutError(CheckoutErrorKind.API_ERROR, message or CheckoutErrorKind.API_ERROR.value)

    data = payload.get("data") or {}
    secret = data.get("clientSecret") or payload.get("clientSecret")
    if not secret:
        raise CheckoutError(CheckoutErrorKind.NO_CLIENT_SECRET)
    return secret


class CheckoutSessionManager:
    """
    Owns the checkout modal for one page.

    At most one fetch is live (the previous one is aborted when a new one starts)
    and at most one widget is mounted. The widget is created through the provider
    for each run and unmounted before the next one mounts.
    """

    def __init__(
        self,
        provider: EmbeddedCheckoutProvider,
        ui: CheckoutUI,
        client: httpx.AsyncClient | None = None,
        base_url: str = "",
        antiforgery_token: str | None = None,
        bypass_enabled: bool = False,
        secret_timeout: float = SECRET_TIMEOUT_SECONDS,
        container: str = CHECKOUT_CONTAINER,
    ):
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(base_url=base_url, follow_redirects=True)
        self.provider = provider
        self.ui = ui
        self.antiforgery_token = antiforgery_token
        self.bypass_enabled = bypass_enabled
        self.secret_timeout = secret_timeout
        self.container = container

        self.run_id = 0
        self.requested_product_id: int | None = None
        self.state = CheckoutState.IDLE
        self._abort: AbortHandle | None = None
        self._checkout: EmbeddedCheckout | None = None
        self._mounted = False
        self._disposed = False

    @property
    def mounted(self) -> bool:
        return self._mounted

    async def refresh_antiforgery(self) -> str:
        """Fetch a fresh antiforgery token; the matching cookie lands in the client's jar."""
        response = await self.client.get(ANTIFORGERY_PATH)
        if response.status_code == 401:
            raise CheckoutError(CheckoutErrorKind.UNAUTHORIZED)
        if not _is_json(response):
            raise CheckoutError(CheckoutErrorKind.NON_JSON)
        self.antiforgery_token = response.json().get("token")
        return self.antiforgery_token

    async def open_checkout(self, product_id: int) -> CheckoutState:
        """
        Open the modal for product_id and mount a fresh widget.

        A failure of the current run tears the modal down, shows one generic alert and
        re-raises the CheckoutError. A run superseded by a later open or close returns
        quietly without touching the UI.
        """
        if self._disposed:
            raise RuntimeError("Checkout manager is disposed")
        self.run_id += 1
        this_run = self.run_id
        self.requested_product_id = product_id
        self.state = CheckoutState.OPENING
        log.info("checkout_open", run_id=this_run, product_id=product_id)

        await self._unmount_if_mounted()
        self._abort_live("NEW_MODAL")
        self.ui.show_overlay()
        self.ui.show_modal()

        checkout: EmbeddedCheckout | None = None
        try:
            checkout = await self.provider.init_embedded_checkout(self.fetch_client_secret)
            self._checkout = checkout
            await checkout.mount(self.container)
        except CheckoutError as err:
            if this_run != self.run_id:
                log.info("checkout_superseded", run_id=this_run, reason=err.kind.value)
                await self._safe_unmount(checkout)
                return self.state
            await self._fail(err)
            raise
        except Exception as e:
            if this_run != self.run_id:
                log.info("checkout_superseded", run_id=this_run, reason="PROVIDER")
                await self._safe_unmount(checkout)
                return self.state
            err = CheckoutError(CheckoutErrorKind.PROVIDER, str(e))
            await self._fail(err)
            raise err from e

        if this_run != self.run_id:
            # mounted after a newer open/close took over
            await self._safe_unmount(checkout)
            return self.state

        self._mounted = True
        self.state = CheckoutState.MOUNTED
        self.ui.hide_overlay()
        log.info("checkout_mounted", run_id=this_run, product_id=product_id)
        return self.state

    async def fetch_client_secret(self) -> str:
        """Client-secret callback handed to the widget."""
        this_run = self.run_id
        product_id = self.requested_product_id
        if product_id is None:
            raise CheckoutError(CheckoutErrorKind.NO_PRODUCT)

        self._abort_live("NEW_ATTEMPT")
        handle = AbortHandle(asyncio.ensure_future(create_session(self.client, product_id, self.antiforgery_token)))
        self._abort = handle
        if not self._mounted:
            # widget retries after mount keep the modal Mounted
            self.state = CheckoutState.AWAITING_SECRET

        done, _ = await asyncio.wait({handle.task}, timeout=self.secret_timeout)
        if self._abort is handle:
            self._abort = None
        if not done:
            handle.abort("TIMEOUT")
            raise CheckoutError(CheckoutErrorKind.TIMEOUT)
        if handle.task.cancelled() or handle.aborted:
            raise CheckoutError(CheckoutErrorKind.CANCELLED, handle.reason)

        secret = handle.task.result()
        if this_run != self.run_id:
            raise CheckoutError(CheckoutErrorKind.CANCELLED, "STALE_RUN")
        return secret

    async def close(self) -> None:
        """Modal closed by the user: cancel the run and tear the widget down."""
        self.run_id += 1
        self.requested_product_id = None
        self.state = CheckoutState.CLOSING
        self._abort_live("MODAL_CLOSE")
        await self._unmount_if_mounted()
        self.ui.clear_container()
        self.ui.hide_overlay()
        self.ui.hide_modal()
        self.state = CheckoutState.IDLE
        log.info("checkout_closed", run_id=self.run_id)

    async def confirm_bypass(self, product_id: int, code: str | None = None) -> dict | None:
        """Credit product_id without payment through the dev bypass endpoint."""
        if not self.bypass_enabled:
            self.ui.alert("Bypass is disabled")
            return None
        headers = {"Content-Type": "application/json"}
        if self.antiforgery_token:
            headers[ANTIFORGERY_HEADER] = self.antiforgery_token
        if code:
            headers["X-Bypass-Code"] = code
        try:
            response = await self.client.post(BYPASS_CONFIRM_PATH, json={"productId": int(product_id)}, headers=headers)
        except httpx.HTTPError as e:
            log.error("checkout_bypass_failed", reason=CheckoutErrorKind.NETWORK.value, error=str(e))
            self.ui.alert("Could not confirm the purchase")
            return None

        if not _is_json(response):
            log.error("checkout_bypass_failed", reason=CheckoutErrorKind.NON_JSON.value, status_code=response.status_code)
            self.ui.alert("Unexpected server response")
            return None
        payload = response.json()
        if not payload.get("success"):
            self.ui.alert(payload.get("message") or "Could not confirm the purchase")
            return payload

        self.ui.alert(payload.get("message") or "Purchase confirmed")
        self.run_id += 1
        self.requested_product_id = None
        self._abort_live("BYPASS_DONE")
        await self._unmount_if_mounted()
        self.ui.hide_overlay()
        self.ui.hide_modal()
        self.state = CheckoutState.IDLE
        return payload

    async def dispose(self) -> None:
        """End of page lifecycle; the manager cannot be reopened."""
        if self._disposed:
            return
        await self.close()
        self._checkout = None
        self._disposed = True
        if self._owns_client:
            await self.client.aclose()

    def _abort_live(self, reason: str) -> None:
        if self._abort is not None:
            log.debug("checkout_fetch_aborted", reason=reason)
            self._abort.abort(reason)
            self._abort = None

    async def _safe_unmount(self, checkout: EmbeddedCheckout | None) -> None:
        if checkout is None:
            return
        try:
            await checkout.unmount()
        except Exception as e:
            log.warning("checkout_unmount_failed", error=str(e))

    async def _unmount_if_mounted(self) -> None:
        if self._checkout is not None and self._mounted:
            await self._safe_unmount(self._checkout)
            self.ui.clear_container()
        self._mounted = False
        self._checkout = None

    async def _fail(self, err: CheckoutError) -> None:
        log.error("checkout_failed", reason=err.kind.value, message=err.message, run_id=self.run_id)
        self.run_id += 1
        self.requested_product_id = None
        self._abort_live("FAILED")
        await self._unmount_if_mounted()
        self.ui.clear_container()
        self.ui.hide_overlay()
        self.ui.hide_modal()
        self.state = CheckoutState.CANCELLED
        if err.kind.needs_login:
            self.ui.redirect_to_login()
        else:
            self.ui.alert(GENERIC_ALERT)
