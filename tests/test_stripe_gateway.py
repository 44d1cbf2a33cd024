import pytest
import stripe

from app.core.config import get_settings
from app.core.exceptions import BadRequestError, ProviderError
from app.models.chip_product import ChipProduct
from app.services import stripe_gateway


@pytest.fixture
def stripe_keys(monkeypatch):
    settings = get_settings()
    monkeypatch.setattr(settings, "stripe_secret_key", "sk_test_123")
    monkeypatch.setattr(settings, "stripe_webhook_secret", "whsec_123")
    return settings


def _product(**overrides):
    values = dict(product_id=3, name="Big pack", price_in_cents=1500, currency="crc", chips=1500, stripe_price_id=None)
    values.update(overrides)
    return ChipProduct.model_construct(**values)


def test_to_info_reads_metadata_and_line_items():
    session = {
        "id": "cs_1",
        "client_secret": "cs_1_secret",
        "payment_status": "paid",
        "amount_total": 1500,
        "currency": "crc",
        "metadata": {"userId": "u1", "packageId": "3"},
        "line_items": {"data": [{"price": {"id": "price_abc"}}]},
    }
    info = stripe_gateway._to_info(session)
    assert info.user_id == "u1"
    assert info.product_id == 3
    assert info.price_id == "price_abc"
    assert info.payment_status == "paid"


def test_to_info_falls_back_to_client_reference():
    info = stripe_gateway._to_info({"id": "cs_2", "client_reference_id": "u9", "metadata": {"packageId": "x"}})
    assert info.user_id == "u9"
    assert info.product_id is None


def test_create_session_inline_price(stripe_keys, monkeypatch):
    captured = {}

    def fake_create(**kwargs):
        captured.update(kwargs)
        return {"id": "cs_3", "client_secret": "cs_3_secret", "metadata": kwargs["metadata"]}

    monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)
    info = stripe_gateway.create_embedded_session(_product(), "http://shop.test/", "u1")

    assert info.client_secret == "cs_3_secret"
    assert captured["ui_mode"] == "embedded"
    assert captured["line_items"][0]["price_data"]["unit_amount"] == 1500
    assert captured["metadata"] == {"userId": "u1", "packageId": "3"}
    assert captured["return_url"].startswith("http://shop.test/payment/checkout/success")


def test_create_session_uses_price_id(stripe_keys, monkeypatch):
    captured = {}

    def fake_create(**kwargs):
        captured.update(kwargs)
        return {"id": "cs_4", "client_secret": "cs_4_secret"}

    monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)
    stripe_gateway.create_embedded_session(_product(stripe_price_id="price_xyz"), "http://shop.test", "u1")
    assert captured["line_items"] == [{"price": "price_xyz", "quantity": 1}]


def test_create_session_provider_error(stripe_keys, monkeypatch):
    def fake_create(**kwargs):
        raise stripe.StripeError("card network down")

    monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)
    with pytest.raises(ProviderError):
        stripe_gateway.create_embedded_session(_product(), "http://shop.test", "u1")


def test_create_session_without_secret(stripe_keys, monkeypatch):
    monkeypatch.setattr(stripe.checkout.Session, "create", lambda **kwargs: {"id": "cs_5"})
    with pytest.raises(ProviderError):
        stripe_gateway.create_embedded_session(_product(), "http://shop.test", "u1")


def test_invalid_secret_key(monkeypatch):
    monkeypatch.setattr(get_settings(), "stripe_secret_key", "pk_test_wrong")
    with pytest.raises(BadRequestError):
        stripe_gateway.create_embedded_session(_product(), "http://shop.test", "u1")


def test_parse_webhook(stripe_keys, monkeypatch):
    event = {
        "type": "checkout.session.completed",
        "data": {"object": {"id": "cs_6", "payment_status": "paid", "metadata": {"userId": "u1", "packageId": "3"}}},
    }
    monkeypatch.setattr(stripe.Webhook, "construct_event", lambda payload, sig, secret: event)
    event_type, info = stripe_gateway.parse_webhook(b"{}", "t=1,v1=abc")
    assert event_type == "checkout.session.completed"
    assert info.id == "cs_6"


def test_parse_webhook_bad_signature(stripe_keys, monkeypatch):
    def fake_construct(payload, sig, secret):
        raise stripe.SignatureVerificationError("bad", sig)

    monkeypatch.setattr(stripe.Webhook, "construct_event", fake_construct)
    with pytest.raises(BadRequestError):
        stripe_gateway.parse_webhook(b"{}", "t=1,v1=abc")
