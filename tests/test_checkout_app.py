"""
Pruebas de punta a punta del servicio de checkout.

``ReservasClient`` habla con el backend de reservas en memoria a través de su
test client de Flask: se ejercita el contrato HTTP real en ambos lados.
"""

import pytest

from checkout.api_client import ReservasClient
from checkout.controller import CheckoutController
from services.checkout import app as checkout_app

from .conftest import FlaskBackendSession

TAB = {"X-Tab-Id": "tab-1"}

SELECCION = [
    {"tipoEntradaId": 1, "nombre": "General", "cantidad": 2, "precio": 50},
    {"tipoEntradaId": 2, "nombre": "VIP", "cantidad": 1, "precio": 150},
]

CARD = {
    "cardNumber": "4111 1111 1111 1111",
    "cardHolder": "ANA PEREZ",
    "expiryDate": "12/29",
    "cvv": "123",
}


@pytest.fixture
def backend_session(reservas_backend):
    return FlaskBackendSession(reservas_backend.app.test_client())


@pytest.fixture
def http(backend_session, store, clock, monkeypatch):
    def make_controller(tab_id, token):
        client = ReservasClient("http://reservas", token=token, session=backend_session)
        return CheckoutController(client, store, clock=clock, hold_seconds=300,
                                  autostart_timer=False)

    monkeypatch.setattr(checkout_app, "make_controller", make_controller)
    checkout_app.CONTROLLERS.clear()
    checkout_app.FINISHED.clear()
    checkout_app.app.config["TESTING"] = True
    yield checkout_app.app.test_client()
    checkout_app.CONTROLLERS.clear()
    checkout_app.FINISHED.clear()


def _start(http, seleccion=None, headers=TAB):
    return http.post(
        "/checkout",
        json={"evento": {"nombre": "Concierto"}, "seleccion": seleccion or SELECCION, "usuarioId": 9},
        headers=headers,
    )


def _stock(reservas_backend):
    return {k: v["disponible"] for k, v in reservas_backend.TIPOS_ENTRADA.items()}


def test_missing_tab_id_is_rejected(http):
    response = http.get("/checkout")
    assert response.status_code == 400
    assert response.get_json()["status"] == "error"


def test_start_holds_stock_and_reports_countdown(http, reservas_backend):
    response = _start(http)

    body = response.get_json()
    assert response.status_code == 201
    assert body["timeLeft"] == 300
    assert body["timeLeftText"] == "5:00"
    assert body["total"] == "250"
    assert [r["tipoEntradaId"] for r in body["reservas"]] == [1, 2]
    assert _stock(reservas_backend)[1] == 98
    assert _stock(reservas_backend)[2] == 19


def test_partial_acquisition_failure_rolls_back(http, reservas_backend):
    seleccion = SELECCION + [{"tipoEntradaId": 3, "nombre": "Palco", "cantidad": 9, "precio": 400}]

    response = _start(http, seleccion)

    assert response.status_code == 409
    assert response.get_json()["message"] == "No hay stock disponible para este tipo de entrada"
    assert _stock(reservas_backend) == {1: 100, 2: 20, 3: 5}
    assert http.get("/checkout", headers=TAB).status_code == 404


def test_countdown_resumes_from_persisted_deadline(http, clock):
    _start(http)
    clock.advance(42)

    body = http.get("/checkout", headers=TAB).get_json()

    assert body["timeLeft"] == 258


def test_expired_hold_returns_notice_and_restores_stock(http, reservas_backend, clock):
    _start(http)
    clock.advance(300)

    response = http.get("/checkout", headers=TAB)

    assert response.status_code == 410
    assert response.get_json()["redirect"] == "/"
    assert "expirado" in response.get_json()["message"]
    assert _stock(reservas_backend) == {1: 100, 2: 20, 3: 5}


def test_cancel_needs_confirmation(http, reservas_backend):
    _start(http)

    unconfirmed = http.post("/checkout/cancel", json={}, headers=TAB)
    confirmed = http.post("/checkout/cancel", json={"confirm": True}, headers=TAB)

    assert unconfirmed.status_code == 409
    assert confirmed.status_code == 200
    assert confirmed.get_json()["outcome"] == "cancelled"
    assert _stock(reservas_backend)[1] == 100


def test_unload_and_teardown_release_once(http, reservas_backend):
    reservas = _start(http).get_json()["reservas"]

    assert http.post("/checkout/unload", headers=TAB).status_code == 202
    assert http.delete("/checkout", headers=TAB).status_code == 204

    calls = reservas_backend.RELEASE_CALLS
    assert {rid: calls.get(rid) for rid in (r["id"] for r in reservas)} == {
        reservas[0]["id"]: 1,
        reservas[1]["id"]: 1,
    }


def test_successful_payment_consumes_reservations(http, reservas_backend):
    _start(http)

    response = http.post("/checkout/pay", json={"usuarioId": 9, "paymentMethod": CARD}, headers=TAB)
    http.post("/checkout/unload", headers=TAB)

    body = response.get_json()
    assert response.status_code == 200
    assert len(body["tickets"]) == 2
    assert body["redirect"] == "/mis-tickets"
    assert reservas_backend.RELEASE_CALLS == {}
    assert _stock(reservas_backend)[1] == 98


def test_invalid_card_is_reported_without_calling_backend(http):
    _start(http)

    response = http.post(
        "/checkout/pay",
        json={"usuarioId": 9, "paymentMethod": dict(CARD, cvv="1")},
        headers=TAB,
    )

    assert response.status_code == 400
    assert response.get_json()["message"] == "CVV inválido"


def test_rejected_payment_keeps_hold_for_retry(http, reservas_backend):
    _start(http)

    rejected = http.post(
        "/checkout/pay", json={"usuarioId": 9, "paymentMethod": CARD, "simularRechazo": True}, headers=TAB
    )
    retried = http.post("/checkout/pay", json={"usuarioId": 9, "paymentMethod": CARD}, headers=TAB)

    assert rejected.status_code == 402
    assert rejected.get_json()["message"] == "Pago rechazado: Tarjeta rechazada por el emisor"
    assert len(rejected.get_json()["idempotencyKeys"]) == 1
    assert retried.status_code == 200
    assert reservas_backend.RELEASE_CALLS == {}


def test_second_checkout_in_same_tab_conflicts(http):
    _start(http)
    assert _start(http).status_code == 409


def test_health_counts_active_checkouts(http):
    _start(http)
    assert http.get("/health").get_json()["active_checkouts"] == 1


def test_finished_tabs_are_dropped(http):
    _start(http)
    http.post("/checkout/cancel", json={"confirm": True}, headers=TAB)

    assert checkout_app.CONTROLLERS == {}
    assert http.get("/checkout", headers=TAB).status_code == 404
    assert checkout_app.CONTROLLERS == {}


def test_tabs_without_checkout_are_not_kept(http):
    for index in range(5):
        http.get("/checkout", headers={"X-Tab-Id": f"tab-{index}"})

    assert checkout_app.CONTROLLERS == {}


def test_expiry_notice_survives_dropping_the_tab(http, clock):
    _start(http)
    clock.advance(300)

    first = http.get("/checkout", headers=TAB)
    second = http.get("/checkout", headers=TAB)

    assert first.status_code == second.status_code == 410
    assert checkout_app.CONTROLLERS == {}
    assert second.get_json()["message"] == first.get_json()["message"]


def test_new_checkout_clears_previous_outcome(http, clock):
    _start(http)
    clock.advance(300)
    http.get("/checkout", headers=TAB)

    assert _start(http).status_code == 201
    assert http.get("/checkout", headers=TAB).status_code == 200


def test_bearer_token_follows_each_request(http, backend_session):
    http.get("/checkout", headers=TAB)
    _start(http, headers=dict(TAB, Authorization="Bearer tok-1"))
    http.post(
        "/checkout/pay",
        json={"usuarioId": 9, "paymentMethod": CARD},
        headers=dict(TAB, Authorization="Bearer tok-2"),
    )

    tokens = {(method, path): sent["Authorization"] for method, path, sent in backend_session.sent}
    assert tokens[("POST", "/api/reservas/crear")] == "Bearer tok-1"
    assert tokens[("POST", "/api/orchestration/purchase-ticket")] == "Bearer tok-2"


def test_idempotency_keys_must_be_an_object(http, backend_session):
    _start(http)

    response = http.post(
        "/checkout/pay",
        json={"usuarioId": 9, "paymentMethod": CARD, "idempotencyKeys": ["k-1"]},
        headers=TAB,
    )

    assert response.status_code == 400
    assert response.get_json()["message"] == "Claves de idempotencia inválidas"
    assert not any(path.endswith("purchase-ticket") for _, path, _ in backend_session.sent)
