"""Configuración de pytest y fixtures compartidas."""

from collections import Counter
from decimal import Decimal
from urllib.parse import urlsplit

import pytest

from checkout.errors import ApiError
from checkout.models import LineItem, Reservation
from checkout.store import InMemorySessionStore

START_EPOCH = 1_700_000_000.0


class FakeClock:
    """Reloj manual en segundos epoch."""

    def __init__(self, now=START_EPOCH):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeReservasClient:
    """Backend en memoria con contadores de llamadas por reserva."""

    def __init__(self, create_failures=None, release_failures=None, purchase_failures=None):
        self.create_failures = dict(create_failures or {})
        self.release_failures = set(release_failures or ())
        self.purchase_failures = dict(purchase_failures or {})
        self.create_attempts = 0
        self.created = []
        self.release_calls = Counter()
        self.purchases = []
        self._next_id = 100

    def crear_reserva(self, tipo_entrada_id, usuario_id, cantidad):
        index = self.create_attempts
        self.create_attempts += 1
        if index in self.create_failures:
            raise self.create_failures[index]
        self._next_id += 1
        reserva = Reservation(self._next_id, tipo_entrada_id, cantidad, usuario_id)
        self.created.append(reserva)
        return reserva

    def liberar_reserva(self, reserva_id):
        self.release_calls[reserva_id] += 1
        if reserva_id in self.release_failures:
            raise ApiError("Error al restaurar stock", 500)
        return True

    def comprar_entrada(self, usuario_id, tipo_entrada_id, cantidad, reserva_id,
                        idempotency_key, payment_method):
        self.purchases.append(
            {"reserva_id": reserva_id, "idempotency_key": idempotency_key, "cantidad": cantidad}
        )
        failure = self.purchase_failures.get(reserva_id)
        if failure is not None:
            raise failure
        return {"exitoso": True, "ticketId": len(self.purchases), "reservaId": reserva_id}


class _FlaskResponse:
    def __init__(self, response):
        self._response = response
        self.status_code = response.status_code
        self.text = response.get_data(as_text=True)

    def json(self):
        data = self._response.get_json(silent=True)
        if data is None:
            raise ValueError("response body is not JSON")
        return data


class FlaskBackendSession:
    """Sustituto de requests.Session que despacha al test client de Flask."""

    def __init__(self, flask_client):
        self.headers = {}
        self.sent = []
        self._client = flask_client

    def request(self, method, url, timeout=None, json=None, headers=None):
        merged = dict(self.headers)
        merged.update(headers or {})
        path = urlsplit(url).path
        self.sent.append((method, path, merged))
        response = self._client.open(path, method=method, json=json, headers=merged)
        return _FlaskResponse(response)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def fake_client():
    return FakeReservasClient()


@pytest.fixture
def seleccion():
    return [
        LineItem(tipo_entrada_id=1, nombre="General", cantidad=2, precio=Decimal("50")),
        LineItem(tipo_entrada_id=2, nombre="VIP", cantidad=1, precio=Decimal("150")),
        LineItem(tipo_entrada_id=3, nombre="Palco", cantidad=1, precio=Decimal("400")),
    ]


@pytest.fixture
def evento():
    return {"nombre": "Concierto", "fecha": "2026-12-01T20:00:00", "lugar": "Estadio"}


@pytest.fixture
def reservas_backend():
    from services.reservas import app as reservas_app

    reservas_app.reset_state()
    reservas_app.app.config["TESTING"] = True
    yield reservas_app
    reservas_app.reset_state()
