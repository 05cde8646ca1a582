"""Validación del formulario de pago y claves de idempotencia."""

import re
import uuid
from dataclasses import dataclass

from .errors import ValidationError

_EXPIRY_RE = re.compile(r"^(0[1-9]|1[0-2])/[0-9]{2}$")

# El backend rechaza tarjetas terminadas en 0000 (prueba de compensación)
REJECTED_TEST_CARD = "4111111111110000"


def new_idempotency_key():
    return str(uuid.uuid4())


@dataclass(frozen=True)
class PaymentMethod:
    card_number: str
    card_holder: str
    expiry_date: str
    cvv: str

    @classmethod
    def from_json(cls, data):
        data = data or {}
        return cls(
            card_number=str(data.get("cardNumber", "")),
            card_holder=str(data.get("cardHolder", "")),
            expiry_date=str(data.get("expiryDate", "")),
            cvv=str(data.get("cvv", "")),
        )

    @classmethod
    def rejected_test_card(cls, card_holder):
        """Tarjeta que el backend siempre rechaza; omite la validación del formulario."""
        return cls(
            card_number=REJECTED_TEST_CARD,
            card_holder=card_holder,
            expiry_date="12/26",
            cvv="123",
        )

    @property
    def normalized_card_number(self):
        return re.sub(r"\s+", "", self.card_number)

    def validate(self):
        number = self.normalized_card_number
        if not number.isdigit() or not 13 <= len(number) <= 19:
            raise ValidationError("Número de tarjeta inválido")
        holder = self.card_holder.strip()
        if len(holder) < 3 or len(holder) > 100:
            raise ValidationError("Nombre del titular requerido")
        if not _EXPIRY_RE.match(self.expiry_date):
            raise ValidationError("Fecha de expiración inválida")
        if not self.cvv.isdigit() or not 3 <= len(self.cvv) <= 4:
            raise ValidationError("CVV inválido")

    def to_json(self):
        return {
            "cardNumber": self.normalized_card_number,
            "cardHolder": self.card_holder.strip(),
            "expiryDate": self.expiry_date,
            "cvv": self.cvv,
        }
