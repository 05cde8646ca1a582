"""
Modelos del checkout.

Los nombres de campo en JSON conservan el formato del backend y del
almacenamiento de la pestaña (camelCase: ``tipoEntradaId``, ``cantidad``...).
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class Reservation:
    """Retención temporal de ``cantidad`` entradas de un tipo para un usuario."""

    id: Any
    tipo_entrada_id: Any
    cantidad: int
    usuario_id: Any = None

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "Reservation":
        return cls(
            id=data["id"],
            tipo_entrada_id=data.get("tipoEntradaId"),
            cantidad=int(data.get("cantidad", 0)),
            usuario_id=data.get("usuarioId"),
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tipoEntradaId": self.tipo_entrada_id,
            "cantidad": self.cantidad,
            "usuarioId": self.usuario_id,
        }


@dataclass(frozen=True)
class LineItem:
    tipo_entrada_id: Any
    nombre: str
    cantidad: int
    precio: Decimal

    @property
    def subtotal(self) -> Decimal:
        return self.precio * self.cantidad

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "LineItem":
        return cls(
            tipo_entrada_id=data["tipoEntradaId"],
            nombre=data.get("nombre", ""),
            cantidad=int(data["cantidad"]),
            precio=Decimal(str(data.get("precio", "0"))),
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "tipoEntradaId": self.tipo_entrada_id,
            "nombre": self.nombre,
            "cantidad": self.cantidad,
            "precio": str(self.precio),
            "subtotal": str(self.subtotal),
        }


@dataclass
class CheckoutSession:
    """Agregado de una compra en curso.

    ``reservas`` está alineado por índice con ``seleccion``. ``consumidas``
    guarda los ids (como texto) de las reservas que una compra ya consumió;
    esas nunca se liberan.
    """

    evento: Dict[str, Any]
    seleccion: List[LineItem]
    reservas: List[Reservation]
    consumidas: List[str] = field(default_factory=list)

    @property
    def total(self) -> Decimal:
        return sum((item.subtotal for item in self.seleccion), Decimal("0"))

    @property
    def batch_id(self) -> Optional[str]:
        if not self.reservas:
            return None
        return str(self.reservas[0].id)

    def is_consumed(self, reserva: Reservation) -> bool:
        return str(reserva.id) in self.consumidas

    def mark_consumed(self, reserva: Reservation) -> None:
        if not self.is_consumed(reserva):
            self.consumidas.append(str(reserva.id))

    def pending(self) -> List[Reservation]:
        """Reservas todavía retenidas (ni liberadas ni consumidas)."""
        return [r for r in self.reservas if not self.is_consumed(r)]

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "CheckoutSession":
        return cls(
            evento=data.get("evento") or {},
            seleccion=[LineItem.from_json(item) for item in data.get("seleccion", [])],
            reservas=[Reservation.from_json(r) for r in data.get("reservas", [])],
            consumidas=[str(i) for i in data.get("consumidas", [])],
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "evento": self.evento,
            "seleccion": [item.to_json() for item in self.seleccion],
            "reservas": [r.to_json() for r in self.reservas],
            "consumidas": list(self.consumidas),
            "total": str(self.total),
        }


@dataclass(frozen=True)
class ExpirationWindow:
    expires_at_ms: int
    batch_id: str

    def time_left(self, now_ms: int) -> int:
        return max(0, (self.expires_at_ms - now_ms) // 1000)


@dataclass
class PurchaseResult:
    tickets: List[Dict[str, Any]]
    idempotency_keys: Dict[str, str]
