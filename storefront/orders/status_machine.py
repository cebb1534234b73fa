"""
Machine à états des commandes (prédicat pur, aucune écriture).

can_transition() est consulté avant toute mise à jour manuelle du statut
(back-office) ou automatique hors réconciliation du paiement.
"""
from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional

from .models import OrderStatus as S, PaymentMethod, PaymentStatus

TRANSITIONS: Dict[str, FrozenSet[str]] = {
    S.PENDING.value: frozenset({S.PROCESSING.value, S.CANCELLED.value}),
    S.PROCESSING.value: frozenset({S.SHIPPED.value, S.CANCELLED.value}),
    S.SHIPPED.value: frozenset({S.DELIVERED.value, S.RETURNED.value}),
    S.DELIVERED.value: frozenset({S.COMPLETED.value, S.RETURNED.value}),
    S.AWAITING_PAYMENT.value: frozenset({S.CONFIRMED.value, S.CANCELLED.value}),
    S.CONFIRMED.value: frozenset({S.PROCESSING.value, S.CANCELLED.value}),
    S.PAYMENT_FAILED.value: frozenset({S.AWAITING_PAYMENT.value, S.CANCELLED.value}),
    S.CANCELLED.value: frozenset(),
    S.RETURNED.value: frozenset(),
    S.COMPLETED.value: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in TRANSITIONS.items() if not targets)

# Statuts cibles qui exigent un paiement encaissé, par mode de paiement
PAID_REQUIRED: Dict[str, FrozenSet[str]] = {
    PaymentMethod.ONLINE.value: frozenset({S.SHIPPED.value, S.DELIVERED.value, S.COMPLETED.value}),
    PaymentMethod.COD.value: frozenset({S.COMPLETED.value}),
}


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str = ""

    def __bool__(self) -> bool:
        return self.allowed


def _value(v) -> str:
    return str(getattr(v, "value", v) or "").strip().lower()


def can_transition(current, target, payment_status: Optional[str] = None, payment_method: Optional[str] = None) -> Decision:
    cur, tgt = _value(current), _value(target)
    pay_status, method = _value(payment_status), _value(payment_method) or PaymentMethod.ONLINE.value

    if cur not in TRANSITIONS:
        return Decision(False, f"Statut actuel inconnu: {cur or '-'}")
    if tgt not in TRANSITIONS:
        return Decision(False, f"Statut cible inconnu: {tgt or '-'}")
    if cur in TERMINAL_STATUSES:
        return Decision(False, f"La commande est dans un statut final ({cur})")
    if tgt not in TRANSITIONS[cur]:
        allowed = ", ".join(sorted(TRANSITIONS[cur]))
        return Decision(False, f"Transition {cur} -> {tgt} interdite (autorisées: {allowed})")

    gated = PAID_REQUIRED.get(method, PAID_REQUIRED[PaymentMethod.ONLINE.value])
    if tgt in gated and pay_status != PaymentStatus.PAID.value:
        return Decision(False, f"Le statut {tgt} exige un paiement encaissé (paiement: {pay_status or '-'})")
    return Decision(True)
