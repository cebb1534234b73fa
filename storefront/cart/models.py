"""
Types du panier.
- CartLine: {product_id, quantity}, quantity >= 1, une ligne par produit et par propriétaire.
- CartItem: ligne + attributs produit joints (id, name, retail_price, wholesale_price).
- GuestCart: panier invité stocké dans la session signée (cookie), jamais en base.
"""
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, MutableMapping, Optional

GUEST_CART_KEY = "guest_cart"
GUEST_CART_ID_KEY = "guest_cart_id"


def clamp_quantity(value: Any) -> int:
    """Quantité effective d'un ajout: entier >= 1 (négatif, nul ou invalide -> 1)."""
    try:
        qty = int(value)
    except (TypeError, ValueError):
        return 1
    return qty if qty >= 1 else 1


@dataclass
class CartLine:
    product_id: str
    quantity: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {"product_id": self.product_id, "quantity": self.quantity}


@dataclass
class CartItem:
    product_id: str
    quantity: int
    product: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "product": self.product,
        }


class GuestCart:
    """Vue typée sur la liste guest_cart de la session ([{product_id, quantity}, ...])."""

    def __init__(self, session: MutableMapping[str, Any]):
        self.session = session

    def lines(self) -> List[CartLine]:
        raw = self.session.get(GUEST_CART_KEY) or []
        merged: Dict[str, int] = {}
        for entry in raw:
            if not isinstance(entry, dict):
                continue
            pid = str(entry.get("product_id") or "").strip()
            if not pid:
                continue
            merged[pid] = merged.get(pid, 0) + clamp_quantity(entry.get("quantity"))
        return [CartLine(pid, qty) for pid, qty in merged.items()]

    def ensure_id(self) -> str:
        """Identifiant du panier invité courant, régénéré après chaque vidage."""
        if not self.session.get(GUEST_CART_ID_KEY):
            self.session[GUEST_CART_ID_KEY] = uuid.uuid4().hex
        return self.session[GUEST_CART_ID_KEY]

    def _save(self, lines: List[CartLine]) -> None:
        self.session[GUEST_CART_KEY] = [line.to_dict() for line in lines]
        if lines:
            self.ensure_id()

    def add(self, product_id: str, quantity: Any = 1) -> CartLine:
        lines = self.lines()
        qty = clamp_quantity(quantity)
        for line in lines:
            if line.product_id == product_id:
                line.quantity += qty
                self._save(lines)
                return line
        line = CartLine(product_id, qty)
        lines.append(line)
        self._save(lines)
        return line

    def set_quantity(self, product_id: str, quantity: int) -> None:
        lines = [l for l in self.lines() if l.product_id != product_id or quantity > 0]
        for line in lines:
            if line.product_id == product_id:
                line.quantity = int(quantity)
        self._save(lines)

    def remove(self, product_id: str) -> None:
        self._save([l for l in self.lines() if l.product_id != product_id])

    def keep_only(self, product_ids: List[str]) -> None:
        wanted = set(product_ids)
        self._save([l for l in self.lines() if l.product_id in wanted])

    def clear(self) -> None:
        self.session[GUEST_CART_KEY] = []
        self.session.pop(GUEST_CART_ID_KEY, None)

    def is_empty(self) -> bool:
        return not self.lines()
