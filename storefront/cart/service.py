"""
Cas d'usage 'cart': agrège panier persistant (utilisateur connecté) et panier invité (session).

Une lecture ne sélectionne qu'une seule source selon l'état d'authentification.
La fusion invité -> compte se fait une fois par session de connexion, protégée par
un verrou « en cours » par utilisateur et par des marqueurs « ligne déjà fusionnée »
indexés sur l'identifiant du panier invité (un cookie rejoué ne double pas les quantités).
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import logging

from storefront.errors import CartUnavailable, CartUpdateFailed, MergeInProgress, ProductNotFound
from storefront.products.repository import get_products_map
from storefront.utils.guards import InFlightGuard, get_guard
from . import repository
from .models import CartItem, CartLine, GuestCart, clamp_quantity

logger = logging.getLogger(__name__)


@dataclass
class MergeResult:
    merged: int = 0
    skipped: int = 0
    kept: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"merged": self.merged, "skipped": self.skipped, "kept": self.kept}


def _user_id(user: Optional[Dict[str, Any]]) -> Optional[str]:
    return (user or {}).get("id") or None


def _products(ids) -> Dict[str, Dict[str, Any]]:
    try:
        return get_products_map(ids)
    except Exception:
        raise CartUnavailable()


def _join_products(lines: List[CartLine], line_ids: Optional[Dict[str, str]] = None) -> List[CartItem]:
    products = _products(l.product_id for l in lines)
    items: List[CartItem] = []
    for line in lines:
        product = products.get(line.product_id)
        if not product:
            logger.info("cart line skipped, unknown product_id=%s", line.product_id)
            continue
        items.append(CartItem(
            product_id=line.product_id,
            quantity=line.quantity,
            product=product,
            id=(line_ids or {}).get(line.product_id),
        ))
    return items


def load_cart(user: Optional[Dict[str, Any]], guest: GuestCart) -> List[CartItem]:
    """
    Retourne les lignes du panier jointes aux produits.
    - connecté: cart_items de l'utilisateur
    - invité: lignes de la session
    """
    if not _user_id(user):
        return _join_products(guest.lines())
    return load_account_cart(user)


def load_account_cart(user: Dict[str, Any]) -> List[CartItem]:
    """Panier du compte. Une lecture en échec lève CART_UNAVAILABLE, jamais une liste vide."""
    uid = _user_id(user)
    try:
        rows = repository.list_cart_lines(uid, user_token=(user or {}).get("token"))
    except Exception:
        raise CartUnavailable()
    lines: List[CartLine] = []
    line_ids: Dict[str, str] = {}
    for row in rows:
        pid = str(row.get("product_id") or "")
        if not pid:
            continue
        lines.append(CartLine(pid, clamp_quantity(row.get("quantity"))))
        line_ids[pid] = str(row.get("id") or "")
    return _join_products(lines, line_ids)


def _upsert_line(user_id: str, product_id: str, quantity: int, user_token: Optional[str]) -> bool:
    # ligne existante inconnue: pas d'insertion, sinon doublon (owner, product_id)
    try:
        existing = repository.find_cart_line(user_id, product_id, user_token=user_token)
    except Exception:
        return False
    if existing:
        new_qty = clamp_quantity(existing.get("quantity")) + quantity
        return repository.update_cart_line_quantity(str(existing.get("id")), new_qty, user_token=user_token)
    return repository.insert_cart_line(user_id, product_id, quantity, user_token=user_token) is not None


def add_item(user: Optional[Dict[str, Any]], guest: GuestCart, product_id: str, quantity: Any = 1) -> CartLine:
    """Ajoute `quantity` (>= 1) au produit; incrémente la ligne existante plutôt que de la dupliquer."""
    product_id = str(product_id or "").strip()
    if not product_id or product_id not in _products([product_id]):
        raise ProductNotFound()
    qty = clamp_quantity(quantity)

    uid = _user_id(user)
    if not uid:
        return guest.add(product_id, qty)

    if not _upsert_line(uid, product_id, qty, (user or {}).get("token")):
        raise CartUpdateFailed()
    return CartLine(product_id, qty)


def set_item_quantity(user: Optional[Dict[str, Any]], guest: GuestCart, product_id: str, quantity: int) -> None:
    """Fixe la quantité d'une ligne; quantity <= 0 supprime la ligne."""
    uid = _user_id(user)
    if not uid:
        guest.set_quantity(product_id, quantity)
        return

    token = (user or {}).get("token")
    if quantity <= 0:
        ok = repository.delete_cart_products(uid, [product_id], user_token=token)
    else:
        try:
            existing = repository.find_cart_line(uid, product_id, user_token=token)
        except Exception:
            raise CartUpdateFailed()
        if not existing:
            raise ProductNotFound("Produit absent du panier")
        ok = repository.update_cart_line_quantity(str(existing.get("id")), int(quantity), user_token=token)
    if not ok:
        raise CartUpdateFailed()


def remove_item(user: Optional[Dict[str, Any]], guest: GuestCart, product_id: str) -> None:
    uid = _user_id(user)
    if not uid:
        guest.remove(product_id)
        return
    if not repository.delete_cart_products(uid, [product_id], user_token=(user or {}).get("token")):
        raise CartUpdateFailed()


def merge_guest_into_account(user: Dict[str, Any], guest: GuestCart, guard: Optional[InFlightGuard] = None) -> MergeResult:
    """
    Fusionne le panier invité dans le panier du compte:
    - même produit des deux côtés: les quantités s'additionnent
    - sinon la ligne est créée côté serveur
    - une ligne déjà fusionnée (même panier invité) est ignorée
    - les lignes en échec restent dans le panier invité; le reste est retiré
    Lève MergeInProgress si une fusion est déjà en cours pour cet utilisateur.
    """
    uid = _user_id(user)
    guard = guard or get_guard()
    result = MergeResult()

    with guard.hold(f"cart-merge:{uid}", MergeInProgress):
        lines = guest.lines()
        if not lines:
            guest.clear()
            return result

        guest_cart_id = guest.ensure_id()
        token = (user or {}).get("token")
        failed: List[str] = []
        for line in lines:
            marker = f"cart-merged:{uid}:{guest_cart_id}:{line.product_id}"
            if guard.seen(marker):
                result.skipped += 1
                continue
            if _upsert_line(uid, line.product_id, line.quantity, token):
                guard.remember(marker)
                result.merged += 1
            else:
                failed.append(line.product_id)

        if failed:
            guest.keep_only(failed)
            result.kept = failed
            logger.warning("cart merge partial user_id=%s kept=%s", uid, failed)
        else:
            guest.clear()
        logger.info("cart merge user_id=%s merged=%s skipped=%s", uid, result.merged, result.skipped)
    return result


def clear_purchased_products(user_id: str, product_ids: List[str], user_token: Optional[str] = None) -> bool:
    """Retire du panier du compte les produits d'une commande (les ajouts ultérieurs sont conservés)."""
    ok = repository.delete_cart_products(user_id, product_ids, user_token=user_token)
    if not ok:
        logger.warning("cart clear after order failed user_id=%s products=%s", user_id, product_ids)
    return ok
