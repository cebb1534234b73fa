"""
Exceptions métier du storefront.

Chaque erreur porte un code stable (lu par le front), un message actionnable
pour l'utilisateur, le statut HTTP à renvoyer et un drapeau `retryable` qui
distingue les erreurs transitoires (verrou, passerelle injoignable) des
refus définitifs. Le rendu JSON est fait par storefront.app_setup.exceptions.
"""
from typing import Optional


class StorefrontError(Exception):
    status_code = 400
    code = "ERROR"
    message = "Une erreur est survenue"
    retryable = False

    def __init__(self, message: Optional[str] = None, *, code: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message or self.message)
        self.message = message or self.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code, "retryable": self.retryable}


# --- Erreurs de saisie / checkout ---

class CheckoutError(StorefrontError):
    status_code = 400
    code = "CHECKOUT_ERROR"


class LoginRequired(CheckoutError):
    status_code = 401
    code = "LOGIN_REQUIRED"
    message = "Veuillez vous connecter pour continuer"


class CartEmpty(CheckoutError):
    code = "CART_EMPTY"
    message = "Votre panier est vide"


class NoAddress(CheckoutError):
    code = "NO_ADDRESS"
    message = "Veuillez ajouter une adresse de livraison"


class InvalidPaymentMethod(CheckoutError):
    code = "INVALID_PAYMENT_METHOD"
    message = "Mode de paiement non supporté"


class OrderCreateFailed(CheckoutError):
    status_code = 500
    code = "ORDER_CREATE_FAILED"
    message = "La commande n'a pas pu être créée, veuillez réessayer"
    retryable = True


class ProductNotFound(StorefrontError):
    status_code = 404
    code = "PRODUCT_NOT_FOUND"
    message = "Produit introuvable"


class CartUpdateFailed(StorefrontError):
    status_code = 500
    code = "CART_UPDATE_FAILED"
    message = "Le panier n'a pas pu être mis à jour, veuillez réessayer"
    retryable = True


class CartUnavailable(StorefrontError):
    status_code = 503
    code = "CART_UNAVAILABLE"
    message = "Le panier est momentanément indisponible, veuillez réessayer"
    retryable = True


# --- Concurrence ---

class AlreadyInProgress(StorefrontError):
    """Une opération identique est déjà en cours pour ce même utilisateur."""
    status_code = 409
    code = "ALREADY_IN_PROGRESS"
    message = "Opération déjà en cours, veuillez réessayer dans un instant"
    retryable = True


class AlreadyCreating(AlreadyInProgress):
    code = "ALREADY_CREATING"
    message = "Une commande est déjà en cours de création"


class MergeInProgress(AlreadyInProgress):
    code = "MERGE_IN_PROGRESS"
    message = "Synchronisation du panier déjà en cours"


# --- Commandes ---

class OrderNotFound(StorefrontError):
    status_code = 404
    code = "ORDER_NOT_FOUND"
    message = "Commande introuvable"


class AlreadyPaid(StorefrontError):
    status_code = 409
    code = "ALREADY_PAID"
    message = "Cette commande est déjà payée"


class TransitionDenied(StorefrontError):
    status_code = 409
    code = "TRANSITION_DENIED"
    message = "Changement de statut refusé"


class TranRefUsed(StorefrontError):
    status_code = 409
    code = "TRAN_REF_USED"
    message = "Le paiement de cette commande a échoué, veuillez repasser commande"


# --- Passerelle de paiement ---

class GatewayError(StorefrontError):
    """Erreur transitoire côté PayTabs (réseau, timeout, 5xx): jamais un échec de paiement."""
    status_code = 503
    code = "GATEWAY_UNAVAILABLE"
    message = "Le service de paiement est momentanément indisponible, veuillez réessayer"
    retryable = True


class GatewayConfigError(StorefrontError):
    status_code = 500
    code = "GATEWAY_CONFIG_MISSING"
    message = "Configuration PayTabs incomplète"


class InvalidGatewayResponse(StorefrontError):
    status_code = 502
    code = "INVALID_GATEWAY_RESPONSE"
    message = "Réponse PayTabs invalide"
    retryable = True


class InvalidCallback(StorefrontError):
    """Aucun statut de paiement exploitable: rien n'est écrit."""
    status_code = 502
    code = "INVALID_CALLBACK"
    message = "Statut de paiement introuvable"
    retryable = True


class SignatureError(StorefrontError):
    status_code = 400
    code = "INVALID_SIGNATURE"
    message = "Signature invalide"
