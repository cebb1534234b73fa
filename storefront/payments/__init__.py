"""
Module 'payments' (feature-first): point d'entrée public.
Réunit le client PayTabs, la signature des notifications, la réconciliation et la création de transaction.
"""

from .models import Approved, Declined, Ambiguous, GatewayResult, resolve_status, result_from_query
from .signature import compute_signature, verify_fields_signature, verify_body_signature
from .paytabs_client import PayTabsClient
from .reconciliation import ApplyOutcome, ReconciliationEngine, get_engine
from .service import create_transaction

__all__ = [
    # résultats typés
    "Approved",
    "Declined",
    "Ambiguous",
    "GatewayResult",
    "resolve_status",
    "result_from_query",
    # signature
    "compute_signature",
    "verify_fields_signature",
    "verify_body_signature",
    # PayTabs
    "PayTabsClient",
    # réconciliation
    "ApplyOutcome",
    "ReconciliationEngine",
    "get_engine",
    # services
    "create_transaction",
]
