"""Backend du storefront Blackhorse: panier, checkout, paiement PayTabs et réconciliation."""

__version__ = "0.1.0"
