# storefront.config
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
import os
from dotenv import load_dotenv

# Calculer le chemin du projet puis charger .env de manière explicite
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH, override=False)

"""
Configuration centrale du backend.

- Charge le fichier .env à la racine du projet (BASE_DIR/.env)
- Normalise et expose les secrets/URLs (Supabase, PayTabs), sécurité cookies, CORS/hosts
- Fournit les structures explicites injectées dans le moteur de prix et l'adaptateur PayTabs
"""

def _clean_env(v: str) -> str:
    """
    Nettoie une valeur d'environnement:
    - supprime les espaces et guillemets (simples, doubles) et backticks
    - retourne toujours une chaîne (jamais None)
    """
    return (v or "").strip().strip("'").strip('"').strip("`")

def _env_flag(name: str, default: str = "false") -> bool:
    return _clean_env(os.getenv(name, default)).lower() in ("1", "true", "yes")

# Supabase: URLs et clés (anon/service)
SUPABASE_URL = _clean_env(os.getenv("SUPABASE_URL") or os.getenv("NUXT_PUBLIC_SUPABASE_URL") or "")
SUPABASE_ANON = _clean_env(os.getenv("SUPABASE_ANON_KEY") or os.getenv("SUPABASE_KEY") or "")
SUPABASE_SERVICE_KEY = _clean_env(os.getenv("SUPABASE_SERVICE_KEY") or "")

if SUPABASE_URL and not SUPABASE_URL.startswith("http"):
    SUPABASE_URL = "https://" + SUPABASE_URL
if SUPABASE_URL.endswith("/"):
    SUPABASE_URL = SUPABASE_URL.rstrip("/")

# Cookies / sécurité
COOKIE_SECURE = _env_flag("COOKIE_SECURE")
SESSION_SECRET_KEY = _clean_env(os.getenv("SESSION_SECRET_KEY") or "replace_me_with_a_long_random_secret")

# CORS (dev)
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",") if h.strip()]

# Redis: rate limiting et verrous "en cours" (optionnel, sinon verrous en mémoire)
RATE_LIMIT_REDIS_URL = _clean_env(os.getenv("RATE_LIMIT_REDIS_URL") or "redis://127.0.0.1:6379/0")
GUARD_REDIS_URL = _clean_env(os.getenv("GUARD_REDIS_URL") or "")
GUARD_TTL_SECONDS = int(os.getenv("GUARD_TTL_SECONDS", "30"))

# Checkout: frais de port forfaitaire et taux de TVA
SHIPPING_FEE = _clean_env(os.getenv("SHIPPING_FEE") or "10")
TAX_RATE = _clean_env(os.getenv("TAX_RATE") or "0.05")

# PayTabs: page de paiement hébergée
PAYTABS_BASE_URL = _clean_env(os.getenv("PAYTABS_BASE_URL") or "https://secure-oman.paytabs.com")
PAYTABS_SERVER_KEY = _clean_env(os.getenv("PAYTABS_SERVER_KEY") or "")
PAYTABS_PROFILE_ID = _clean_env(os.getenv("PAYTABS_PROFILE_ID") or "")
PAYTABS_CALLBACK_URL = _clean_env(os.getenv("PAYTABS_CALLBACK_URL") or "")
PAYTABS_RETURN_URL = _clean_env(os.getenv("PAYTABS_RETURN_URL") or "")
PAYTABS_CURRENCY = _clean_env(os.getenv("PAYTABS_CURRENCY") or "OMR")
PAYTABS_TIMEOUT = float(os.getenv("PAYTABS_TIMEOUT", "15"))
# Webhooks non signés: le statut du payload est ignoré et PayTabs est interrogé
PAYTABS_ALLOW_UNSIGNED_WEBHOOKS = _env_flag("PAYTABS_ALLOW_UNSIGNED_WEBHOOKS")

# Page front vers laquelle le navigateur est renvoyé après le paiement
RETURN_PAGE_URL = _clean_env(os.getenv("RETURN_PAGE_URL") or "http://localhost:3000/checkout/result")


@dataclass(frozen=True)
class PricingConfig:
    """Paramètres du moteur de prix (frais de port appliqués aux paniers non vides, taux de TVA)."""
    shipping_fee: Decimal = Decimal("10")
    tax_rate: Decimal = Decimal("0.05")

    @classmethod
    def from_env(cls) -> "PricingConfig":
        return cls(shipping_fee=Decimal(SHIPPING_FEE), tax_rate=Decimal(TAX_RATE))


@dataclass(frozen=True)
class GatewayConfig:
    """Paramètres de l'adaptateur PayTabs."""
    base_url: str
    server_key: str
    profile_id: str
    callback_url: str = ""
    return_url: str = ""
    currency: str = "OMR"
    timeout: float = 15.0
    allow_unsigned_webhooks: bool = False

    @classmethod
    def from_env(cls) -> "GatewayConfig":
        return cls(
            base_url=PAYTABS_BASE_URL.rstrip("/"),
            server_key=PAYTABS_SERVER_KEY,
            profile_id=PAYTABS_PROFILE_ID,
            callback_url=PAYTABS_CALLBACK_URL,
            return_url=PAYTABS_RETURN_URL,
            currency=PAYTABS_CURRENCY,
            timeout=PAYTABS_TIMEOUT,
            allow_unsigned_webhooks=PAYTABS_ALLOW_UNSIGNED_WEBHOOKS,
        )

    def missing_fields(self) -> list:
        """Retourne les champs requis manquants pour créer une transaction."""
        required = {
            "PAYTABS_BASE_URL": self.base_url,
            "PAYTABS_SERVER_KEY": self.server_key,
            "PAYTABS_PROFILE_ID": self.profile_id,
            "PAYTABS_CALLBACK_URL": self.callback_url,
            "PAYTABS_RETURN_URL": self.return_url,
        }
        return [name for name, value in required.items() if not value]
