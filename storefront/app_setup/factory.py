"""
Factory d'application pour les entrypoints (storefront.asgi, tests).
Ordonne les étapes d'initialisation de manière lisible et testable.
"""
from fastapi import FastAPI
from storefront import __version__
from storefront.utils.csrf import register_csrf_middleware
from .lifespan import lifespan
from .middlewares import register_basic_middlewares, register_no_cache_middleware, register_security_middleware
from .exceptions import register_exception_handlers
from .routers import register_routers

def create_app() -> FastAPI:
    """
    Construit l'app FastAPI avec le lifespan et enregistre:
      - middlewares: CSRF, sécurité, no-cache puis session/CORS/TrustedHost/proxy (exécutés en premier)
      - gestionnaires d'exceptions
      - tous les routers (API, admin, health)
    """
    app = FastAPI(title="Storefront API", version=__version__, lifespan=lifespan)
    register_csrf_middleware(app)
    register_security_middleware(app)
    register_no_cache_middleware(app)
    register_basic_middlewares(app)
    register_exception_handlers(app)
    register_routers(app)
    return app
