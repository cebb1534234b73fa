"""
ASGI entrypoint: expose `app` pour uvicorn / gunicorn (storefront.asgi:app).
"""
from storefront.app_setup.factory import create_app

app = create_app()
