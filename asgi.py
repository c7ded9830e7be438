"""
asgi.py -- Application assembly for the Lalisure auth service.

This is the ONLY file that imports both api/main.py and web/routes.py. It
joins the JSON API and the server-rendered pages into a single ASGI app.
api/main.py knows nothing about web/.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app
from web.routes import router as web_router

# Mounted here, not in api/main.py, so the API can be served on its own.
app.include_router(web_router, tags=["Web UI"])
