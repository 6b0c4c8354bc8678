"""
asgi.py -- Assembles the Inkpost ASGI app.

api/main.py builds the FastAPI app: the /api/v1 routers, the error envelope
and the middleware stack, including route_guard, which sends visitors of
/admin, /profile and /studio to a login page. The guard only classifies
paths, so the pages it protects must be mounted on the same app. This file
adds the Jinja2 page router from web/routes.py to it.

api/ and web/ do not import each other; both depend on auth/ for sessions.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app
from web.routes import router as web_router

app.include_router(web_router, tags=["Web UI"])
