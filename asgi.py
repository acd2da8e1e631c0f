"""
asgi.py -- Application assembly for CloudPortal.

This is the ONLY file that imports from both api/ and web/. It joins the two
independent layers into a single ASGI app without coupling them to each other.

Run with:  uvicorn asgi:app --reload
           python main.py
"""

from pathlib import Path

from fastapi.staticfiles import StaticFiles

from api.main import STATIC_PATH, app
from web.routes import router as web_router

app.include_router(web_router, tags=["Web UI"])
app.mount(STATIC_PATH, StaticFiles(directory=Path(__file__).parent / "web" / "static"), name="public")
