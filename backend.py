"""Rengu: kanji study assistant backed by a hosted language model."""
from pathlib import Path

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from log import get_logger
from routes import router

logger = get_logger("rengu.backend")

STATIC_DIR = Path(__file__).parent / "static"

app = FastAPI(title="Rengu", summary="Kanji review, search and handwriting lookup")
app.include_router(router)

app.mount("/", StaticFiles(directory=STATIC_DIR, html=True), name="static")
logger.info("App ready", extra={"component": "backend", "detail": str(STATIC_DIR)})


if __name__ == "__main__":
    import os

    import uvicorn

    uvicorn.run(app, host=os.environ.get("RENGU_HOST", "127.0.0.1"),
                port=int(os.environ.get("RENGU_PORT", "8000")))
