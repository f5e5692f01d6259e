"""
ComicBookAI FastAPI Backend

Main application entry point with ASGI server.
"""

from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from comicbook import __version__
from comicbook.api.routers import books, health, stages
from comicbook.common import get_settings
from comicbook.common.logging import get_logger, setup_logging

logger = get_logger("main")
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting ComicBookAI API...")
    yield
    logger.info("Shutting down ComicBookAI API...")


app = FastAPI(
    title="ComicBookAI API",
    description="Educational comic book generation backend",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, tags=["Health"])
app.include_router(stages.router, prefix="/api", tags=["Stages"])
app.include_router(books.router, prefix="/api/books", tags=["Books"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "ComicBookAI API",
        "version": __version__,
        "status": "running",
    }


def run():
    """Run the server."""
    setup_logging(settings.log_level)
    uvicorn.run(
        "comicbook.api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
