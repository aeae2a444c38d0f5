"""
aiam API - Playlist Media Service

Handles:
- Narration cache (per affirmation and voice, generated on demand)
- Voice catalog & Text-to-Speech
- Playlist readiness checks
- Playlist download (audio with gaps, background music, image slideshow video)
"""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from aiam.config import settings
from aiam.errors import AiamError
from aiam.routes import (
    affirmation_routes,
    playlist_routes,
    tts_routes,
)

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("aiam")

app = FastAPI(
    title="aiam API",
    version="1.0.0",
    description="Affirmation narration, playlist playback and export service"
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AiamError)
async def aiam_error_handler(request: Request, exc: AiamError):
    log = logger.error if exc.status_code >= 500 else logger.info
    log("%s %s -> %d [%s]: %s", request.method, request.url.path, exc.status_code, exc.label, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Include routers
app.include_router(tts_routes.router, prefix="", tags=["Voices"])
app.include_router(affirmation_routes.router, prefix="/affirmations", tags=["Affirmations"])
app.include_router(playlist_routes.router, prefix="/playlist", tags=["Playlists"])

@app.get("/")
def root():
    return {
        "service": "aiam-api",
        "version": "1.0.0",
        "description": "Affirmation narration, playlist playback and export service"
    }

@app.get("/health")
def health():
    return {"status": "healthy", "service": "aiam-api"}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
