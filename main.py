"""
Main entry point for the media engine service.
"""

import os

import uvicorn

if __name__ == "__main__":
    uvicorn.run(
        "media_engine.app.api:app",
        host=os.getenv("MEDIA_HOST", "0.0.0.0"),
        port=int(os.getenv("MEDIA_PORT", "8000")),
        reload=os.getenv("MEDIA_RELOAD", "false").lower() == "true",
    )
