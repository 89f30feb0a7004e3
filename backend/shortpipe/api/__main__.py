"""API server entry point for python -m shortpipe.api"""
import uvicorn
from shortpipe.config import settings

if __name__ == "__main__":
    uvicorn.run(
        "shortpipe.api.app:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=False,
    )
