#server.py
from datetime import datetime, timezone
import os
from fastapi import FastAPI, HTTPException, Request, status
from cachetools import TTLCache
from contextlib import asynccontextmanager
import logging

from fastapi.staticfiles import StaticFiles
from watchdog.observers import Observer

from ConfigChat import ConfigChangeHandler, get_config

# In-memory rate limiter
class InMemoryRateLimiter:
    def __init__(self):
        self.cache = TTLCache(maxsize=10000, ttl=3600)

    async def check_limit(self, key: str, times: int, seconds: int):
        current_time = datetime.now(timezone.utc)
        entry = self.cache.get(key)

        if entry is None:
            self.cache[key] = (1, current_time)
            return

        count, first_request_time = entry
        time_elapsed = (current_time - first_request_time).total_seconds()

        if time_elapsed > seconds:
            self.cache[key] = (1, current_time)
        else:
            if count >= times:
                retry_after = seconds - time_elapsed
                raise HTTPException(
                    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                    detail=f"Too many requests. Try again in {round(retry_after, 2)} seconds."
                )
            self.cache[key] = (count + 1, first_request_time)

rate_limiter = InMemoryRateLimiter()

def rate_limiter_dependency(times: int, seconds: int):
    async def dependency(request: Request):
        key = f"{request.client.host if request.client else 'unknown'}:{request.url.path}"
        await rate_limiter.check_limit(key, times, seconds)
    return dependency

config = get_config()
logger = logging.getLogger("Server")
logger.setLevel(logging.DEBUG)


def connect_routes_tools_fastapi(app: FastAPI):
    """
    Includes the message router and serves uploaded media from UPLOADS_DIR.
    """
    from src.messaging.messaging_router import router as messaging_router

    app.include_router(messaging_router)

    uploads_dir = config.get("UPLOADS_DIR")
    os.makedirs(uploads_dir, exist_ok=True)
    app.mount("/uploads", StaticFiles(directory=uploads_dir), name="uploads")


def start_config_watcher() -> Observer:
    """Reloads the configuration whenever its file changes on disk."""
    handler = ConfigChangeHandler(config.paths, config.reload)
    observer = Observer()
    for directory in {os.path.dirname(p) for p in config.paths}:
        observer.schedule(handler, directory, recursive=False)
    observer.start()
    logger.info(f"Watching configuration files: {', '.join(config.paths)}")
    return observer


@asynccontextmanager
async def app_lifespan(app: FastAPI):
    from common import setup_databases
    logger.info("Server is starting up...")

    await setup_databases()
    observer = start_config_watcher()

    # Connect routes immediately so the server is responsive
    connect_routes_tools_fastapi(app)

    yield

    logger.info("Server is shutting down...")
    observer.stop()
    observer.join(timeout=5)
    logger.info("Configuration watcher stopped.")

app = FastAPI(lifespan=app_lifespan)
