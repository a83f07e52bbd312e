import asyncio
import logging
import sys
import signal


# Uvicorn and project-specific imports
from uvicorn import Config, Server
from ConfigChat import get_config
from common import REQUIRED_TABLES, check_database_requirements, setup_databases
from server import app


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

# Silence noisy third-party loggers
logging.getLogger("watchdog").setLevel(logging.INFO)
logging.getLogger("aiosqlite").setLevel(logging.INFO)


# --- Global Shutdown Event ---
shutdown_event = asyncio.Event()
_main_loop: asyncio.AbstractEventLoop = None

def signal_handler(sig, frame):
    """Sets the shutdown event when a signal is received."""
    logger.warning(f"Caught signal {sig}. Initiating graceful shutdown...")
    if _main_loop is not None:
        _main_loop.call_soon_threadsafe(shutdown_event.set)


# --- Logger Setup ---
logger = logging.getLogger("Startup")
logger.setLevel(logging.DEBUG)

# --- Phase 1: Initial Async Check ---
async def run_initial_setup_and_check() -> bool:
    """
    Creates all tables and verifies the database is usable.
    Returns: True if every required table is present.
    """
    logger.info("--- Phase 1: Initializing Database ---")
    await setup_databases()
    return await check_database_requirements(REQUIRED_TABLES)


# --- Main Async Orchestrator ---
async def main():
    """The main asynchronous entry point for the entire application."""
    global _main_loop
    _main_loop = asyncio.get_running_loop()
    settings = get_config()

    if not await run_initial_setup_and_check():
        raise SystemExit("Database setup failed. Cannot start the application.")

    logger.info("--- Phase 2: Starting FastAPI Server ---")
    config = Config(
        app=app,
        host=settings.get("SERVER_HOST", "0.0.0.0"),
        port=settings.get("SERVER_PORT", 8000),
        log_level="info",
        reload=False,
        lifespan="on"
    )
    server = Server(config)

    # Run the server in a background task
    server_task = asyncio.create_task(server.serve())

    # Wait for the shutdown signal (e.g., from CTRL+C)
    await shutdown_event.wait()

    logger.info("Shutdown signal received. Telling Uvicorn server to exit.")
    server.should_exit = True

    await server_task
    logger.info("Server task has completed. Main application will now exit.")


# --- Main Synchronous Entry Point ---
if __name__ == "__main__":
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        asyncio.run(main())
    except (SystemExit, KeyboardInterrupt) as e:
        logger.error(f"Application stopped: {e}")
    except Exception as e:
        logger.critical(f"An unhandled exception occurred during startup: {e}", exc_info=True)
        sys.exit(1)
    finally:
        logger.info("Application has finished.")
