import asyncio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn
from dotenv import load_dotenv
from contextlib import asynccontextmanager

from graphbug.api.fastapi import FastAPIApp
from graphbug.utils.exception import add_exception_handlers
from graphbug.core.config import settings
from graphbug.core.database import init_db
from graphbug.utils.logging.otel_logger import logger

load_dotenv()


async def init_db_with_retry(
    max_retries: int = 10,
    initial_delay: float = 2.0,
    max_delay: float = 30.0,
) -> None:
    """Create the schema, waiting for the database to accept connections.

    Uses exponential backoff so the server can start before the database
    container is ready.

    Args:
        max_retries: Maximum number of connection attempts.
        initial_delay: Initial delay between retries (seconds).
        max_delay: Maximum delay between retries (seconds).

    Raises:
        Exception: If connection fails after all retries.
    """
    delay = initial_delay
    last_exception = None

    for attempt in range(1, max_retries + 1):
        try:
            logger.info(f"Attempting database initialization (attempt {attempt}/{max_retries})...")
            await asyncio.to_thread(init_db)
            logger.info("Database schema is ready")
            return
        except Exception as e:
            last_exception = e
            if attempt < max_retries:
                logger.warning(
                    f"Database initialization attempt {attempt}/{max_retries} failed: {e}. "
                    f"Retrying in {delay:.1f}s..."
                )
                await asyncio.sleep(delay)
                delay = min(delay * 1.5, max_delay)
            else:
                logger.error(
                    f"Failed to initialize the database after {max_retries} attempts. "
                    f"Last error: {e}"
                )

    raise last_exception


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting up {settings.app_name}")

    try:
        await init_db_with_retry()
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise e

    yield

    logger.info(f"Shutting down {settings.app_name}")

app_instance = FastAPIApp(lifespan=lifespan)
app = app_instance.get_app()

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

add_exception_handlers(app, logger)

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000, log_level="info")
