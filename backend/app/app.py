"""FastAPI application."""

import argparse
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

parser = argparse.ArgumentParser()
parser.add_argument("--docker", action="store_true", help="Running with docker")
parser.add_argument("--host", default="127.0.0.1", help="Application host.")
parser.add_argument("--port", default="8000", help="Application port.")
parser.add_argument(
    "--reload",
    required=False,
    help="Enable auto-reload for development purposes.",
)
args, _ = parser.parse_known_args()
if not args.docker:
    from dotenv import load_dotenv

    load_dotenv("../../.env")

# settings are read at import time, after the .env file is loaded
from thread_core.configs import settings  # noqa: E402
from thread_core.controllers.conversations_controllers import (  # noqa: E402
    conversations_router,
)
from thread_core.controllers.messages_controllers import messages_router  # noqa: E402
from thread_core.logger_config import get_logger  # noqa: E402
from thread_core.repositories.threads.database import Base, engine  # noqa: E402
from thread_core.repositories.threads.models import (  # noqa: E402,F401
    conversations_model,
    messages_model,
)
from thread_core.agents.lib_agent.utils import db_permission_models  # noqa: E402,F401
from thread_core.services.threads.thread_service import get_thread_service  # noqa: E402

from startup import recover_unfinished_messages  # noqa: E402

get_logger()
logger = get_logger("app")

logger.info("Creating database tables...")
Base.metadata.create_all(bind=engine)
logger.info("Database tables created successfully!")

logger.info("Recovering unfinished generations...")
recover_unfinished_messages(get_thread_service())


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    yield
    logger.info("Flushing pending Redis events...")
    get_thread_service().event_bus.close()


logger.info("Starting FastAPI application...")
app = FastAPI(
    lifespan=lifespan,
    title="Thread Core API",
    root_path=settings.ROOT_PATH_BACKEND,
    description="Conversations, streamed assistant messages and tool permissions",
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(conversations_router)
app.include_router(messages_router)


@app.get("/", response_description="Api healthcheck")  # type: ignore[misc]
async def index() -> Dict[str, str]:
    """Define a route for handling HTTP GET requests to the root URL ("/")."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app:app", host=args.host, port=int(args.port), reload=(args.reload or False)
    )
