"""Medbank — medical-education question bank backend.

FastAPI entry point with lifespan management, middleware and CORS.
"""

from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import select

from .api.router import api_router
from .config import get_config
from .database import close_engine, create_tables, get_session_factory
from .middleware.error_handler import register_error_handlers
from .middleware.request_id import RequestIDMiddleware
from .models.user import User
from .utils.logging import get_logger, setup_logging
from .utils.security import hash_password

VERSION = "1.0.0"

config = get_config()
setup_logging(
    debug=config.debug,
    log_dir=config.log_dir,
    log_max_bytes=config.log_max_bytes,
    log_backup_count=config.log_backup_count,
)
logger = get_logger("medbank.main")


async def _seed_admin(factory) -> None:
    """Create the configured admin account when no admin exists yet (idempotent)."""
    if not config.admin_email or not config.admin_password:
        return
    async with factory() as session:
        result = await session.execute(select(User).where(User.role == "admin").limit(1))
        if result.scalar_one_or_none() is not None:
            return
        admin = User(
            email=config.admin_email.strip().lower(),
            name="Administrator",
            password_hash=hash_password(config.admin_password),
            role="admin",
            is_verified=True,
            profile_completed=True,
        )
        session.add(admin)
        await session.commit()
    logger.info("default_admin_created", email=config.admin_email)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    logger.info("medbank_starting", host=config.host, port=config.port)

    if config.secret_key == "CHANGE_ME_IN_PRODUCTION":
        if not config.debug:
            raise RuntimeError(
                "INSECURE_SECRET_KEY: default secret_key detected in production mode. "
                "Set a strong, unique SECRET_KEY in .env before deploying."
            )
        logger.warning("insecure_secret_key", hint="set SECRET_KEY before deploying")

    await create_tables(config)
    await _seed_admin(get_session_factory(config))

    logger.info("medbank_started", app=config.app_name)

    yield

    logger.info("medbank_shutting_down")
    await close_engine()


app = FastAPI(
    title="MEDBANK",
    description="Question bank, discussions and admin analytics for medical students",
    version=VERSION,
    lifespan=lifespan,
)

register_error_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in config.cors_origins.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
)

# Added last so it runs first
app.add_middleware(RequestIDMiddleware)

app.include_router(api_router)


@app.get("/")
async def root():
    return {"name": config.app_name, "version": VERSION, "status": "operational"}


@app.get("/health")
async def health():
    """Liveness plus a database round-trip."""
    factory = get_session_factory(config)
    async with factory() as session:
        await session.execute(select(1))
    return {"status": "healthy", "version": VERSION}


def main():
    """Run the Medbank server."""
    uvicorn.run(
        "medbank.main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )


if __name__ == "__main__":
    main()
