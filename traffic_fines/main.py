import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from traffic_fines.core.config import settings
from traffic_fines.core.database import engine, init_db
from traffic_fines.core.logging import configure_logging
from traffic_fines.core.exceptions import register_exception_handlers
from traffic_fines.middleware import CorrelationIdMiddleware

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.APP_NAME)

# Middleware: correlation id
app.add_middleware(CorrelationIdMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Route imports
from traffic_fines.api.health import router as health_router  # noqa: E402
from traffic_fines.api.v1 import admin as v1_admin  # noqa: E402
from traffic_fines.api.v1 import auth as v1_auth  # noqa: E402
from traffic_fines.api.v1 import fines as v1_fines  # noqa: E402
from traffic_fines.api.v1 import payments as v1_payments  # noqa: E402
from traffic_fines.api.v1 import users as v1_users  # noqa: E402
from traffic_fines.api.v1 import violations as v1_violations  # noqa: E402

# Register routers
app.include_router(health_router, prefix="/api", tags=["health"])

# v1 API routes
app.include_router(v1_auth.router, prefix="/api/v1")
app.include_router(v1_users.router, prefix="/api/v1")
app.include_router(v1_admin.router, prefix="/api/v1")
app.include_router(v1_violations.router, prefix="/api/v1")
app.include_router(v1_fines.router, prefix="/api/v1")
app.include_router(v1_payments.router, prefix="/api/v1")


# Exception handlers
register_exception_handlers(app)


@app.on_event("startup")
async def on_startup():
    logger.info("Starting app", extra={"app": settings.APP_NAME})
    if settings.MIGRATE_ON_START:
        logger.info("MIGRATE_ON_START enabled: creating tables")
        await init_db()


@app.on_event("shutdown")
async def on_shutdown():
    logger.info("Shutting down")
    await engine.dispose()
