"""CostKitchen - FastAPI Application.

Kitchen costing state core: cache-first sync, optimistic mutations,
financial projections and stock consumption.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from costkitchen.api import dashboard, pricing, session
from costkitchen.api.entities import expenses_router, ingredients_router, recipes_router
from costkitchen.core.config import settings
from costkitchen.core.errors import EntityNotFound, ValidationFailure
from costkitchen.dependencies import kitchen_session
from costkitchen.services.kitchen import KitchenSession

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    kitchen = app.dependency_overrides.get(kitchen_session, kitchen_session)()
    await kitchen.start()
    logger.info(f"{settings.APP_NAME} started")
    yield
    await kitchen.stop()


app = FastAPI(
    title=settings.APP_NAME,
    description="CostKitchen - Kitchen costing state core",
    version="1.0.0",
    debug=settings.DEBUG,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ValidationFailure)
async def validation_failure_handler(request: Request, exc: ValidationFailure) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": exc.errors},
    )


@app.exception_handler(EntityNotFound)
async def entity_not_found_handler(request: Request, exc: EntityNotFound) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"detail": str(exc)},
    )


# Include routers
app.include_router(session.router)
app.include_router(dashboard.router)
app.include_router(ingredients_router)
app.include_router(recipes_router)
app.include_router(expenses_router)
app.include_router(pricing.router)


@app.get("/")
async def root():
    """Service banner."""
    return {
        "service": settings.APP_NAME,
        "version": "1.0.0",
        "status": "operational",
    }


@app.get("/health")
async def health(kitchen: KitchenSession = Depends(kitchen_session)):
    """Detailed health check."""
    return {
        "status": "healthy",
        "online": await kitchen.connectivity.is_online() if kitchen.connectivity else True,
        "sync_state": kitchen.sync.state.value,
    }
