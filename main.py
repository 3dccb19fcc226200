import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from edufund.core.database import AsyncSessionLocal, async_engine, close_redis, create_tables, get_redis
from edufund.core.config import settings
from edufund.core.exceptions import EduFundError, edufund_error_handler
from edufund.core.locks import build_lock_manager
from edufund.modules.agreements.reconciliation import EscrowReconciler
from edufund.modules.agreements.repayments import RepaymentListener
from edufund.modules.ledger.gateway import XRPLGateway
from edufund.modules.metadata.publisher import PinataPublisher
from edufund.modules.loan_requests.router import router as loan_requests_router
from edufund.modules.offers.router import router as offers_router
from edufund.modules.agreements.router import router as agreements_router

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events"""
    # Startup
    # Create all tables (for development - use Alembic in production)
    await create_tables(async_engine)

    redis = await get_redis() if settings.LOCK_BACKEND == "redis" else None
    app.state.lock_manager = build_lock_manager(redis)
    app.state.ledger_gateway = XRPLGateway()
    app.state.metadata_publisher = PinataPublisher()

    listener = reconciler = None
    if settings.ENABLE_BACKGROUND_TASKS:
        listener = RepaymentListener(AsyncSessionLocal, app.state.ledger_gateway, app.state.lock_manager)
        reconciler = EscrowReconciler(
            AsyncSessionLocal, app.state.ledger_gateway, app.state.lock_manager,
            on_repaying=listener.notify_watchlist_changed,
        )
        listener.start()
        reconciler.start()
    else:
        logger.info("Background tasks disabled")

    yield

    # Shutdown
    if reconciler is not None:
        await reconciler.stop()
    if listener is not None:
        await listener.stop()
    await close_redis()
    await async_engine.dispose()


app = FastAPI(
    title=f"{settings.APP_NAME} API",
    description="Tuition sponsorship marketplace settled on the XRP Ledger",
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(EduFundError, edufund_error_handler)

# Include routers
app.include_router(loan_requests_router)
app.include_router(offers_router)
app.include_router(agreements_router)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "ok",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT
    }


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": f"Welcome to {settings.APP_NAME} API",
        "version": settings.APP_VERSION,
        "docs": "/docs"
    }
