"""ErrandWork Backend API - FastAPI application."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from errandwork import __version__

from .config import get_settings
from .logging_config import configure_logging
from .rate_limit import limiter
from .routes import bookings_router, jobs_router, maintenance_router, wallets_router

settings = get_settings()
configure_logging(settings.log_level)

app = FastAPI(
    title="ErrandWork Backend API",
    description="Job marketplace with escrowed payments",
    version=__version__,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Authorization", "Content-Type", "X-Cron-Key"],
)

app.include_router(jobs_router)
app.include_router(bookings_router)
app.include_router(wallets_router)
app.include_router(maintenance_router)


@app.get("/")
async def root():
    """Liveness only; ``/maintenance/health`` reports on bookings and the ledger."""
    return {"service": "errandwork-backend", "version": __version__, "status": "ok"}
