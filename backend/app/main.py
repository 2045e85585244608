import os
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from app.core.config import settings
from app.core.exceptions import CommissionError
from app.api import commissions

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

DEFAULT_RATE_TYPES = [
    {"name": "Local", "description": "Verification within city limits"},
    {"name": "Outstation", "description": "Verification outside city limits"},
    {"name": "OGL", "description": "Out of geographical limits"},
]


def seed_reference_data(db):
    """Default rate types and the bootstrap admin. Safe to run repeatedly."""
    from app.models.rate import RateType
    from app.models.user import User, UserRole

    for rt in DEFAULT_RATE_TYPES:
        if not db.query(RateType).filter(RateType.name == rt["name"]).first():
            db.add(RateType(**rt))
            logger.info(f"Created rate type {rt['name']}")

    if settings.SEED_ADMIN_EMAIL:
        admin = db.query(User).filter(User.username == "admin").first()
        if not admin:
            db.add(User(
                email=settings.SEED_ADMIN_EMAIL,
                username="admin",
                full_name="System Administrator",
                role=UserRole.ADMIN.value,
            ))
            logger.info("Admin user created")
    db.commit()


def init_database():
    """Create tables and seed reference data on startup."""
    from app.core.database import engine, Base, SessionLocal
    import app.models  # noqa: F401  register all tables

    logger.info("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    logger.info("Tables created successfully")

    db = SessionLocal()
    try:
        seed_reference_data(db)
        logger.info("Database seeded successfully")
    except Exception as e:
        logger.error(f"Error seeding data: {e}")
        db.rollback()
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_database()
    yield


# Disable API docs in production
docs_url = "/docs" if settings.ENVIRONMENT != "production" else None
redoc_url = "/redoc" if settings.ENVIRONMENT != "production" else None

app = FastAPI(
    title=settings.APP_NAME,
    description="Field verification CRM - commission assignment, calculation and payout API",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=docs_url,
    redoc_url=redoc_url,
)


@app.exception_handler(CommissionError)
async def commission_error_handler(request, exc: CommissionError):
    logger.info(f"{request.method} {request.url.path} -> {exc.code}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


# Global exception handler - always return JSON (never plain text)
@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    import traceback
    logger.error("Unhandled exception: %s\n%s", exc, traceback.format_exc())
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal error", "code": "INTERNAL_ERROR"},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request, exc):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


# CORS - CRM frontend + local dev
allowed_origins = [
    "http://localhost:3000",
    "http://localhost:5173",
]
frontend_url = os.environ.get("FRONTEND_URL", "")
if frontend_url and frontend_url not in allowed_origins:
    allowed_origins.append(frontend_url)

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "crm-commission-engine", "version": "1.0.0"}


# Include routers
app.include_router(commissions.router)
