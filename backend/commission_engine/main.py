import logging
import traceback
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from commission_engine.core.config import settings
from commission_engine.api import commissions, rules

logger = logging.getLogger(__name__)


def seed_demo_data():
    """Seed a demo admin, salesperson and rule set. Idempotent."""
    from datetime import datetime, timezone
    from decimal import Decimal
    from commission_engine.core.database import SessionLocal
    from commission_engine.models.employee import Employee, EmployeeRole
    from commission_engine.models.commission import CommissionRule
    from commission_engine.schemas.commission import CommissionRuleCreate, TierSpec
    from commission_engine.services.rule_store import RuleStoreService

    db = SessionLocal()
    try:
        admin = db.query(Employee).filter(Employee.email == "admin@courier.example").first()
        if not admin:
            admin = Employee(
                email="admin@courier.example",
                full_name="System Administrator",
                employee_number="ADMIN001",
                role=EmployeeRole.ADMIN.value,
            )
            db.add(admin)
            logger.info("Admin employee created")

        sales = db.query(Employee).filter(Employee.email == "sales@courier.example").first()
        if not sales:
            sales = Employee(
                email="sales@courier.example",
                full_name="Sam Seller",
                employee_number="SALES001",
                role=EmployeeRole.SALES.value,
            )
            db.add(sales)
            logger.info("Sales employee created")
        db.commit()

        has_rules = db.query(CommissionRule).filter(CommissionRule.employee_id == sales.id).first()
        if not has_rules:
            store = RuleStoreService(db)
            start = datetime(2026, 1, 1, tzinfo=timezone.utc)
            rules = [
                CommissionRuleCreate(
                    employee_id=sales.id, name="Express shipments 10%", type="percentage",
                    rate=Decimal("10"), service_types=["express"], min_margin_percentage=Decimal("15"),
                    priority=10, effective_from=start, auto_approve=True,
                ),
                CommissionRuleCreate(
                    employee_id=sales.id, name="Margin brackets", type="tiered", basis="margin",
                    tiers=[
                        TierSpec(upper_bound=Decimal("1000"), rate=Decimal("5")),
                        TierSpec(upper_bound=Decimal("5000"), rate=Decimal("8")),
                        TierSpec(upper_bound=None, rate=Decimal("12")),
                    ],
                    priority=5, effective_from=start,
                ),
                CommissionRuleCreate(
                    employee_id=sales.id, name="Quote bonus", type="fixed", rate=Decimal("25"),
                    min_order_value=Decimal("500"), effective_from=start,
                ),
            ]
            for rule_data in rules:
                store.create_rule(rule_data, actor="system:seed")
                logger.info(f"Created rule {rule_data.name}")

        logger.info("Database seeded successfully")
    except Exception as e:
        logger.error(f"Error seeding data: {e}")
        db.rollback()
    finally:
        db.close()


def init_database():
    """Create tables on startup, seeding demo data when enabled."""
    from commission_engine.core.database import engine, Base
    from commission_engine import models  # noqa: F401  register every table

    logger.info("Creating database tables...")
    Base.metadata.create_all(bind=engine)

    if settings.SEED_DEMO_DATA:
        seed_demo_data()


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_database()
    yield


# Disable API docs in production
docs_url = "/docs" if settings.ENVIRONMENT != "production" else None
redoc_url = "/redoc" if settings.ENVIRONMENT != "production" else None

app = FastAPI(
    title=settings.APP_NAME,
    description="Commission rules, calculation and payout lifecycle for courier sales staff",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=docs_url,
    redoc_url=redoc_url,
)


# Global exception handler - always return JSON (never plain text)
@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    logger.error("Unhandled exception: %s\n%s", exc, traceback.format_exc())
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal error"},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request, exc):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
    )


# CORS - local dev plus the configured frontend
allowed_origins = [
    "http://localhost:3000",
    "http://frontend:3000",
]
if settings.FRONTEND_URL and settings.FRONTEND_URL not in allowed_origins:
    allowed_origins.append(settings.FRONTEND_URL)
    if not settings.FRONTEND_URL.startswith("https"):
        allowed_origins.append(settings.FRONTEND_URL.replace("http://", "https://"))

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "commission-engine", "version": "1.0.0"}


@app.get("/")
def root():
    return {"message": settings.APP_NAME, "version": "1.0.0", "docs": docs_url}


# Include routers
app.include_router(commissions.router)
app.include_router(rules.router)
