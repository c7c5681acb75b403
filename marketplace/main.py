import logging
from fastapi import FastAPI, Request
from contextlib import asynccontextmanager

from marketplace.config import settings
from marketplace.database import create_tables
from marketplace.presentation.api import orders_router, admin_router, payment_router

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)
request_logger = logging.getLogger("marketplace.requests")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Управление жизненным циклом приложения"""
    if settings.CREATE_TABLES:
        await create_tables()
        logger.info("Таблицы созданы")

    yield

    logger.info("Приложение останавливается...")


app = FastAPI(
    title="Marketplace Order Service",
    description="Заказы и сверка оплат маркетплейса",
    version="1.0.0",
    lifespan=lifespan
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    response = await call_next(request)
    request_logger.info(f"{request.url.path} {response.status_code}")
    return response


app.include_router(orders_router, prefix="/api")
app.include_router(admin_router, prefix="/api")
app.include_router(payment_router, prefix="/api")


@app.get("/")
async def root():
    return {"message": "Marketplace Order Service работает"}


@app.get("/health")
async def health():
    return {"status": "healthy"}
