"""
FastAPI应用主入口
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from api.middleware import LoggingMiddleware, RequestIDMiddleware
from api.routes import admin, cart, checkout, orders, payments, subscriptions, wallet
from application.services.reconciler import PaymentReconciler
from core.config import settings
from core.exceptions import register_exception_handlers
from core.logging_config import configure_logging, get_logger
from core.response import success_response
from infrastructure.cache import init_redis_cache, shutdown_redis_cache
from infrastructure.database import create_tables
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


configure_logging()
logger = get_logger(__name__)

API_PREFIX = "/api/v1"


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.DEBUG:
        # 生产环境使用 alembic upgrade head
        await create_tables()
        logger.info("database_tables_created")

    if settings.redis.url:
        try:
            await init_redis_cache()
        except (RedisError, OSError) as exc:
            logger.error("redis_cache_init_failed", error=str(exc))

    # 补齐上次进程退出前未同步的订单状态
    try:
        report = await PaymentReconciler(uow_factory=SQLAlchemyUnitOfWork).run_all()
        logger.info("startup_reconcile_completed", **report)
    except (SQLAlchemyError, OSError) as exc:
        logger.error("startup_reconcile_failed", error=str(exc), error_type=type(exc).__name__)

    yield

    if settings.redis.url:
        await shutdown_redis_cache()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
    description="超市结账核心：订单/支付状态机与幂等履约",
)

# 中间件后添加先执行：RequestID -> Logging -> CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(LoggingMiddleware)
app.add_middleware(RequestIDMiddleware)

register_exception_handlers(app)

for module in (cart, checkout, payments, orders, subscriptions, wallet, admin):
    app.include_router(module.router, prefix=API_PREFIX)


@app.get("/", tags=["Root"])
async def root():
    return success_response(
        data={"name": settings.PROJECT_NAME, "version": settings.VERSION, "docs": "/docs"},
        message="Welcome",
    )


@app.get("/health", tags=["Health"])
async def health_check():
    return success_response(data={"status": "healthy"}, message="OK")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info",
    )
