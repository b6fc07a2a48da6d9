"""
数据库配置和连接管理
"""
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.engine import make_url
from typing import Optional

from core.config import settings
from infrastructure.models import Base


def _build_async_url(database_url: str) -> str:
    """确保数据库URL使用异步驱动"""
    url = make_url(database_url)
    drivername = url.drivername

    if "+" in drivername:
        return database_url

    driver_map = {
        "postgresql": "postgresql+asyncpg",
        "postgres": "postgresql+asyncpg",
        "sqlite": "sqlite+aiosqlite",
    }

    if drivername not in driver_map:
        raise ValueError(f"不支持的数据库驱动: {drivername}. 请使用 async 驱动或更新 DATABASE__URL")

    return str(url.set(drivername=driver_map[drivername]))


def build_engine(database_url: str, *, echo: bool = False) -> AsyncEngine:
    """创建异步引擎；SQLite 设置 busy timeout，使并发写入排队而不是立即失败"""
    url = _build_async_url(database_url)
    connect_args = {}
    if make_url(url).get_backend_name() == "sqlite":
        connect_args["timeout"] = 30
    return create_async_engine(url, echo=echo, future=True, connect_args=connect_args)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=bind, expire_on_commit=False)


engine = build_engine(settings.database.url, echo=settings.DEBUG)

AsyncSessionLocal = build_session_factory(engine)


async def create_tables(bind: Optional[AsyncEngine] = None):
    """根据 models 中定义的所有模型创建对应的数据库表（开发/测试环境）"""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

