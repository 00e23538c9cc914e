import ssl
from typing import Optional

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import declarative_base
from medremind.core.config import settings


def normalize_database_url(url: str) -> str:
    # Render hands out postgres:// URLs; the async engine needs the driver name
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def build_ssl_context(verify: bool = True, cafile: Optional[str] = None) -> ssl.SSLContext:
    ssl_context = ssl.create_default_context(cafile=cafile)
    if not verify:
        # Managed hosts with self-signed certs: set DATABASE_SSL_VERIFY=false
        ssl_context.check_hostname = False
        ssl_context.verify_mode = ssl.CERT_NONE
    return ssl_context


def build_engine(url: str, echo: bool = False, ssl_verify: bool = True, ssl_cafile: Optional[str] = None):
    url = normalize_database_url(url)
    if url.startswith("sqlite"):
        return create_async_engine(url, future=True, echo=echo)

    return create_async_engine(
        url,
        future=True,
        echo=echo,
        pool_size=5,
        max_overflow=10,
        connect_args={"ssl": build_ssl_context(ssl_verify, ssl_cafile)},
    )


engine = build_engine(
    settings.database_url,
    echo=settings.database_echo,
    ssl_verify=settings.database_ssl_verify,
    ssl_cafile=settings.database_ssl_cafile,
)

AsyncSessionLocal = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

Base = declarative_base()

from medremind.db import models  # noqa: E402,F401  registers tables on Base


async def get_db():
    async with AsyncSessionLocal() as session:
        yield session
