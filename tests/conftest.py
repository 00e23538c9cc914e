from datetime import date, datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from medremind.db.database import Base
from medremind.db.schema import MedicationCreate
from medremind.medications.services import MedicationService
from medremind.users.directory import UserDirectory

TODAY = date(2025, 3, 10)


class FixedClock:
    """Clock that only moves when the test says so."""

    def __init__(self, current: datetime):
        self.current = current

    def now(self) -> datetime:
        return self.current

    def set(self, hour: int, minute: int = 0, day: date = TODAY) -> None:
        self.current = datetime(day.year, day.month, day.day, hour, minute)

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def clock():
    return FixedClock(datetime(TODAY.year, TODAY.month, TODAY.day, 9, 3))


# ===================== DATABASE ======================

@pytest.fixture
async def engine(anyio_backend, tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'medremind-test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# ===================== FACTORIES ======================

@pytest.fixture
def make_user(session_factory):
    async def _make(email="pat@example.com", name="Pat", role="patient"):
        async with session_factory() as session:
            return await UserDirectory(session).create_user(
                email=email,
                name=name,
                password_hash="not-a-real-hash",
                role=role,
            )

    return _make


@pytest.fixture
def make_medication(session_factory, clock):
    async def _make(
        user,
        times=("09:00",),
        name="Metformin",
        dosage="500 mg",
        start_date=None,
        end_date=None,
        quantity_remaining=30,
        quantity_threshold=5,
    ):
        data = MedicationCreate(
            name=name,
            dosage=dosage,
            times=list(times),
            start_date=start_date or TODAY,
            end_date=end_date or TODAY + timedelta(days=30),
            quantity_remaining=quantity_remaining,
            quantity_threshold=quantity_threshold,
        )
        async with session_factory() as session:
            return await MedicationService(session, clock).add_medication(user.id, data)

    return _make
