from __future__ import annotations

from sqlalchemy import (
    Column,
    String,
    Integer,
    Float,
    DateTime,
    Text,
    text,
)
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def make_engine(database_url: str) -> AsyncEngine:
    return create_async_engine(database_url, echo=False, future=True)


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_models(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

# ----------------------------------------------------------------------------
# DB Models
# ----------------------------------------------------------------------------
class UserModel(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    uid = Column(String(64), unique=True, index=True, nullable=False)
    name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP"))


class ContributionModel(Base):
    __tablename__ = "contributions"
    id = Column(Integer, primary_key=True)
    year = Column(Integer, nullable=False, index=True)
    name = Column(String(120), nullable=False)
    amount = Column(Float, nullable=False)
    date = Column(DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP"))


class ExpenseModel(Base):
    __tablename__ = "expenses"
    id = Column(Integer, primary_key=True)
    year = Column(Integer, nullable=False, index=True)
    reason = Column(String(255), nullable=False)
    amount = Column(Float, nullable=False)
    category = Column(String(32), nullable=False)
    date = Column(DateTime, nullable=False)


class ProgramModel(Base):
    __tablename__ = "programs"
    id = Column(Integer, primary_key=True)
    year = Column(Integer, nullable=False, index=True)
    name = Column(String(120), nullable=False)
    organizer = Column(String(120), nullable=False)
    budget = Column(Float, nullable=False, default=0.0)
    notes = Column(Text, nullable=True)
    updated_at = Column(DateTime, nullable=True)
