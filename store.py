"""Year-partitioned record stores over the async SQLAlchemy session."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, List, Mapping, Type, Union

import pydantic
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.sql import select

from database import ContributionModel, ExpenseModel, ProgramModel
from errors import NotFound, StoreUnavailable, ValidationError
from schemas import (
    ContributionIn,
    ContributionOut,
    ExpenseIn,
    ExpenseOut,
    ProgramIn,
    ProgramOut,
    ProgramPatch,
)

logger = logging.getLogger(__name__)

Fields = Union[Mapping[str, Any], BaseModel]


def check_year(year: Any) -> int:
    if isinstance(year, bool) or not isinstance(year, int) or year < 1:
        raise ValidationError(f"Invalid festival year: {year!r}")
    return year


def validate_fields(schema: Type[BaseModel], fields: Fields) -> BaseModel:
    """Coerce ``fields`` into ``schema`` or raise the store's ValidationError."""
    if isinstance(fields, schema):
        return fields
    if isinstance(fields, BaseModel):
        fields = fields.model_dump(exclude_unset=True)
    try:
        return schema.model_validate(fields)
    except pydantic.ValidationError as exc:
        details = [{"loc": list(err["loc"]), "msg": err["msg"]} for err in exc.errors()]
        raise ValidationError(f"Invalid {schema.__name__} fields", details=details) from exc


def _naive_utc(value: datetime) -> datetime:
    # DateTime columns are stored without an offset; keep everything in UTC
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class RecordStore:
    """Base adapter for one record kind.

    Subclasses name the ORM model, the input/output schemas and the list
    ordering. Every read is filtered on ``year``; every create stamps it.
    """

    model: Any = None
    schema_in: Type[BaseModel] = BaseModel
    schema_out: Type[BaseModel] = BaseModel
    kind = "record"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    def ordering(self) -> tuple:
        return (self.model.date.desc(), self.model.id.desc())

    def _unavailable(self, action: str, exc: Exception) -> StoreUnavailable:
        logger.error("Could not %s %s: %s", action, self.kind, exc)
        return StoreUnavailable(f"Could not {action} {self.kind}s, please try again")

    async def list(self, year: int) -> List[BaseModel]:
        year = check_year(year)
        query = select(self.model).where(self.model.year == year).order_by(*self.ordering())
        try:
            async with self._session_factory() as session:
                result = await session.execute(query)
                rows = result.scalars().all()
        except (SQLAlchemyError, OSError) as exc:
            raise self._unavailable("load", exc) from exc
        return [self.schema_out.model_validate(row) for row in rows]

    def _row_values(self, payload: BaseModel) -> dict:
        values = payload.model_dump(exclude_none=True)
        if isinstance(values.get("date"), datetime):
            values["date"] = _naive_utc(values["date"])
        return values

    async def create(self, year: int, fields: Fields) -> BaseModel:
        year = check_year(year)
        payload = validate_fields(self.schema_in, fields)
        row = self.model(year=year, **self._row_values(payload))
        try:
            async with self._session_factory() as session:
                session.add(row)
                await session.commit()
                await session.refresh(row)
        except (SQLAlchemyError, OSError) as exc:
            raise self._unavailable("save", exc) from exc
        logger.info("Stored %s %s for %s", self.kind, row.id, year)
        return self.schema_out.model_validate(row)


class ContributionStore(RecordStore):
    model = ContributionModel
    schema_in = ContributionIn
    schema_out = ContributionOut
    kind = "contribution"


class ExpenseStore(RecordStore):
    model = ExpenseModel
    schema_in = ExpenseIn
    schema_out = ExpenseOut
    kind = "expense"


class ProgramStore(RecordStore):
    model = ProgramModel
    schema_in = ProgramIn
    schema_out = ProgramOut
    kind = "program"

    def ordering(self) -> tuple:
        return (ProgramModel.name.asc(), ProgramModel.id.asc())

    async def get(self, program_id: int) -> ProgramOut:
        try:
            async with self._session_factory() as session:
                row = await session.get(ProgramModel, program_id)
        except (SQLAlchemyError, OSError) as exc:
            raise self._unavailable("load", exc) from exc
        if row is None:
            raise NotFound(f"Program {program_id} does not exist")
        return ProgramOut.model_validate(row)

    async def update(self, program_id: int, patch: Fields) -> ProgramOut:
        patch = validate_fields(ProgramPatch, patch)
        changes = patch.changes()
        try:
            async with self._session_factory() as session:
                row = await session.get(ProgramModel, program_id)
                if row is None:
                    raise NotFound(f"Program {program_id} does not exist")
                for key, value in changes.items():
                    setattr(row, key, value)
                if changes:
                    row.updated_at = datetime.utcnow()
                    await session.commit()
                    await session.refresh(row)
        except (SQLAlchemyError, OSError) as exc:
            raise self._unavailable("update", exc) from exc
        logger.info("Updated program %s: %s", program_id, sorted(changes))
        return ProgramOut.model_validate(row)


@dataclass
class Stores:
    contributions: ContributionStore
    expenses: ExpenseStore
    programs: ProgramStore

    @classmethod
    def from_session_factory(cls, session_factory: async_sessionmaker[AsyncSession]) -> "Stores":
        return cls(
            contributions=ContributionStore(session_factory),
            expenses=ExpenseStore(session_factory),
            programs=ProgramStore(session_factory),
        )
