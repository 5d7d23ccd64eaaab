"""Per-session orchestration of the festival dashboard.

The controller owns the records of the selected year, recomputes totals from
them, and routes add/edit actions through the stores. Loads for a year that
is no longer selected are dropped when they finish.
"""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import List, Optional

from aggregator import compute_totals
from auth import AdminGate, Identity
from errors import FestivalError, Forbidden, ValidationError
from schemas import ContributionOut, ExpenseOut, ProgramOut, TotalsSnapshot
from store import Fields, Stores
from summary import SummaryComposer

logger = logging.getLogger(__name__)


class DashboardState(str, Enum):
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


def _newest_first(records: list) -> list:
    return sorted(records, key=lambda r: (r.date, r.id), reverse=True)


def _by_name(programs: List[ProgramOut]) -> List[ProgramOut]:
    return sorted(programs, key=lambda p: (p.name, p.id))


class DashboardController:
    def __init__(self, stores: Stores, gate: AdminGate, composer: SummaryComposer):
        self._stores = stores
        self._gate = gate
        self._composer = composer
        self._load_seq = 0
        self.year: Optional[int] = None
        self.state = DashboardState.LOADING
        self.error: Optional[FestivalError] = None
        self.contributions: List[ContributionOut] = []
        self.expenses: List[ExpenseOut] = []
        self.programs: List[ProgramOut] = []
        self.identity: Optional[Identity] = None
        self.is_admin = False

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------
    def on_identity_changed(self, identity: Optional[Identity]) -> None:
        self.identity = identity
        self.is_admin = self._gate.is_admin(identity)
        logger.debug("Identity changed: uid=%s admin=%s", identity.uid if identity else None, self.is_admin)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------
    def _is_current(self, seq: int, year: int) -> bool:
        return seq == self._load_seq and year == self.year

    async def select_year(self, year: int) -> bool:
        """Load ``year`` from all three stores.

        Returns False when a later selection superseded this one; its
        results (or failure) are then ignored.
        """
        self._load_seq += 1
        seq = self._load_seq
        self.year = year
        self.state = DashboardState.LOADING
        self.error = None
        self.contributions, self.expenses, self.programs = [], [], []

        try:
            contributions, expenses, programs = await asyncio.gather(
                self._stores.contributions.list(year),
                self._stores.expenses.list(year),
                self._stores.programs.list(year),
            )
        except FestivalError as exc:
            if not self._is_current(seq, year):
                logger.info("Ignoring failed load of %s, %s is selected now", year, self.year)
                return False
            self.state = DashboardState.ERROR
            self.error = exc
            raise

        if not self._is_current(seq, year):
            logger.info("Discarding stale load of %s, %s is selected now", year, self.year)
            return False

        self.contributions = contributions
        self.expenses = expenses
        self.programs = programs
        self.state = DashboardState.READY
        return True

    @property
    def totals(self) -> TotalsSnapshot:
        return compute_totals(self.contributions, self.expenses, self.programs)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def _writable_year(self) -> int:
        if not self.is_admin:
            raise Forbidden("Only admins can add or edit records")
        if self.year is None:
            raise ValidationError("No festival year selected")
        return self.year

    async def add_contribution(self, fields: Fields) -> ContributionOut:
        record = await self._stores.contributions.create(self._writable_year(), fields)
        if record.year == self.year:
            self.contributions = _newest_first([record, *self.contributions])
        return record

    async def add_expense(self, fields: Fields) -> ExpenseOut:
        record = await self._stores.expenses.create(self._writable_year(), fields)
        if record.year == self.year:
            self.expenses = _newest_first([record, *self.expenses])
        return record

    async def add_program(self, fields: Fields) -> ProgramOut:
        record = await self._stores.programs.create(self._writable_year(), fields)
        if record.year == self.year:
            self.programs = _by_name([record, *self.programs])
        return record

    async def update_program(self, program_id: int, patch: Fields) -> ProgramOut:
        self._writable_year()
        record = await self._stores.programs.update(program_id, patch)
        if record.year == self.year:
            others = [p for p in self.programs if p.id != record.id]
            self.programs = _by_name([record, *others])
        return record

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------
    async def compose_summary(self) -> str:
        if self.state is not DashboardState.READY:
            raise ValidationError("Festival data is not loaded yet")
        return await self._composer.compose(self.totals, [p.name for p in self.programs])
