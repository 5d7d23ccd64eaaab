from __future__ import annotations

import math
from typing import Iterable

from schemas import ContributionOut, ExpenseOut, ProgramOut, TotalsSnapshot


def total_amount(records: Iterable) -> float:
    # fsum is exactly rounded, so the total does not depend on record order
    return math.fsum(r.amount for r in records)


def compute_totals(
    contributions: Iterable[ContributionOut],
    expenses: Iterable[ExpenseOut],
    programs: Iterable[ProgramOut],
) -> TotalsSnapshot:
    total_collection = total_amount(contributions)
    total_expenses = total_amount(expenses)
    total_budget = math.fsum(p.budget or 0.0 for p in programs)
    return TotalsSnapshot(
        total_collection=total_collection,
        total_expenses=total_expenses,
        remaining_balance=total_collection - total_expenses,
        total_budget=total_budget,
        budget_status=total_collection - total_budget,
    )
