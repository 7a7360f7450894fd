"""
CostKitchen - Dashboard API Routes
Projections, summaries, stock levels and snapshot capture

Every figure is recomputed from the current Dataset on request.
"""

import datetime as dt

from fastapi import APIRouter, Depends, Query

from costkitchen.dependencies import active_kitchen
from costkitchen.models.finance import (
    MonthlySummary,
    Period,
    Projection,
    RecipeFinancials,
    SalesTargetProgress,
    SnapshotResult,
    StockLevel,
    SyncReport,
    WeeklySummary,
)
from costkitchen.services.kitchen import KitchenSession
from costkitchen.services.stock_engine import stock_report

router = APIRouter(prefix="/dashboard", tags=["Dashboard"])


# =============================================================================
# PROJECTIONS
# =============================================================================

@router.get("/projection", response_model=Projection)
async def get_projection(
    period: Period = Query(Period.DAILY),
    kitchen: KitchenSession = Depends(active_kitchen),
) -> Projection:
    """Aggregate sales, tax, discounts, COGS and profit for a period."""
    return kitchen.projections.projection(period)


@router.get("/breakdowns", response_model=list[RecipeFinancials])
async def get_breakdowns(kitchen: KitchenSession = Depends(active_kitchen)) -> list[RecipeFinancials]:
    return kitchen.projections.breakdowns()


@router.get("/sales-target", response_model=SalesTargetProgress)
async def get_sales_target(kitchen: KitchenSession = Depends(active_kitchen)) -> SalesTargetProgress:
    return kitchen.projections.sales_target_progress()


# =============================================================================
# SNAPSHOTS
# =============================================================================

@router.get("/summary/weekly", response_model=WeeklySummary)
async def get_weekly_summary(
    week_start: dt.date,
    kitchen: KitchenSession = Depends(active_kitchen),
) -> WeeklySummary:
    """Snapshots from week_start through the following six days."""
    return kitchen.projections.weekly_summary(week_start)


@router.get("/summary/monthly", response_model=MonthlySummary)
async def get_monthly_summary(
    month: str = Query(..., pattern=r"^\d{4}-\d{2}$"),
    kitchen: KitchenSession = Depends(active_kitchen),
) -> MonthlySummary:
    return kitchen.projections.monthly_summary(month)


@router.post("/snapshot", response_model=SnapshotResult)
async def capture_snapshot(kitchen: KitchenSession = Depends(active_kitchen)) -> SnapshotResult:
    """
    Freeze today's daily projection and save it.

    A snapshot for the same date is replaced.
    """
    return await kitchen.projections.capture_snapshot()


# =============================================================================
# STOCK & SYNC
# =============================================================================

@router.get("/stock", response_model=list[StockLevel])
async def get_stock(kitchen: KitchenSession = Depends(active_kitchen)) -> list[StockLevel]:
    return stock_report(kitchen.store.snapshot)


@router.post("/refresh", response_model=SyncReport)
async def refresh(kitchen: KitchenSession = Depends(active_kitchen)) -> SyncReport:
    """Forced reload from the remote service."""
    return await kitchen.sync.reconcile()
