"""
CostKitchen - Financial Projection Engine
Derive costs, taxes, discounts and profit from the current Dataset.

LOGIC:
1. Unit cost per serving from ingredient costs and batch size
2. Per-recipe daily breakdown (price known: derive VAT, discounts, profit)
3. Period projection (daily/weekly/monthly) with opex normalized through
   a daily rate
4. Suggested price (margin known: derive price), the inverse pipeline

RULES:
- Pure derivation: no cached intermediate state, recompute on every call
- Listed prices are VAT-inclusive
- No rounding mid-calculation; round only for display
"""

import datetime as dt
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Iterable, Optional

from costkitchen.bridges.base import RemoteDataService
from costkitchen.core.errors import RemoteServiceError, ValidationFailure
from costkitchen.core.types import ZERO, ceil_money, to_decimal
from costkitchen.models.dataset import (
    DailySnapshot,
    Dataset,
    KitchenSettings,
    Recipe,
    RecipeIngredient,
    RecipeSale,
)
from costkitchen.models.finance import (
    DaySummary,
    MonthlySummary,
    Period,
    Projection,
    RecipeFinancials,
    SalesTargetProgress,
    SnapshotResult,
    WeeklySummary,
)
from costkitchen.services.notifications import Notifier
from costkitchen.services.stock_engine import low_stock_alerts
from costkitchen.services.store import DatasetStore

logger = logging.getLogger(__name__)

VAT_RATE = Decimal("0.12")
PWD_SENIOR_RATE = Decimal("0.20")
OPEX_DAYS_PER_MONTH = 30
HUNDRED = Decimal(100)


# =============================================================================
# RATES
# =============================================================================

def vat_rate(kitchen: KitchenSettings) -> Decimal:
    return VAT_RATE if kitchen.is_vat_registered else ZERO


def pwd_rate(kitchen: KitchenSettings) -> Decimal:
    return PWD_SENIOR_RATE if kitchen.is_pwd_senior_active else ZERO


def other_rate(kitchen: KitchenSettings) -> Decimal:
    return kitchen.other_discount_rate / HUNDRED


# =============================================================================
# COSTS
# =============================================================================

def batch_cost(lines: Iterable[RecipeIngredient], ingredients: dict) -> Decimal:
    """Σ(ingredient cost × qty). Missing ingredients contribute 0."""
    total = ZERO
    for line in lines:
        ingredient = ingredients.get(line.ingredient_id)
        if ingredient is not None:
            total += ingredient.cost * line.qty
    return total


def unit_cost(recipe: Recipe, ingredients: dict) -> Decimal:
    """Cost per serving: batch cost / max(1, batch_size)."""
    return batch_cost(recipe.ingredients, ingredients) / max(1, recipe.batch_size)


# =============================================================================
# BREAKDOWN
# =============================================================================

def recipe_breakdown(recipe: Recipe, dataset: Dataset) -> RecipeFinancials:
    """
    Daily financials for one recipe, reverse-engineered from its listed price.

    grossSales = price × dailyVolume
    netPriceExVat = price / (1 + vat)
    netRevenue = grossSales − totalVat − pwdDiscount − otherDiscount
    grossProfit = netRevenue − cogs
    """
    kitchen = dataset.settings
    cost = unit_cost(recipe, dataset.ingredient_map())
    price = recipe.price
    volume = recipe.daily_volume

    gross_sales = price * volume

    net_price_ex_vat = price / (1 + vat_rate(kitchen))
    vat_per_unit = price - net_price_ex_vat
    total_vat = vat_per_unit * volume

    pwd_discount = gross_sales * pwd_rate(kitchen)
    other_discount = gross_sales * other_rate(kitchen)
    discounts = pwd_discount + other_discount

    net_revenue = gross_sales - total_vat - discounts
    cogs = cost * volume
    gross_profit = net_revenue - cogs

    contribution = price - cost
    contribution_margin_pct = contribution / price * HUNDRED if price > 0 else ZERO

    return RecipeFinancials(
        recipe_id=recipe.id,
        recipe_name=recipe.name,
        unit_cost=cost,
        unit_price=price,
        daily_volume=volume,
        gross_sales=gross_sales,
        net_price_ex_vat=net_price_ex_vat,
        vat_per_unit=vat_per_unit,
        total_vat=total_vat,
        pwd_discount=pwd_discount,
        other_discount=other_discount,
        discounts=discounts,
        net_revenue=net_revenue,
        cogs=cogs,
        gross_profit=gross_profit,
        contribution=contribution,
        contribution_margin_pct=contribution_margin_pct,
    )


# =============================================================================
# PROJECTION
# =============================================================================

SCALED_FIELDS = (
    "gross_sales",
    "net_revenue",
    "cogs",
    "gross_profit",
    "vat",
    "discounts",
    "pwd_discount",
    "other_discount",
)


def daily_opex(dataset: Dataset) -> Decimal:
    """Monthly expenses normalized to a daily rate."""
    return sum((e.amount for e in dataset.expenses), ZERO) / OPEX_DAYS_PER_MONTH


def projection(dataset: Dataset, period: Period = Period.DAILY) -> Projection:
    """
    Sum every recipe breakdown, then scale by the period multiplier.

    Opex is (Σ monthly expenses / 30) × multiplier, so a monthly projection
    uses 30 days of expenses, not the monthly total itself.
    """
    totals = dict.fromkeys(SCALED_FIELDS, ZERO)
    for recipe in dataset.recipes:
        f = recipe_breakdown(recipe, dataset)
        totals["gross_sales"] += f.gross_sales
        totals["net_revenue"] += f.net_revenue
        totals["cogs"] += f.cogs
        totals["gross_profit"] += f.gross_profit
        totals["vat"] += f.total_vat
        totals["discounts"] += f.discounts
        totals["pwd_discount"] += f.pwd_discount
        totals["other_discount"] += f.other_discount

    multiplier = period.multiplier
    scaled = {k: v * multiplier for k, v in totals.items()}
    opex = daily_opex(dataset) * multiplier

    return Projection(
        period=period,
        opex=opex,
        net_profit=scaled["gross_profit"] - opex,
        **scaled,
    )


def total_orders(dataset: Dataset) -> Decimal:
    return sum((r.daily_volume for r in dataset.recipes), ZERO)


# =============================================================================
# PRICING
# =============================================================================

def suggested_price(
    total_ingredient_cost,
    batch_size: int,
    margin,
    is_vat_registered: bool,
) -> Decimal:
    """
    Menu price from cost and target margin.

    costPerServing = totalCost / batchSize
    netPrice = costPerServing / (1 − margin/100)
    menuPrice = ceil(netPrice × (1 + vat))
    """
    margin = to_decimal(margin)
    if margin < 0 or margin >= 100:
        raise ValidationFailure(["Margin must be at least 0% and below 100%"])

    cost_per_serving = to_decimal(total_ingredient_cost) / (batch_size or 1)
    net_price = cost_per_serving / (1 - margin / HUNDRED)
    vat = VAT_RATE if is_vat_registered else ZERO
    return ceil_money(net_price * (1 + vat))


# =============================================================================
# SNAPSHOTS & SUMMARIES
# =============================================================================

def build_snapshot(dataset: Dataset, date: dt.date) -> DailySnapshot:
    """Freeze today's daily projection."""
    daily = projection(dataset, Period.DAILY)
    return DailySnapshot(
        date=date,
        gross_sales=daily.gross_sales,
        net_revenue=daily.net_revenue,
        cogs=daily.cogs,
        gross_profit=daily.gross_profit,
        opex=daily.opex,
        net_profit=daily.net_profit,
        vat=daily.vat,
        discounts=daily.discounts,
        total_orders=total_orders(dataset),
        recipes_sold=[
            RecipeSale(
                recipe_id=r.id,
                recipe_name=r.name,
                quantity=r.daily_volume,
                revenue=r.price * r.daily_volume,
            )
            for r in dataset.recipes
        ],
        stock_alerts=low_stock_alerts(dataset),
    )


def weekly_summary(snapshots: list[DailySnapshot], week_start: dt.date) -> WeeklySummary:
    """Snapshots in [week_start, week_start + 6 days]. Empty week is all zeros."""
    week_end = week_start + dt.timedelta(days=6)
    week = [s for s in snapshots if week_start <= s.date <= week_end]

    if not week:
        empty_day = DaySummary(date=week_start, profit=ZERO)
        return WeeklySummary(
            week_start=week_start,
            week_end=week_end,
            total_revenue=ZERO,
            total_net_profit=ZERO,
            avg_daily_profit=ZERO,
            best_day=empty_day,
            worst_day=empty_day,
            days_count=0,
        )

    total_revenue = sum((s.net_revenue for s in week), ZERO)
    total_net_profit = sum((s.net_profit for s in week), ZERO)

    # Stable: ties keep insertion order
    ranked = sorted(week, key=lambda s: s.net_profit, reverse=True)
    best, worst = ranked[0], ranked[-1]

    return WeeklySummary(
        week_start=week_start,
        week_end=week_end,
        total_revenue=total_revenue,
        total_net_profit=total_net_profit,
        avg_daily_profit=total_net_profit / len(week),
        best_day=DaySummary(date=best.date, profit=best.net_profit),
        worst_day=DaySummary(date=worst.date, profit=worst.net_profit),
        days_count=len(week),
    )


def monthly_summary(snapshots: list[DailySnapshot], month: str) -> MonthlySummary:
    """Snapshots whose date starts with month ("YYYY-MM")."""
    days = [s for s in snapshots if s.date.isoformat().startswith(month)]

    total_revenue = sum((s.net_revenue for s in days), ZERO)
    total_gross_profit = sum((s.gross_profit for s in days), ZERO)

    return MonthlySummary(
        month=month,
        total_revenue=total_revenue,
        total_gross_profit=total_gross_profit,
        total_net_profit=sum((s.net_profit for s in days), ZERO),
        avg_margin=total_gross_profit / total_revenue * HUNDRED if total_revenue > 0 else ZERO,
        total_discounts=sum((s.discounts for s in days), ZERO),
        total_vat=sum((s.vat for s in days), ZERO),
        days_count=len(days),
    )


def sales_target_progress(dataset: Dataset) -> SalesTargetProgress:
    gross = projection(dataset, Period.DAILY).gross_sales
    target = dataset.settings.daily_sales_target
    if not target or target <= 0:
        return SalesTargetProgress(daily_gross_sales=gross, daily_sales_target=target)

    percent = (gross / target * HUNDRED).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return SalesTargetProgress(
        daily_gross_sales=gross,
        daily_sales_target=target,
        percent=min(HUNDRED, percent),
    )


# =============================================================================
# ENGINE
# =============================================================================

class FinancialProjectionEngine:
    """
    Projection queries over the live Dataset.

    Every call reads the current Dataset; nothing is memoized.
    """

    def __init__(
        self,
        store: DatasetStore,
        remote: Optional[RemoteDataService] = None,
        notifier: Optional[Notifier] = None,
        refresh: Optional[Callable] = None,
        today: Callable[[], dt.date] = dt.date.today,
    ):
        self.store = store
        self.remote = remote
        self.notifier = notifier or Notifier()
        self.refresh = refresh
        self.today = today

    def breakdown(self, recipe_id) -> Optional[RecipeFinancials]:
        dataset = self.store.snapshot
        recipe = next((r for r in dataset.recipes if r.id == recipe_id), None)
        return recipe_breakdown(recipe, dataset) if recipe else None

    def breakdowns(self) -> list[RecipeFinancials]:
        dataset = self.store.snapshot
        return [recipe_breakdown(r, dataset) for r in dataset.recipes]

    def projection(self, period: Period = Period.DAILY) -> Projection:
        return projection(self.store.snapshot, period)

    def suggested_price(self, lines: list[RecipeIngredient], batch_size: int, margin) -> Decimal:
        """Suggested price for a recipe being authored, using current costs."""
        dataset = self.store.snapshot
        return suggested_price(
            batch_cost(lines, dataset.ingredient_map()),
            batch_size,
            margin,
            dataset.settings.is_vat_registered,
        )

    def weekly_summary(self, week_start: dt.date) -> WeeklySummary:
        return weekly_summary(self.store.snapshot.snapshots, week_start)

    def monthly_summary(self, month: str) -> MonthlySummary:
        return monthly_summary(self.store.snapshot.snapshots, month)

    def sales_target_progress(self) -> SalesTargetProgress:
        return sales_target_progress(self.store.snapshot)

    async def capture_snapshot(self) -> SnapshotResult:
        """
        Freeze today's projection, persist it, then refresh.

        The local Dataset is updated first, replacing any snapshot with the
        same date.
        """
        snapshot = build_snapshot(self.store.snapshot, self.today())
        self.store.update(lambda d: d.model_copy(update={
            "snapshots": [s for s in d.snapshots if s.date != snapshot.date] + [snapshot],
        }))

        error = None
        if self.remote is not None:
            try:
                await self.remote.save_snapshot(snapshot)
            except RemoteServiceError as e:
                error = str(e)
                logger.warning(f"Snapshot save failed: {e}")
                self.notifier.error("Could not save today's snapshot.")

        if self.refresh is not None:
            await self.refresh()

        if error is None:
            self.notifier.info(f"Snapshot captured for {snapshot.date.isoformat()}")
        return SnapshotResult(success=error is None, snapshot=snapshot, error=error)
