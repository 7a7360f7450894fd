"""
CostKitchen - Financial & Result Schemas

Derived values (breakdowns, projections, summaries, stock levels) and the
result models returned by the services. Derived values are never stored;
they are recomputed from the Dataset on every call.
"""

import datetime as dt
import uuid
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from costkitchen.core.types import Money, Quantity
from costkitchen.models.dataset import DailySnapshot, EntityId


# =============================================================================
# PROJECTIONS
# =============================================================================

class Period(str, Enum):
    """Projection period with its day multiplier."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    @property
    def multiplier(self) -> int:
        return PERIOD_MULTIPLIERS[self]


PERIOD_MULTIPLIERS = {
    Period.DAILY: 1,
    Period.WEEKLY: 7,
    Period.MONTHLY: 30,
}


class RecipeFinancials(BaseModel):
    """Per-recipe daily breakdown."""
    recipe_id: EntityId
    recipe_name: str

    unit_cost: Money
    unit_price: Money
    daily_volume: Quantity

    gross_sales: Money
    net_price_ex_vat: Money
    vat_per_unit: Money
    total_vat: Money
    pwd_discount: Money
    other_discount: Money
    discounts: Money
    net_revenue: Money
    cogs: Money
    gross_profit: Money

    # Menu engineering
    contribution: Money  # price - unit cost
    contribution_margin_pct: Money


class Projection(BaseModel):
    """Aggregate financials scaled to a period."""
    period: Period
    gross_sales: Money
    net_revenue: Money
    cogs: Money
    gross_profit: Money
    vat: Money
    discounts: Money
    pwd_discount: Money
    other_discount: Money
    opex: Money
    net_profit: Money  # operating profit, after opex


class DaySummary(BaseModel):
    date: dt.date
    profit: Money


class WeeklySummary(BaseModel):
    week_start: dt.date
    week_end: dt.date
    total_revenue: Money
    total_net_profit: Money
    avg_daily_profit: Money
    best_day: DaySummary
    worst_day: DaySummary
    days_count: int


class MonthlySummary(BaseModel):
    month: str  # YYYY-MM
    total_revenue: Money
    total_gross_profit: Money
    total_net_profit: Money
    avg_margin: Money
    total_discounts: Money
    total_vat: Money
    days_count: int


class SalesTargetProgress(BaseModel):
    daily_gross_sales: Money
    daily_sales_target: Optional[Money] = None
    percent: Optional[Money] = None  # capped at 100


# =============================================================================
# STOCK
# =============================================================================

class StockStatus(str, Enum):
    CRITICAL = "critical"
    LOW = "low"
    REORDER = "reorder"
    GOOD = "good"


class StockLevel(BaseModel):
    """Stock classification with indicator width (0-100)."""
    ingredient_id: EntityId
    ingredient_name: str
    stock_qty: Quantity
    min_stock: Optional[Quantity] = None
    status: StockStatus
    width: Money


class StockDeduction(BaseModel):
    ingredient_id: EntityId
    previous_qty: Quantity
    new_qty: Quantity


class CookResult(BaseModel):
    """Result of a cook action (inventory deduction)."""
    success: bool
    recipe_id: EntityId
    portions: Quantity
    deductions: list[StockDeduction] = []
    failed_ingredients: list[EntityId] = []
    error: Optional[str] = None


# =============================================================================
# SERVICE RESULTS
# =============================================================================

class MutationResult(BaseModel):
    """Outcome of the remote step of an optimistic mutation."""
    success: bool
    entity_id: Optional[EntityId] = None
    queued: bool = False
    error: Optional[str] = None


class SyncState(str, Enum):
    """Data synchronization states."""
    UNAUTHENTICATED = "unauthenticated"
    CACHE_LOADED = "cache_loaded"
    FRESH = "fresh"


class SyncStateTransition(BaseModel):
    """State transition record."""
    previous_state: Optional[SyncState] = None
    current_state: SyncState
    trigger_event: str
    user_id: Optional[str] = None
    at: dt.datetime = Field(default_factory=lambda: dt.datetime.now(dt.timezone.utc))


class SyncReport(BaseModel):
    """Outcome of one refresh run."""
    user_id: Optional[str] = None
    state: SyncState
    cache_loaded: bool = False
    fetched: bool = False
    skipped: bool = False  # latched
    offline: bool = False
    error: Optional[str] = None


class NoticeLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Notice(BaseModel):
    """User-visible notification."""
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    level: NoticeLevel
    message: str
    at: dt.datetime = Field(default_factory=lambda: dt.datetime.now(dt.timezone.utc))


class SnapshotResult(BaseModel):
    """Outcome of a daily snapshot capture."""
    success: bool
    snapshot: DailySnapshot
    error: Optional[str] = None


class LoginResult(BaseModel):
    """Outcome of a login attempt."""
    success: bool
    user_id: Optional[str] = None
    timed_out: bool = False
    remaining_attempts: int = 0
    lockout_seconds: int = 0
    error: Optional[str] = None
