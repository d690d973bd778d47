from __future__ import annotations

from typing import Annotated, Any, Dict, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

from ..config import MAX_GROUP_DIMENSIONS, MAX_ITEMS, MAX_LOCATIONS, MAX_ROW_LIMIT

LocationName = Literal["HQ", "Yonge", "Bloor", "Kingston", "The Well", "Broadway"]
WindowTimeframe = Literal[
    "today",
    "yesterday",
    "this_week",
    "last_week",
    "this_month",
    "last_month",
    "last_30_days",
    "last_90_days",
    "last_3_months",
    "this_year",
    "last_year",
]
Timeframe = Literal[WindowTimeframe, "all_time"]
TrendTimeframe = Literal["last_month", "last_30_days", "last_90_days", "last_3_months", "this_year", "last_year"]
PeriodTimeframe = Literal["today", "yesterday", "this_week", "last_week", "this_month", "last_month", "this_year", "last_year"]
ComparisonPeriod = Literal["previous_day", "previous_week", "previous_month", "previous_year"]

WindowMetric = Literal["revenue", "count", "quantity", "avg_transaction", "unique_items"]
PeriodMetric = Literal["revenue", "count", "quantity", "avg_transaction"]
VolumeMetric = Literal["revenue", "count", "quantity"]
LocationMetric = Literal["revenue", "count", "avg_transaction", "market_share", "efficiency"]
PairMetric = Literal["revenue", "count", "avg_transaction", "efficiency"]
ProductMetric = Literal["revenue", "quantity", "avg_price"]
OverviewMetric = Literal[
    "total_revenue",
    "total_transactions",
    "avg_transaction",
    "avg_daily_revenue",
    "avg_weekly_revenue",
    "avg_monthly_revenue",
]


class OperationArgs(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    operation: str

    @property
    def timeframe_token(self) -> str | None:
        return getattr(self, "timeframe", None)


class CustomTimeRangeMetricsArgs(OperationArgs):
    operation: Literal["get_custom_time_range_metrics"] = "get_custom_time_range_metrics"
    time_description: str = Field(
        min_length=1,
        description="Natural language time period, e.g. 'August 2025', 'Q1 2024', 'last 3 weeks'.",
    )
    metrics: list[WindowMetric] = Field(min_length=1, description="Metrics to calculate.")
    include_top_location: bool = Field(default=False, description="Include the best performing location.")
    include_daily_breakdown: bool = Field(default=False, description="Include one row per day.")


class TimeBasedMetricsArgs(OperationArgs):
    operation: Literal["get_time_based_metrics"] = "get_time_based_metrics"
    timeframe: WindowTimeframe
    metrics: list[WindowMetric] = Field(min_length=1)
    include_top_location: bool = False


class ComparePeriodsArgs(OperationArgs):
    operation: Literal["compare_periods"] = "compare_periods"
    primary_period: PeriodTimeframe
    comparison_period: ComparisonPeriod
    metrics: list[PeriodMetric] = Field(min_length=1)

    @property
    def timeframe_token(self) -> str | None:
        return self.primary_period


class BestPerformingDaysArgs(OperationArgs):
    operation: Literal["get_best_performing_days"] = "get_best_performing_days"
    timeframe: Literal["last_week", TrendTimeframe]
    group_by: Literal["day", "week", "month"]
    metric: VolumeMetric
    limit: int = Field(default=5, ge=1, le=10)


class SeasonalTrendsArgs(OperationArgs):
    operation: Literal["get_seasonal_trends"] = "get_seasonal_trends"
    analysis_type: Literal["weekend_vs_weekday", "hourly_patterns", "monthly_trends", "seasonal"]
    timeframe: TrendTimeframe
    metric: VolumeMetric


class LocationMetricsArgs(OperationArgs):
    operation: Literal["get_location_metrics"] = "get_location_metrics"
    locations: list[LocationName] = Field(min_length=1)
    metrics: list[LocationMetric] = Field(min_length=1)
    timeframe: Timeframe


class CompareLocationsArgs(OperationArgs):
    operation: Literal["compare_locations"] = "compare_locations"
    comparison_type: Literal["top_vs_bottom", "specific_pair", "all_ranked", "market_share"]
    location_a: LocationName | None = None
    location_b: LocationName | None = None
    metric: PairMetric
    timeframe: Timeframe

    @model_validator(mode="after")
    def _pair_requires_locations(self) -> "CompareLocationsArgs":
        if self.comparison_type == "specific_pair":
            if not self.location_a or not self.location_b:
                raise ValueError("specific_pair comparison requires location_a and location_b")
            if self.location_a == self.location_b:
                raise ValueError("specific_pair comparison requires two different locations")
        return self


class LocationRankingsArgs(OperationArgs):
    operation: Literal["get_location_rankings"] = "get_location_rankings"
    ranking_type: Literal["by_revenue", "by_transactions", "by_avg_transaction", "by_efficiency", "by_unique_items"]
    order: Literal["highest_to_lowest", "lowest_to_highest"] = "highest_to_lowest"
    timeframe: Timeframe
    include_statistics: bool = False


class LocationBreakdownByMonthArgs(OperationArgs):
    operation: Literal["get_location_breakdown_by_month"] = "get_location_breakdown_by_month"
    month_year: str = Field(min_length=3, description="Month and year, e.g. 'August 2025'.")
    include_performance_metrics: bool = True
    sort_by: Literal["revenue", "transactions", "avg_order_value"] = "revenue"
    include_totals: bool = True


class TopProductsArgs(OperationArgs):
    operation: Literal["get_top_products"] = "get_top_products"
    ranking_metric: Literal["revenue", "quantity", "transaction_count", "avg_price"]
    limit: int = Field(default=10, ge=1, le=50)
    timeframe: Timeframe
    location: LocationName | None = None


class ProductLocationAnalysisArgs(OperationArgs):
    operation: Literal["get_product_location_analysis"] = "get_product_location_analysis"
    analysis_type: Literal[
        "top_item_per_location",
        "item_distribution",
        "location_with_most_items",
        "cross_location_comparison",
    ]
    specific_item: str | None = None
    metric: ProductMetric
    timeframe: Timeframe

    @model_validator(mode="after")
    def _item_required(self) -> "ProductLocationAnalysisArgs":
        if self.analysis_type in {"item_distribution", "cross_location_comparison"} and not (self.specific_item or "").strip():
            raise ValueError(f"{self.analysis_type} requires specific_item")
        return self


class ProductCategoriesArgs(OperationArgs):
    operation: Literal["get_product_categories"] = "get_product_categories"
    analysis_type: Literal["top_categories", "unique_item_count", "product_mix", "price_analysis"]
    timeframe: Timeframe
    location: LocationName | None = None


class BusinessOverviewArgs(OperationArgs):
    operation: Literal["get_business_overview"] = "get_business_overview"
    metrics: list[OverviewMetric] = Field(min_length=1)
    include_growth_rates: bool = False
    include_peak_performance: bool = False


class AdvancedAnalyticsArgs(OperationArgs):
    operation: Literal["get_advanced_analytics"] = "get_advanced_analytics"
    analysis_type: Literal[
        "business_health_check",
        "location_correlation",
        "efficiency_analysis",
        "forecasting",
        "customer_patterns",
    ]
    timeframe: TrendTimeframe
    focus_areas: list[Literal["revenue_trends", "location_performance", "product_mix", "operational_efficiency"]] = Field(
        default_factory=list
    )


class QuerySalesArgs(OperationArgs):
    """Free-form aggregate over the validated parameter set."""

    operation: Literal["query_sales"] = "query_sales"
    time_description: str | None = Field(default=None, description="Natural language time period; omit for the last 30 days.")
    locations: list[LocationName] = Field(default_factory=list, max_length=MAX_LOCATIONS)
    items: list[str] = Field(default_factory=list, max_length=MAX_ITEMS)
    metrics: list[
        Literal["revenue", "quantity", "count", "avg_transaction", "items_per_sale", "avg_item_price", "unique_items"]
    ] = Field(default_factory=lambda: ["revenue", "count"], min_length=1)
    group_by: list[Literal["location", "item", "day", "week", "month", "quarter", "year", "day_of_week", "hour"]] = Field(
        default_factory=list, max_length=MAX_GROUP_DIMENSIONS
    )
    aggregation: Literal["sum", "avg", "count", "max", "min"] = "sum"
    sort_direction: Literal["asc", "desc"] = "desc"
    limit: int | None = Field(default=None, ge=1, le=MAX_ROW_LIMIT)


OperationArguments = Annotated[
    Union[
        CustomTimeRangeMetricsArgs,
        TimeBasedMetricsArgs,
        ComparePeriodsArgs,
        BestPerformingDaysArgs,
        SeasonalTrendsArgs,
        LocationMetricsArgs,
        CompareLocationsArgs,
        LocationRankingsArgs,
        LocationBreakdownByMonthArgs,
        TopProductsArgs,
        ProductLocationAnalysisArgs,
        ProductCategoriesArgs,
        BusinessOverviewArgs,
        AdvancedAnalyticsArgs,
        QuerySalesArgs,
    ],
    Field(discriminator="operation"),
]

OPERATION_ARGUMENTS_ADAPTER: TypeAdapter[Any] = TypeAdapter(OperationArguments)


class ResultRow(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    dimensions: Dict[str, Any] = Field(default_factory=dict)
    metrics: Dict[str, float] = Field(default_factory=dict)


class OperationResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    operation: str
    timeframe: str = ""
    rows: list[ResultRow] = Field(default_factory=list)
    summary: Dict[str, Any] = Field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "timeframe": self.timeframe,
            "rows": [row.model_dump() for row in self.rows],
            "summary": self.summary,
        }
