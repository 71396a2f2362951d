from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


# =========================
# Enums
# =========================
class RankingOrder(str, Enum):
    BEST = "best"
    WORST = "worst"


class ChartType(str, Enum):
    BAR = "bar"
    LINE = "line"
    PIE = "pie"
    DOUGHNUT = "doughnut"
    HORIZONTAL_BAR = "horizontalBar"


# =========================
# QUERY PARAMS
# =========================
class QueryParams(BaseModel):
    """
    Filters shared by every registry function.

    Date modes are mutually exclusive: all_time, start_date + end_date,
    period_days or current_month. None of them means all-time.
    """

    model_config = ConfigDict(extra="ignore")

    status: Optional[str] = None
    marketplace: Optional[str] = None

    all_time: Optional[bool] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    period_days: Optional[int] = Field(default=None, ge=1, le=3660)
    current_month: Optional[bool] = None

    limit: Optional[int] = Field(default=None, ge=1, le=100)
    order: RankingOrder = RankingOrder.BEST

    @field_validator("status", "marketplace", "start_date", "end_date", mode="before")
    @classmethod
    def blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    @model_validator(mode="after")
    def check_single_date_mode(self) -> "QueryParams":
        active = self.active_date_modes()
        if len(active) > 1:
            raise ValueError(
                f"Only one date mode can be used at a time, got: {', '.join(active)}"
            )
        if bool(self.start_date) != bool(self.end_date):
            raise ValueError("start_date and end_date must be provided together")
        return self

    def active_date_modes(self) -> List[str]:
        modes = []
        if self.all_time:
            modes.append("all_time")
        if self.start_date or self.end_date:
            modes.append("start_date/end_date")
        if self.period_days is not None:
            modes.append("period_days")
        if self.current_month:
            modes.append("current_month")
        return modes


class AdhocQueryRequest(BaseModel):
    sql: str = Field(min_length=1, max_length=5000)


# =========================
# CONVERSATION
# =========================
class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChatMessage(BaseModel):
    role: str
    content: str


class ChatRequest(BaseModel):
    message: str = Field(min_length=1, max_length=4000)
    history: List[ChatMessage] = []


class TokenUsage(CamelModel):
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    estimated_cost_usd: float = Field(default=0.0, alias="estimatedCostUSD")


class ChatResponse(CamelModel):
    text: str
    token_usage: TokenUsage
    suggested_follow_ups: Optional[List[str]] = None


# =========================
# CHARTS
# =========================
class ChartDataset(BaseModel):
    label: str
    data: List[float]


class ChartOptions(BaseModel):
    currency: Optional[bool] = None
    percentage: Optional[bool] = None
    stacked: Optional[bool] = None


class ChartSpec(BaseModel):
    """Typed chart block embedded in answers, drawn by the frontend."""

    type: ChartType
    title: str
    labels: List[str]
    datasets: List[ChartDataset]
    options: Optional[ChartOptions] = None

    def to_block(self) -> str:
        return "```chart\n" + self.model_dump_json(exclude_none=True) + "\n```"


class FunctionListResponse(BaseModel):
    functions: List[str]
    escape_valve: str
