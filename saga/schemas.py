from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Optional, List, Dict, Any
from datetime import datetime


class CamelModel(BaseModel):
    # wire format is camelCase; python side keeps snake_case
    model_config = ConfigDict(
        from_attributes=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


# =========================
# STORY / SEARCH SCHEMAS
# =========================
class StoryRead(CamelModel):
    id: int
    project_id: int
    storyteller_id: Optional[int] = None
    chapter_id: Optional[int] = None
    title: Optional[str] = None
    transcript: Optional[str] = None
    status: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SearchResult(CamelModel):
    story: StoryRead
    rank: float = Field(ge=0)
    headline: Optional[str] = None


class SearchPage(CamelModel):
    results: List[SearchResult] = []
    total: int = 0
    page: int = 1
    limit: int = 20
    has_more: bool = False
    search_time: float = 0.0   # milliseconds


class QueryCount(CamelModel):
    query: str
    count: int


class SearchAnalyticsSummary(CamelModel):
    top_queries: List[QueryCount] = []
    total_searches: int = 0
    average_result_count: float = 0.0
    average_search_time: float = 0.0


# =========================
# WALLET / LEDGER SCHEMAS
# =========================
class WalletBalance(CamelModel):
    project_vouchers: int = 0
    facilitator_seats: int = 0
    storyteller_seats: int = 0
    total_value: float = 0.0


class SeatTransactionRead(CamelModel):
    id: int
    user_id: int
    transaction_type: str
    resource_type: str
    amount: int
    project_id: Optional[int] = None
    description: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias="meta")
    created_at: Optional[datetime] = None


class ConsumeRequest(CamelModel):
    resource_type: str
    amount: int
    project_id: Optional[int] = None
    description: Optional[str] = None


class CreditRequest(CamelModel):
    resource_type: str
    amount: int
    transaction_type: str = "grant"
    description: Optional[str] = None
    project_id: Optional[int] = None


class RefundRequest(CamelModel):
    resource_type: str
    amount: int
    description: str
    project_id: Optional[int] = None


def serialize_transaction(tx) -> dict:
    return SeatTransactionRead.model_validate(tx).to_wire()
