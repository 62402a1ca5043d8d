"""Search request/response models"""

from datetime import date

from pydantic import BaseModel, Field, model_validator

from whatsnew_mcp.models.document import DocumentRecord


class SearchFilters(BaseModel):
    """Filters accepted by the document search"""

    query: str | None = Field(default=None, description="Free text matched on title+description")
    product: str | None = Field(default=None, description="Exact product label")
    version: str | None = Field(default=None, description="Substring of the version string")
    date_from: date | None = Field(default=None, description="Inclusive lower date bound")
    date_to: date | None = Field(default=None, description="Inclusive upper date bound")
    limit: int | None = Field(default=None, ge=1, description="Max rows (None = unbounded)")
    offset: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def check_date_range(self) -> "SearchFilters":
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("date_from must not be after date_to")
        return self


class SearchOutput(BaseModel):
    """Complete output of a document search"""

    documents: list[DocumentRecord] = Field(description="Matching page of documents")
    total_count: int = Field(ge=0, description="Matches before limit/offset")
    available_products: list[str] = Field(default_factory=list)
    query_time_ms: float = Field(default=0.0, ge=0.0)
