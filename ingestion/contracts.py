"""
Ingestion Contracts

Data structures crossing the boundary between the web and the KB core.

BOUNDARY: Ingestion Layer
Fetched pages and extraction output enter the KB only through these
contracts. Failed fetches are first-class outputs, not exceptions.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from kb.contracts.base import Timestamp


# =============================================================================
# ENUMS
# =============================================================================

class FetchStatus(Enum):
    """Status of a fetch attempt."""
    SUCCESS = "success"
    TIMEOUT = "timeout"
    HTTP_ERROR = "http_error"
    NETWORK_ERROR = "network_error"


# =============================================================================
# FETCH CONTRACTS
# =============================================================================

@dataclass(frozen=True)
class FetchedPage:
    """
    One page as received.

    `markdown` is the text form of the page and `content` is what gets
    hashed. Snapshots archive `html` when the response was HTML, else
    `content`.
    """
    url: str
    final_url: str
    http_status: int
    markdown: str
    fetched_at: datetime
    html: Optional[str] = None
    title: Optional[str] = None

    @property
    def content(self) -> str:
        return self.markdown or self.html or ""

    @property
    def fetched_at_iso(self) -> str:
        return Timestamp(value=self.fetched_at).to_iso()


@dataclass(frozen=True)
class FetchResult:
    """Outcome of one fetch attempt (success or failure)."""
    result_id: str
    url: str
    attempted_at: datetime
    completed_at: datetime
    status: FetchStatus

    http_status: Optional[int] = None
    error_message: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == FetchStatus.SUCCESS

    @property
    def duration_ms(self) -> float:
        return (self.completed_at - self.attempted_at).total_seconds() * 1000


# =============================================================================
# EXTRACTION CONTRACTS
# =============================================================================

class ExtractedStep(BaseModel):
    order: int
    title: str
    description: str = ""


class FeeRow(BaseModel):
    label: str
    amount_bdt: Optional[float] = None
    delivery_type: Optional[str] = None
    pages: Optional[int] = None
    validity_years: Optional[int] = None


class FaqPair(BaseModel):
    question: str
    answer: str


class DocumentLink(BaseModel):
    label: str
    url: Optional[str] = None


class ExtractionStats(BaseModel):
    steps_extracted: int = 0
    fees_extracted: int = 0
    faq_pairs_extracted: int = 0
    doc_links_found: int = 0


class ExtractionResult(BaseModel):
    """Structured data an extractor pulled out of one page."""
    steps: List[ExtractedStep] = Field(default_factory=list)
    fee_table: List[FeeRow] = Field(default_factory=list)
    faq_pairs: List[FaqPair] = Field(default_factory=list)
    document_list: List[DocumentLink] = Field(default_factory=list)
    stats: ExtractionStats = Field(default_factory=ExtractionStats)

    @property
    def is_empty(self) -> bool:
        return not (self.steps or self.fee_table or self.faq_pairs or self.document_list)
