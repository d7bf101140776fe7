"""
Extractor Interface

Pulls structured data (steps, fee table, FAQ pairs, document links) out of
a fetched page. Extraction heuristics live outside the KB; the ingestion
cycle only needs this interface.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional, Union

from .contracts import ExtractionResult


class Extractor(ABC):
    """
    Turns page text into an ExtractionResult.

    Implementations may return a plain mapping; the ingestion service
    validates it into an ExtractionResult.
    """

    @abstractmethod
    def extract(
        self,
        markdown: str,
        url: str,
        html: Optional[str] = None
    ) -> Union[ExtractionResult, Mapping[str, Any]]:
        pass
