"""
Fee Canonicalizers

Publish-time selection of one canonical fee per fee group. A canonicalizer
is keyed by guide_id and registered in a CanonicalizerRegistry; the
publisher looks one up for every guide and leaves fees untouched when none
is registered.

The ePassport canonicalizer is the first (and currently only) instance.

EPASSPORT RULES:
================
1. Group fees by (delivery_type, pages, validity_years)
2. Per group keep one representative: citations from
   /instructions/passport-fees first, then the newest retrieved_at
3. When any representative cites the VAT-inclusive schedule, drop the
   representatives that come from the legacy working-days schedule
4. Sort by pages, validity years, delivery type (regular < express <
   super_express < other)
5. Rewrite standalone TK / Taka as BDT in labels and descriptions
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple
import re

from ..contracts.base import parse_iso
from ..observability import get_logger


logger = get_logger(__name__)

EPASSPORT_GUIDE_ID = "guide.epassport"
PASSPORT_FEES_SEGMENT = "/instructions/passport-fees"

DELIVERY_ORDER = {"regular": 0, "express": 1, "super_express": 2}

_PAGES = re.compile(r'(\d+)\s*(?:pages?|পৃষ্ঠা)', re.IGNORECASE)
_YEARS = re.compile(r'(\d+)\s*(?:years?|বছর)', re.IGNORECASE)
_AMOUNT = re.compile(r'(\d{1,3}(?:,\d{3})+|\d+)')
_CURRENCY_TOKENS = (
    re.compile(r'\bTK\b', re.IGNORECASE),
    re.compile(r'\bTaka\b', re.IGNORECASE),
)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class FeeAttributes:
    delivery_type: Optional[str]
    pages: Optional[int]
    validity_years: Optional[int]

    @property
    def group_key(self) -> Tuple[Optional[str], Optional[int], Optional[int]]:
        return (self.delivery_type, self.pages, self.validity_years)

    def sort_key(self) -> Tuple[int, int, int]:
        return (
            self.pages or 0,
            self.validity_years or 0,
            DELIVERY_ORDER.get(self.delivery_type, len(DELIVERY_ORDER)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "delivery_type": self.delivery_type,
            "pages": self.pages,
            "validity_years": self.validity_years,
        }


@dataclass(frozen=True)
class Canonicalization:
    """Canonical fee items plus notes for the build report."""
    fees: List[Dict[str, Any]]
    notes: Tuple[str, ...] = field(default_factory=tuple)


# =============================================================================
# TEXT HELPERS
# =============================================================================

def normalize_currency(text: Optional[str]) -> Optional[str]:
    """Standalone TK / Taka -> BDT; None stays None."""
    if text is None:
        return None
    for pattern in _CURRENCY_TOKENS:
        text = pattern.sub('BDT', text)
    return text


def amount_from_label(label: Optional[str]) -> Optional[int]:
    match = _AMOUNT.search(label or "")
    return int(match.group(1).replace(',', '')) if match else None


def _positive_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def parse_fee_attributes(item: Mapping[str, Any]) -> FeeAttributes:
    """
    Fee grouping attributes. structured_data wins where it states a value;
    the label and description text fill the gaps.
    """
    text = f"{item.get('label') or ''} {item.get('description') or ''}".lower()

    delivery: Optional[str] = None
    if "regular" in text:
        delivery = "regular"
    elif "super express" in text or "super_express" in text:
        delivery = "super_express"
    elif "express" in text:
        delivery = "express"
    pages_match = _PAGES.search(text)
    years_match = _YEARS.search(text)
    pages = int(pages_match.group(1)) if pages_match else None
    years = int(years_match.group(1)) if years_match else None

    data = item.get("structured_data")
    if isinstance(data, dict):
        if isinstance(data.get("delivery_type"), str) and data["delivery_type"]:
            delivery = data["delivery_type"]
        pages = _positive_int(data.get("pages")) or pages
        years = _positive_int(data.get("validity_years")) or years

    return FeeAttributes(delivery_type=delivery, pages=pages, validity_years=years)


def _retrieved(citation: Mapping[str, Any]) -> datetime:
    parsed = parse_iso(citation.get("retrieved_at"))
    return parsed.value if parsed else _EPOCH


def _is_passport_fees(citation: Mapping[str, Any]) -> bool:
    return PASSPORT_FEES_SEGMENT in (citation.get("canonical_url") or "")


def _citation_texts(citation: Mapping[str, Any]) -> Tuple[str, str]:
    return (
        (citation.get("locator") or "").lower(),
        (citation.get("quoted_text") or "").lower(),
    )


def has_vat_marker(citation: Mapping[str, Any]) -> bool:
    for text in _citation_texts(citation):
        if "including 15% vat" in text or "15% vat" in text:
            return True
        if "vat" in text and "inside bangladesh" in text:
            return True
    return False


def is_legacy_schedule(citation: Mapping[str, Any]) -> bool:
    for text in _citation_texts(citation):
        if "working days" in text or "passport fees > e-passport fees" in text:
            return True
    return False


# =============================================================================
# CANONICALIZERS
# =============================================================================

class FeeCanonicalizer(ABC):
    """Publish-time fee selection for one guide."""

    guide_id: str = ""

    @abstractmethod
    def canonicalize(self, fees: List[Dict[str, Any]]) -> Canonicalization:
        """Select and order the public fee items."""
        pass

    def variant_fees(self, variant_id: str, canonical_fees: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Variant fee entries drawn from the canonical set."""
        entries = []
        for fee in canonical_fees:
            attributes = parse_fee_attributes(fee)
            if attributes.delivery_type != variant_id:
                continue
            data = fee.get("structured_data") if isinstance(fee.get("structured_data"), dict) else {}
            amount = data.get("amount_bdt")
            if not isinstance(amount, (int, float)) or isinstance(amount, bool):
                amount = amount_from_label(fee.get("label"))
            structured = {"amount_bdt": amount}
            structured.update(attributes.to_dict())
            entries.append({
                "text": fee.get("label"),
                "structured_data": structured,
                "citations": list(fee.get("citations") or []),
            })
        return entries


class EpassportFeeCanonicalizer(FeeCanonicalizer):
    guide_id = EPASSPORT_GUIDE_ID

    @staticmethod
    def _rank(fee: Mapping[str, Any]) -> Tuple[bool, float]:
        citations = fee.get("citations") or []
        preferred = any(_is_passport_fees(c) for c in citations)
        newest = max((_retrieved(c) for c in citations), default=_EPOCH)
        return (not preferred, -newest.timestamp())

    @staticmethod
    def _best_citation(citations: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        preferred = [c for c in citations if _is_passport_fees(c)] or citations
        if not preferred:
            return []
        return [max(preferred, key=_retrieved)]

    def canonicalize(self, fees: List[Dict[str, Any]]) -> Canonicalization:
        notes: List[str] = []
        groups: Dict[Tuple[Any, ...], List[Tuple[Dict[str, Any], FeeAttributes]]] = {}
        skipped = 0
        for fee in fees:
            if not fee.get("citations"):
                skipped += 1
                continue
            attributes = parse_fee_attributes(fee)
            groups.setdefault(attributes.group_key, []).append((fee, attributes))
        if skipped:
            notes.append(f"{self.guide_id}: skipped {skipped} fee item(s) without citations")

        representatives = [
            sorted(members, key=lambda member: self._rank(member[0]))[0]
            for members in groups.values()
        ]

        vat_schedule = any(
            has_vat_marker(citation)
            for fee, _ in representatives
            for citation in fee.get("citations") or []
        )
        if vat_schedule:
            kept = [
                (fee, attributes) for fee, attributes in representatives
                if not any(is_legacy_schedule(c) for c in fee.get("citations") or [])
            ]
            dropped = len(representatives) - len(kept)
            if dropped:
                notes.append(f"{self.guide_id}: dropped {dropped} legacy working-days fee(s)")
            representatives = kept

        representatives.sort(key=lambda member: member[1].sort_key())
        canonical = []
        for fee, _ in representatives:
            public = dict(fee)
            public["label"] = normalize_currency(fee.get("label") or "")
            public["description"] = normalize_currency(fee.get("description"))
            public["citations"] = self._best_citation(list(fee.get("citations") or []))
            canonical.append(public)

        notes.insert(0, f"{self.guide_id}: canonical fees selected {len(fees)} -> {len(canonical)}")
        logger.info(
            "Canonical fees selected",
            extra={"guide_id": self.guide_id, "before": len(fees), "after": len(canonical)},
        )
        return Canonicalization(fees=canonical, notes=tuple(notes))


class CanonicalizerRegistry:
    """guide_id -> FeeCanonicalizer."""

    def __init__(self):
        self._canonicalizers: Dict[str, FeeCanonicalizer] = {}

    def register(self, canonicalizer: FeeCanonicalizer) -> None:
        if not canonicalizer.guide_id:
            raise ValueError("Canonicalizer must declare a guide_id")
        self._canonicalizers[canonicalizer.guide_id] = canonicalizer

    def get(self, guide_id: Optional[str]) -> Optional[FeeCanonicalizer]:
        return self._canonicalizers.get(guide_id) if guide_id else None

    def __contains__(self, guide_id: object) -> bool:
        return guide_id in self._canonicalizers


def default_registry() -> CanonicalizerRegistry:
    registry = CanonicalizerRegistry()
    registry.register(EpassportFeeCanonicalizer())
    return registry
