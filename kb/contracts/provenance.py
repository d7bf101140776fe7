"""
Provenance Contracts

A Citation ties a claim to an exact location in an archived source page.
The Locator is a strict tagged union: one discriminant field beyond `type`,
no extras. Each variant is its own frozen dataclass, so a constructed
Locator is valid by construction; raw dicts go through `parse_locator`.

INVARIANTS:
===========
1. quoted_text is never empty
2. source_page_id always references a registered SourcePage (checked by
   the validator, which owns the registry view)
3. A locator serializes back to exactly {type, <field>}
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union


class LocatorType(Enum):
    HEADING_PATH = "heading_path"
    CSS_SELECTOR = "css_selector"
    XPATH = "xpath"
    URL_FRAGMENT = "url_fragment"
    PDF_PAGE = "pdf_page"


LOCATOR_TYPES = tuple(t.value for t in LocatorType)


# =============================================================================
# LOCATOR VARIANTS
# =============================================================================

@dataclass(frozen=True)
class HeadingPathLocator:
    heading_path: Tuple[str, ...]

    def __post_init__(self):
        if not self.heading_path:
            raise ValueError("heading_path must be a non-empty array")

    def to_dict(self) -> Dict[str, Any]:
        return {"type": LocatorType.HEADING_PATH.value, "heading_path": list(self.heading_path)}

    def describe(self) -> str:
        return " > ".join(self.heading_path)


@dataclass(frozen=True)
class CssSelectorLocator:
    css_selector: str

    def __post_init__(self):
        if not self.css_selector:
            raise ValueError("css_selector must be a non-empty string")

    def to_dict(self) -> Dict[str, Any]:
        return {"type": LocatorType.CSS_SELECTOR.value, "css_selector": self.css_selector}

    def describe(self) -> str:
        return f"CSS: {self.css_selector}"


@dataclass(frozen=True)
class XPathLocator:
    xpath: str

    def __post_init__(self):
        if not self.xpath:
            raise ValueError("xpath must be a non-empty string")

    def to_dict(self) -> Dict[str, Any]:
        return {"type": LocatorType.XPATH.value, "xpath": self.xpath}

    def describe(self) -> str:
        return f"XPath: {self.xpath}"


@dataclass(frozen=True)
class UrlFragmentLocator:
    url_fragment: str

    def __post_init__(self):
        if not self.url_fragment:
            raise ValueError("url_fragment must be a non-empty string")

    def to_dict(self) -> Dict[str, Any]:
        return {"type": LocatorType.URL_FRAGMENT.value, "url_fragment": self.url_fragment}

    def describe(self) -> str:
        return f"#{self.url_fragment}"


@dataclass(frozen=True)
class PdfPageLocator:
    pdf_page: int

    def __post_init__(self):
        if isinstance(self.pdf_page, bool) or not isinstance(self.pdf_page, int) or self.pdf_page < 1:
            raise ValueError("pdf_page must be a positive integer")

    def to_dict(self) -> Dict[str, Any]:
        return {"type": LocatorType.PDF_PAGE.value, "pdf_page": self.pdf_page}

    def describe(self) -> str:
        return f"Page {self.pdf_page}"


Locator = Union[HeadingPathLocator, CssSelectorLocator, XPathLocator, UrlFragmentLocator, PdfPageLocator]


def locator_problems(raw: Any) -> List[str]:
    """
    Every reason `raw` is not a valid locator; empty when it is.
    The validator reports each problem separately.
    """
    if not isinstance(raw, dict):
        return ["must be an object"]
    kind = raw.get("type")
    if not kind:
        return ["missing required 'type' field"]
    if kind not in LOCATOR_TYPES:
        return [f"type is invalid: {kind}. Must be one of: {', '.join(LOCATOR_TYPES)}"]

    problems = []
    value = raw.get(kind)
    if kind == LocatorType.HEADING_PATH.value:
        if not isinstance(value, list) or not value:
            problems.append("heading_path must be a non-empty array")
        elif not all(isinstance(part, str) for part in value):
            problems.append("heading_path entries must be strings")
    elif kind == LocatorType.PDF_PAGE.value:
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            problems.append("pdf_page must be a positive integer")
    elif not isinstance(value, str) or not value:
        problems.append(f"{kind} must be a non-empty string")

    extras = sorted(k for k in raw if k not in ("type", kind))
    if extras:
        problems.append(
            f"has extra fields: {', '.join(extras)}. "
            f"Strict union type only allows: type, {kind}"
        )
    return problems


def parse_locator(raw: Any) -> Locator:
    """Build the typed locator for a raw dict; raises ValueError if invalid."""
    problems = locator_problems(raw)
    if problems:
        raise ValueError("; ".join(problems))
    kind = raw["type"]
    if kind == LocatorType.HEADING_PATH.value:
        return HeadingPathLocator(heading_path=tuple(raw["heading_path"]))
    if kind == LocatorType.CSS_SELECTOR.value:
        return CssSelectorLocator(css_selector=raw["css_selector"])
    if kind == LocatorType.XPATH.value:
        return XPathLocator(xpath=raw["xpath"])
    if kind == LocatorType.URL_FRAGMENT.value:
        return UrlFragmentLocator(url_fragment=raw["url_fragment"])
    return PdfPageLocator(pdf_page=raw["pdf_page"])


def format_locator(raw: Any) -> str:
    """Human-readable rendering of a stored locator; empty if unusable."""
    try:
        return parse_locator(raw).describe()
    except ValueError:
        return ""


# =============================================================================
# CITATION
# =============================================================================

@dataclass(frozen=True)
class Citation:
    """Immutable citation value object embedded in claims."""
    source_page_id: str
    quoted_text: str
    retrieved_at: str
    locator: Locator
    language: Optional[str] = None

    def __post_init__(self):
        if not self.source_page_id:
            raise ValueError("Citation source_page_id must be a non-empty string")
        if not self.quoted_text or not self.quoted_text.strip():
            raise ValueError("Citation quoted_text must be non-empty")
        if not self.retrieved_at:
            raise ValueError("Citation retrieved_at is required")

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "source_page_id": self.source_page_id,
            "quoted_text": self.quoted_text,
            "retrieved_at": self.retrieved_at,
            "locator": self.locator.to_dict(),
        }
        if self.language:
            data["language"] = self.language
        return data

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> Citation:
        return Citation(
            source_page_id=data.get("source_page_id", ""),
            quoted_text=data.get("quoted_text", ""),
            retrieved_at=data.get("retrieved_at", ""),
            locator=parse_locator(data.get("locator")),
            language=data.get("language"),
        )
