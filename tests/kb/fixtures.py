"""
KB Test Fixtures

Fixed timestamps, URLs and deterministic document builders.
All fixtures are explicit - no random generation.
"""

import copy
from typing import Any, Dict, Iterable, List, Optional

from kb.identity import content_hash, source_page_id
from kb.migration import migrate_v2_to_v3


# =============================================================================
# FIXED TIMESTAMPS (deterministic)
# =============================================================================

T1 = "2025-01-01T00:00:00.000Z"
T2 = "2025-07-01T00:00:00.000Z"
T3 = "2025-09-01T00:00:00.000Z"
T4 = "2025-10-01T00:00:00.000Z"


# =============================================================================
# SOURCES
# =============================================================================

AGENCY_ID = "agency.dip"
SERVICE_ID = "svc.epassport"
DOCUMENT_ID = "doc.nid"

PORTAL_URL = "https://www.epassport.gov.bd/onboarding"
FEES_URL = "https://www.epassport.gov.bd/instructions/passport-fees"
NOTICE_URL = "https://www.epassport.gov.bd/landing/notices/34"

PORTAL_ID = source_page_id(PORTAL_URL)
FEES_ID = source_page_id(FEES_URL)
NOTICE_ID = source_page_id(NOTICE_URL)

PORTAL_CONTENT = "ePassport Online Registration Portal. Apply online."
FEES_CONTENT = "Passport fees. Regular delivery TK 4,025 (including 15% VAT)."
NOTICE_CONTENT = "Notice 34: revised e-passport fees."

H0 = content_hash(PORTAL_CONTENT)
H_FEES = content_hash(FEES_CONTENT)


# =============================================================================
# BUILDERS
# =============================================================================

def make_agency(
    agency_id: str = AGENCY_ID,
    domains: Iterable[str] = ("epassport.gov.bd", "www.epassport.gov.bd"),
    name: str = "Department of Immigration and Passports"
) -> Dict[str, Any]:
    return {
        "agency_id": agency_id,
        "name": name,
        "short_name": "DIP",
        "website": "https://www.epassport.gov.bd",
        "domain_allowlist": list(domains),
        "claims": [],
    }


def make_source_page(
    url: str,
    content: str = PORTAL_CONTENT,
    agency_id: str = AGENCY_ID,
    crawled_at: str = T1,
    page_type: str = "main_portal"
) -> Dict[str, Any]:
    return {
        "source_page_id": source_page_id(url),
        "canonical_url": url,
        "agency_id": agency_id,
        "page_type": page_type,
        "language": ["en"],
        "crawl_method": "html_static",
        "last_crawled_at": crawled_at,
        "content_hash": content_hash(content),
        "change_log": [],
        "status": "active",
    }


def make_citation(
    sid: str = PORTAL_ID,
    quoted_text: str = "Apply online.",
    retrieved_at: str = T1,
    heading: str = "Apply"
) -> Dict[str, Any]:
    return {
        "source_page_id": sid,
        "quoted_text": quoted_text,
        "retrieved_at": retrieved_at,
        "locator": {"type": "heading_path", "heading_path": [heading]},
    }


def make_claim(
    cid: str,
    claim_type: str = "step",
    text: str = "Apply online: Fill in the application form",
    citations: Optional[List[Dict[str, Any]]] = None,
    status: str = "unverified",
    entity_type: str = "service",
    entity_id: str = SERVICE_ID,
    structured_data: Optional[Dict[str, Any]] = None,
    verified_hash: Optional[str] = None
) -> Dict[str, Any]:
    claim = {
        "claim_id": cid,
        "entity_ref": {"type": entity_type, "id": entity_id},
        "claim_type": claim_type,
        "text": text,
        "citations": citations if citations is not None else [make_citation()],
        "status": status,
        "tags": [],
    }
    if structured_data is not None:
        claim["structured_data"] = structured_data
    if status == "verified":
        claim["last_verified_at"] = T1
        claim["last_verified_source_hash"] = verified_hash or H0
    return claim


def make_fee_claim(
    cid: str,
    label: str = "Regular delivery (48 pages, 5 years) TK 4,025",
    sid: str = FEES_ID,
    retrieved_at: str = T1,
    quoted_text: str = "Regular delivery TK 4,025 (including 15% VAT)",
    heading: str = "Passport fees",
    delivery_type: str = "regular",
    pages: int = 48,
    validity_years: int = 5,
    amount: int = 4025,
    status: str = "unverified"
) -> Dict[str, Any]:
    return make_claim(
        cid,
        claim_type="fee",
        text=label,
        citations=[make_citation(sid, quoted_text=quoted_text, retrieved_at=retrieved_at, heading=heading)],
        status=status,
        structured_data={
            "amount_bdt": amount,
            "currency": "BDT",
            "delivery_type": delivery_type,
            "pages": pages,
            "validity_years": validity_years,
        },
    )


def make_service(
    claims: Iterable[str],
    service_id: str = SERVICE_ID,
    status: str = "unverified",
    entry_url: str = PORTAL_URL
) -> Dict[str, Any]:
    sid = source_page_id(entry_url)
    return {
        "service_id": service_id,
        "service_name": "ePassport",
        "service_family": "passport",
        "agency_id": AGENCY_ID,
        "claims": list(claims),
        "portal_mapping": {
            "entry_urls": [{"url": entry_url, "source_page_id": sid, "description": "ePassport Portal"}],
        },
        "official_entrypoints": [{"source_page_id": sid, "description": "ePassport Portal"}],
        "status": status,
    }


def make_document(claims: Iterable[str], document_id: str = DOCUMENT_ID, status: str = "unverified") -> Dict[str, Any]:
    return {
        "document_id": document_id,
        "document_name": "National ID card",
        "issued_by": AGENCY_ID,
        "claims": list(claims),
        "status": status,
    }


def make_kb(
    source_pages: List[Dict[str, Any]],
    claims: List[Dict[str, Any]],
    services: List[Dict[str, Any]],
    documents: Optional[List[Dict[str, Any]]] = None,
    agencies: Optional[List[Dict[str, Any]]] = None
) -> Dict[str, Any]:
    return {
        "$schema_version": "2.0.0",
        "data_version": 1,
        "last_updated_at": T1,
        "updated_by": "fixtures",
        "change_log": [],
        "audit_log": [],
        "source_pages": source_pages,
        "claims": claims,
        "agencies": agencies if agencies is not None else [make_agency()],
        "documents": documents or [],
        "services": services,
    }


def build_v2_document() -> Dict[str, Any]:
    """
    One agency, two source pages, an ePassport service with two steps and
    one fee, and a document with one requirement claim.
    """
    claims = [
        make_claim("claim.step.epassport.1", status="verified"),
        make_claim(
            "claim.step.epassport.2",
            text="Pay fees: Pay the passport fee at a bank",
            citations=[make_citation(FEES_ID, quoted_text="Pay at any listed bank", heading="Payment")],
        ),
        make_fee_claim("claim.fee.epassport.regular_48_5"),
        make_claim(
            "claim.doc.nid.identity",
            claim_type="document_requirement",
            text="National ID card of the applicant",
            entity_type="document",
            entity_id=DOCUMENT_ID,
            citations=[make_citation(PORTAL_ID, quoted_text="Bring your NID", heading="Documents")],
        ),
    ]
    return make_kb(
        source_pages=[
            make_source_page(PORTAL_URL),
            make_source_page(FEES_URL, content=FEES_CONTENT, page_type="fee_schedule"),
        ],
        claims=claims,
        services=[make_service(
            ["claim.step.epassport.1", "claim.step.epassport.2", "claim.fee.epassport.regular_48_5"],
            status="partial",
        )],
        documents=[make_document(["claim.doc.nid.identity"])],
    )


def build_v3_document() -> Dict[str, Any]:
    result = migrate_v2_to_v3(build_v2_document(), timestamp=T2)
    return result.value.document


def build_v1_document() -> Dict[str, Any]:
    return {
        "agencies": [{
            "agency_id": "dip",
            "name": "Department of Immigration and Passports",
            "website": "https://www.epassport.gov.bd",
        }],
        "services": [{
            "service_id": "epassport",
            "name": "ePassport",
            "agency_id": "dip",
            "portal_url": PORTAL_URL,
            "source_url": FEES_URL,
            "fees": [
                {"description": "Regular delivery TK 4,025", "amount": 4025,
                 "source_text": "Regular delivery: TK 4,025 (including 15% VAT)"},
                {"description": "Express delivery", "amount": "call office"},
            ],
            "steps": [
                {"description": "Apply online: Fill in the form"},
                {"description": "Visit the passport office", "order": 2, "mode": "in_person"},
            ],
        }, {
            "service_id": "svc.birth-registration",
            "name": "Birth Registration",
            "agency_id": "dip",
        }],
        "documents": [{
            "document_id": "nid",
            "name": "National ID card",
            "issued_by": "dip",
            "definition": "Card issued to every citizen aged 18 or older",
            "source_url": "https://nidw.gov.bd/about",
        }],
    }


def find(doc: Dict[str, Any], collection: str, id_field: str, value: str) -> Dict[str, Any]:
    for item in doc[collection]:
        if item.get(id_field) == value:
            return item
    raise KeyError(value)


def clone(doc: Dict[str, Any]) -> Dict[str, Any]:
    return copy.deepcopy(doc)
