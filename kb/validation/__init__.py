"""
Validation Layer

RESPONSIBILITY: Enforce every KB invariant; classify findings as errors
(blocking) or warnings (drift)
OUTPUTS: ValidationReport {ok, errors, warnings, summary}

Errors always block publishing. Warnings never do.
"""

from .validator import StrictProvenanceValidator, validate
from .guides import GuideValidator

__all__ = ["StrictProvenanceValidator", "GuideValidator", "validate"]
