"""
Migration Layer

RESPONSIBILITY: Move documents between schema versions
- v1 -> v2: provenance extraction (source pages, atomic claims)
- v2 -> v3: guide generation

WHAT THIS LAYER MUST NOT DO:
============================
- Fabricate quoted text or official URLs
- Mark anything verified
"""

from .v1_to_v2 import MigrationOutcome, V1ToV2Migrator, migrate_v1_to_v2
from .v2_to_v3 import GuideGenerator, migrate_v2_to_v3

__all__ = [
    "MigrationOutcome",
    "V1ToV2Migrator",
    "GuideGenerator",
    "migrate_v1_to_v2",
    "migrate_v2_to_v3",
]
