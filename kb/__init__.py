"""
Provenance-First Knowledge Base

Integrity engine for a knowledge base of government-service information.
Every user-visible fact is a claim that cites an archived source page.

LAYER STRUCTURE:
================

1. CONTRACTS (contracts/)
   - Immutable types, enums and identifier shapes

2. IDENTITY (identity.py)
   - Deterministic IDs, content hashing, domain matching

3. AUDIT (audit/)
   - Content-addressed event records and queries

4. VALIDATION (validation/)
   - Strict provenance validator; errors vs. warnings

5. LIFECYCLE (lifecycle/)
   - Change detection, claim invalidation, derived entity status

6. INDEXING (indexing/)
   - Reverse indexes from entities/sources to claims, full and incremental

7. MIGRATION (migration/)
   - Schema 1 -> 2 provenance extraction, 2 -> 3 guide synthesis

8. PUBLISHING (publishing/)
   - Canonicalization and resolution into the public guide bundle

Persistence (storage.py) and the command-line driver (cli.py) sit on top.
Every operation takes the document explicitly and returns a new one.
"""

__version__ = "3.0.0"
