"""
Client Portal Backend — Application Package Initializer
=======================================================

What: Marks the `portal` directory as a Python package.
Who:  Imported by uvicorn (`portal.main:app`), the serverless adapter
      (`portal.handler:handler`) and pytest.

Architecture Note:
    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │   Services (Auth, Query, Records)   │  ← tenant rules, orchestration
    ├─────────────────────────────────────┤
    │        Schemas (API contracts)      │  ← Pydantic response models
    ├─────────────────────────────────────┤
    │     NotionService (Upstream API)    │  ← httpx + retry + breaker
    └─────────────────────────────────────┘

    There is no database of our own: Notion is the system of record and every
    request is answered from a fresh, tenant-filtered query.
"""

__version__ = "1.0.0"
