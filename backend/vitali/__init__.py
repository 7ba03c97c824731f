"""
Vitali Backend — Application Package Initializer
==================================================

What: The `vitali` package: telehealth API backend plus its state store.
Who:  Imported by uvicorn (vitali.main:app), Alembic, and pytest.

Architecture Note:

    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │         Services (Business Logic)   │  ← Validation, defaults
    ├─────────────────────────────────────┤
    │      State Store (store package)    │  ← Named in-memory buckets
    ├─────────────────────────────────────┤
    │   Snapshot Backend (PostgreSQL)     │  ← One JSON row per bucket
    └─────────────────────────────────────┘

    Handlers read and mutate buckets as ordinary dicts and lists. Every
    mutation schedules a debounced write of that bucket's full snapshot;
    when no database is configured the store stays purely in memory.
"""

__version__ = "1.0.0"
