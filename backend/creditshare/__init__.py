"""
CreditShare Backend - Application Package
==========================================

A file-sharing service with a credit economy: uploading a file earns
credits, downloading someone else's file costs credits once, and
re-downloads are free.

Layers:
    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns, identity header
    ├─────────────────────────────────────┤
    │         Services (Business Logic)   │  ← upload, download gate, ledger,
    │                                     │    catalog, issue reports
    ├─────────────────────────────────────┤
    │   Models & Schemas  │  Blob Store   │  ← SQLAlchemy ORM + Pydantic,
    │                     │               │    file contents on disk
    ├─────────────────────────────────────┤
    │        Database (Persistence)       │  ← Async SQLAlchemy, unit of work
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
