"""
SchemaHub Server - versioned schema registry with compatibility enforcement.

This package implements a schema registry service built on:
- Subjects as independently versioned streams of schema evolution
- A format-agnostic field model consumed by the compatibility checker
- Globally unique, monotonically increasing schema IDs
- An append-only schema store (in-memory or SQLite)

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌─────────────────┐
    │  Producer/  │────▶│    HTTP     │────▶│ SubjectManager  │
    │  Consumer   │     │     API     │     │ (per-subject    │
    └─────────────┘     └─────────────┘     │  serialization) │
                                            └────────┬────────┘
                                                     │
                        ┌────────────────────────────┼──────────────┐
                        │                            │              │
                        ▼                            ▼              ▼
                   ┌──────────┐              ┌──────────────┐  ┌──────────┐
                   │ Analyzer │              │ Compatibility│  │  Schema  │
                   │  table   │              │   checker    │  │  store   │
                   └──────────┘              └──────────────┘  └────┬─────┘
                                                                    │
                                                                    ▼
                                                              ┌───────────┐
                                                              │    ID     │
                                                              │ allocator │
                                                              └───────────┘

Invariants:
    - Schema IDs are never reused, not even across restarts
    - Versions per subject are contiguous integers starting at 1
    - Schema records are immutable once registered
    - Registration is all-or-nothing

How to change safely:
    - New formats plug in through the analyzer table, not the checker
    - New storage backends must implement the SchemaStore protocol
    - Never relax a compatibility rule without a migration plan for readers

Version: see _version.py.
"""

from ._version import __version__

__all__ = ["__version__"]
