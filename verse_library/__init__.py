"""
Verse Library — Package Initializer
====================================

What: Client-side library cache for a daily devotional reading app.
How:  Layered so the cache logic never depends on HTTP or device concerns:

    ┌─────────────────────────────────────┐
    │       Routes (consumer surface)     │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │  Catalog Cache / Progress Service   │  ← TTL, optimistic updates, sync
    ├─────────────────────────────────────┤
    │   Query Engine / Bounded Caches     │  ← search + filter views
    ├─────────────────────────────────────┤
    │  Content Gateway / Cache Storage    │  ← remote source of truth, disk
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
