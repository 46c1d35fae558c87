# Services package init
"""
Verse Library — Services Layer
================================

What:  Cache, query and progress logic sitting between the routes (HTTP) and
       the remote gateway / durable storage.
How:   Services are created once in the app lifespan and handed to routes
       through FastAPI dependencies (see verse_library.dependencies).

Service Inventory:
    - ContentGateway (abstract): Remote source of truth for catalog and progress
    - HttpContentGateway: PostgREST client with retry and circuit breaker
    - CacheStorage: Atomic named-record storage on disk
    - BoundedQueryCache: FIFO-evicting result cache (search: 50, filter: 10)
    - query_engine: Pure search + filter composition
    - CatalogCache: TTL policy, refresh orchestration, optimistic mutations
    - ProgressService: Gateway-gated completions, streaks, cross-store sync
    - BackgroundRefreshService: Interval-gated periodic refresh
    - PerformanceMonitor: Cache hit/miss and interaction counters
"""
