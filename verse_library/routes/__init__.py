# Routes package init
"""
Verse Library — API Routes Package
====================================

Route Inventory:
    - library.py:  GET    /api/chapters                    (catalog, TTL-cached)
                   POST   /api/chapters/refresh            (pull-to-refresh)
                   GET    /api/chapters/filtered           (search + filter view)
                   PUT    /api/library/search              (set search query)
                   PUT    /api/library/filter              (select filter)
                   POST   /api/chapters/{id}/read          (mark verse read)
                   POST   /api/chapters/{id}/favorite      (toggle favorite)
                   GET    /api/chapters/{number}/verses    (chapter verses)
                   DELETE /api/cache                       (clear cache)
    - progress.py: GET  /api/progress, POST /api/progress/sync,
                   POST /api/lifecycle/foreground, GET /api/metrics
    - health.py:   GET  /health

Routes stay thin: they read the request, call a service and shape the
response. Services come from verse_library.dependencies.
"""
