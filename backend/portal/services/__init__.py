# Services package init
"""
Client Portal Backend — Services Layer
=======================================

Service Inventory:
    - auth_service:    secure-key and HMAC verification, client resolution
    - query_builder:   tenant-scoped Notion query bodies, result shaping
    - notion_service:  Notion REST client with retry and circuit breaker
    - records_service: orchestrates the above for each route
"""
