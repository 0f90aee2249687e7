# Routes package init
"""
Client Portal Backend — API Routes Package
===========================================

Route Inventory:
    - client_data.py:   GET /api/client-data      (dashboard feed, secure key)
    - notion_proxy.py:  GET /api/secure-notion    (HMAC-signed proxy)
                        GET /api/secure-simple    (legacy)
                        GET /api/simple-notion    (legacy)
                        GET /api/notion           (legacy)
    - health.py:        GET /health

Routes stay thin: read the query string, call a service, return the result.
Access rules live in services/auth_service.py.
"""
