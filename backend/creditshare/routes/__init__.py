# Routes package init
"""
CreditShare Backend - API Routes Package
=========================================

Route Inventory:
    - files.py:         POST /api/files/upload             (store file, earn credits)
                        GET  /api/files                    (catalog listing)
                        GET  /api/files/{id}/download      (download gate)
                        GET  /api/files/uploads/{filename} (public fetch by name)
                        POST /api/files/{id}/report        (issue report)
    - transactions.py:  GET  /api/transactions/history     (balance + ledger)
    - health.py:        GET  /health                       (service health check)

Routes stay thin: they read the request, call one service and shape the
response. Services and settings come from app.state via dependencies.py.
"""
