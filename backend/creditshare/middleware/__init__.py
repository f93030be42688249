# Middleware package init
"""
CreditShare Backend - Middleware Package
=========================================

Middleware Chain:
    Request → [Request ID] → [Logging] → [CORS] → Route Handler

    The request ID is assigned first so the access log line and every log
    entry written while handling the request share it.
"""
