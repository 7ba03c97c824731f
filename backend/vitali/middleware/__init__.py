# Middleware package init
"""
Vitali Backend — Middleware Package
=====================================

Middleware Chain:
    Request → [Request ID] → [Logging] → [CORS] → Route Handler

    Request ID runs first so the access log line and every log record emitted
    by the handler share the same correlation ID.
"""
