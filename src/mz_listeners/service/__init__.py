"""Listener lifecycle services.

Provides:
- Settings loaded from .env
- Structured logging
- A small CLI surface
- The engine client and the listener registrar, consumer and teardown
"""
