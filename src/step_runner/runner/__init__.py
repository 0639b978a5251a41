"""Local runner components.

Provides:
- Settings loaded from .env
- Structured logging
- Definition loading
- A small CLI surface around the workflow engine
"""
