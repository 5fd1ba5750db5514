"""Shared libraries for typed JSON message conversion.

Subpackages:
- ``libs.common``: configuration, logging, and metrics.
- ``libs.converters``: media types, the converter contract, codecs, the
  typed JSON converter, and the FastAPI integration.

Usage:
- Import stable, reusable functionality from here to keep application code lean.

Notes:
- Avoid application-specific logic; keep modules cohesive and broadly useful.
"""
