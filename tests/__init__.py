"""Tests for the converter library.

This package validates configuration, metrics, media type handling, codecs,
the typed JSON converter, and its FastAPI integration. All tests run
in-process; no external services are required.
"""
