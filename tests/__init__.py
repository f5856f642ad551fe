"""
PPMatch - Test Suite
====================

Structure:
    tests/
    ├── conftest.py          - Shared fixtures and mock backends
    ├── unit/                - Unit tests (fast, no external services)
    └── integration/         - Pipeline and API tests

Running:
    pytest tests/unit
    pytest tests/integration
    pytest -m "not integration"
"""
