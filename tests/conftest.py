# tests/conftest.py
"""Pytest configuration and fixtures"""
import pytest
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from switchboard.core.catalog import build_default_catalog  # noqa: E402
from switchboard.infra.audit_log import MemoryAuditSink  # noqa: E402


@pytest.fixture
def catalog():
    """Built-in provider catalog"""
    return build_default_catalog()


@pytest.fixture
def audit_sink():
    """In-memory trust event sink"""
    return MemoryAuditSink()


@pytest.fixture
def org_id():
    """Default organization ID for tests"""
    return "org_test"


@pytest.fixture
def session_id():
    """Default session ID for tests"""
    return "sess_123"
