#!/usr/bin/env python3
"""Shared pytest fixtures for json-split test suite."""

import pytest
import io
import json
import pathlib
import sys
from typing import Any, Dict, List

# Add parent directory to path for imports
sys.path.insert(0, str(pathlib.Path(__file__).parent.parent))

# Import test data generator
from tests.fixtures.generate_test_data import (
    generate_flat_json,
    generate_nested_json,
    generate_corrupted_json,
    generate_unicode_json,
    generate_wrapped_json,
)


# ============================================================================
# File Fixtures
# ============================================================================

@pytest.fixture
def small_json_file(tmp_path) -> pathlib.Path:
    """Array of 100 flat records."""
    json_file = tmp_path / "small.json"
    generate_flat_json(100, str(json_file))
    return json_file


@pytest.fixture
def nested_json_file(tmp_path) -> pathlib.Path:
    """Array of records with nested objects and arrays."""
    json_file = tmp_path / "nested.json"
    generate_nested_json(50, 4, str(json_file))
    return json_file


@pytest.fixture
def wrapped_json_file(tmp_path) -> pathlib.Path:
    """Object root holding metadata next to the record array."""
    json_file = tmp_path / "wrapped.json"
    generate_wrapped_json(25, str(json_file))
    return json_file


@pytest.fixture
def corrupted_json_file(tmp_path) -> pathlib.Path:
    """Record array truncated after 10 complete records."""
    json_file = tmp_path / "corrupted.json"
    generate_corrupted_json(10, str(json_file))
    return json_file


@pytest.fixture
def unicode_json_file(tmp_path) -> pathlib.Path:
    """Create a JSON file with Unicode characters."""
    json_file = tmp_path / "unicode.json"
    generate_unicode_json(100, str(json_file))
    return json_file


# ============================================================================
# Splitter Fixtures
# ============================================================================

@pytest.fixture
def array_splitter():
    """Create a splitter with the built-in ArrayVisitor."""
    from jsonsplit.json_splitter import JSONSplitter
    return JSONSplitter.make_array_splitter()


@pytest.fixture
def json_stream():
    """Turn a Python value (or raw JSON text) into a binary stream."""
    def make(data) -> io.BytesIO:
        text = data if isinstance(data, str) else json.dumps(data)
        return io.BytesIO(text.encode('utf-8'))
    return make


# ============================================================================
# FastAPI Test Client
# ============================================================================

@pytest.fixture
def fastapi_client():
    """Create a FastAPI test client for the split API."""
    from fastapi.testclient import TestClient
    from split_api.app.main import app

    return TestClient(app)


# ============================================================================
# Test Data Fixtures
# ============================================================================

@pytest.fixture
def sample_json_records() -> List[Dict[str, Any]]:
    """Generate sample JSON records for testing."""
    return [
        {"id": i, "name": f"Record {i}", "value": i * 10}
        for i in range(100)
    ]


@pytest.fixture
def complex_json_structure() -> Dict[str, Any]:
    """Generate a complex JSON structure for testing."""
    return {
        "metadata": {
            "version": "1.0",
            "timestamp": "2024-01-01T00:00:00Z"
        },
        "data": {
            "users": [
                {
                    "id": i,
                    "profile": {
                        "name": f"User {i}",
                        "settings": {
                            "notifications": True,
                            "theme": "dark"
                        }
                    },
                    "activity": [
                        {"action": f"action_{j}", "timestamp": j}
                        for j in range(5)
                    ]
                }
                for i in range(10)
            ]
        }
    }


# ============================================================================
# Test Markers
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "integration: marks integration tests")
    config.addinivalue_line("markers", "benchmark: marks benchmark tests")
