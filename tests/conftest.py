"""
pytest configuration for audit bridge tests.

Adds src directory to Python path for imports and sets up test environment.
"""

import os
import sys
from pathlib import Path

# Set test environment variables BEFORE any imports
os.environ.setdefault("APP_ENVIRONMENT", "local")
# Dummy credentials so boto3/moto never reach for a real profile
os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")

# Add src directory to Python path
src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))

import pytest  # noqa: E402

from core.logging.context import clear_log_context  # noqa: E402


@pytest.fixture(autouse=True)
def _clean_log_context():
    clear_log_context()
    yield
    clear_log_context()
