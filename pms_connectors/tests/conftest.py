"""
Pytest configuration for connector tests
"""

from .fixtures import *  # noqa: F401, F403


# Markers for different test types
def pytest_configure(config):
    """Configure custom markers"""
    config.addinivalue_line("markers", "golden: mark test as part of golden contract suite")
