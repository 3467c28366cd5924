"""
Root conftest.py for the IDP metadata service.

Makes the service packages importable when the tests run from a source
checkout without an editable install.
"""

import sys
from pathlib import Path


def pytest_configure(config):
    """
    Add every service directory to sys.path.

    Each service keeps its package next to its tests, so the service
    directory is the import root.
    """
    root_dir = Path(__file__).parent

    for service_path in sorted((root_dir / "services").iterdir()):
        if service_path.is_dir() and str(service_path) not in sys.path:
            sys.path.insert(0, str(service_path))
