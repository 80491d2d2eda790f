import logging

import pytest


@pytest.fixture(autouse=True)
def _restore_root_logger():
    """CLI commands call setup_logging(), which replaces the root handlers."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
