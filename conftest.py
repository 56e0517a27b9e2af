"""Root conftest.py for stdio-rpc tests.

This file MUST be at the repository root so the ``stdio_rpc`` package is
importable when running tests from any subdirectory.
"""

import pytest
from unittest.mock import MagicMock


@pytest.fixture
def mock_logger():
    """Create a mock logger for testing.

    Transports and sessions accept an injected LoggerProtocol; ``bind``
    returns the same mock so component loggers can be asserted on.
    """
    logger = MagicMock()
    logger.info = MagicMock()
    logger.debug = MagicMock()
    logger.warning = MagicMock()
    logger.error = MagicMock()
    logger.exception = MagicMock()
    logger.bind = MagicMock(return_value=logger)
    return logger
