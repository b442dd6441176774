import logging
import os
import sys

import pytest

# Add project root to Python path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


@pytest.fixture(autouse=True)
def flagcraft_debug_logs(caplog):
    caplog.set_level(logging.DEBUG, logger="flagcraft")
    yield
