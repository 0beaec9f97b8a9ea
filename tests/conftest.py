import sys
import os
import pytest

# Add the project root directory to the python path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import app as app_module


@pytest.fixture(autouse=True)
def clear_access_sessions():
    app_module.sessions.clear()
    yield
    app_module.sessions.clear()
