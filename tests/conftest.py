import os
import sys

import pytest


def pytest_configure():
    # Ensure `src/` is importable as top-level for `authstate.*` imports
    root = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    src_path = os.path.join(root, "src")
    if src_path not in sys.path:
        sys.path.insert(0, src_path)


@pytest.fixture
def secret() -> bytes:
    # Fixed key keeps failures reproducible; the cipher still draws fresh nonces
    return bytes(range(32))
