import os
import tempfile

os.environ.setdefault("TRACKIT_DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("TRACKIT_DATA_DIR", tempfile.mkdtemp(prefix="trackit-"))
os.environ.setdefault("TRACKIT_BCRYPT_ROUNDS", "4")
os.environ.setdefault("TRACKIT_ENV", "test")
os.environ.setdefault("TRACKIT_TIMEZONE", "UTC")

import pytest  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_rate_limits():
    from main import counter_store

    counter_store.clear()
    yield
    counter_store.clear()
