import asyncio
import inspect
import os
import sys
from pathlib import Path

# Pin settings before any imports that might read the environment
os.environ.setdefault("MODEL_BACKEND", "stub")
os.environ.setdefault("LOG_JSON", "true")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.pop("OPENAI_API_KEY", None)

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


import structlog  # noqa: E402

from promptgraph.config import reset_settings_cache  # noqa: E402

# Cached loggers would keep writing to a capsys stream closed by an earlier test
structlog.configure(cache_logger_on_first_use=False)


@pytest.fixture(autouse=True)
def reset_settings_state(monkeypatch, tmp_path):
    # Settings.from_env reads .env from the working directory
    monkeypatch.chdir(tmp_path)
    reset_settings_cache()
    yield
    reset_settings_cache()


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
