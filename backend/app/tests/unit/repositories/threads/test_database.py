import logging

import pytest
from sqlalchemy.pool import StaticPool

from thread_core.logger_config import get_logger
from thread_core.repositories.threads.database import build_engine


def test_in_memory_sqlite_shares_one_connection():
    engine = build_engine("sqlite://")

    assert isinstance(engine.pool, StaticPool)
    engine.dispose()


def test_file_sqlite_uses_default_pool(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'threads.db'}")

    assert not isinstance(engine.pool, StaticPool)
    engine.dispose()


def test_missing_url_is_rejected():
    with pytest.raises(ValueError):
        build_engine("")


def test_get_logger_installs_single_handler():
    first = get_logger("thread_core.tests.logger", logging.DEBUG)
    second = get_logger("thread_core.tests.logger", "WARNING")

    assert first is second
    assert len(second.handlers) == 1
    assert second.level == logging.WARNING
