from __future__ import annotations

import pytest

from vidflow import bootstrap
from vidflow.bootstrap import BootstrapTimeout, bootstrap_all, bootstrap_status, is_ready


class _BrokenSession:
    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info) -> None:
        return None

    async def execute(self, statement):
        raise OSError("connection refused")


@pytest.fixture
def fresh_bootstrap(monkeypatch):
    monkeypatch.setattr(bootstrap, "_IS_READY", False)
    monkeypatch.setattr(bootstrap, "_STATUS", bootstrap._BootstrapStatus())


async def test_bootstrap_marks_ready_once_the_database_answers(fresh_bootstrap, session_factory):
    await bootstrap_all(session_factory=session_factory, migrate=False)

    assert is_ready()
    status = bootstrap_status()
    assert status["db_ready"] is True
    assert status["db_migrated"] is False
    assert status["error"] is None


async def test_database_wait_gives_up_after_max_attempts(fresh_bootstrap):
    with pytest.raises(BootstrapTimeout) as excinfo:
        await bootstrap_all(
            session_factory=_BrokenSession,
            migrate=False,
            backoff_initial=0.001,
            backoff_max=0.001,
            max_attempts=3,
        )

    assert "connection refused" in str(excinfo.value)
    assert not is_ready()
    status = bootstrap_status()
    assert [step["attempt"] for step in status["steps"]] == [1, 2, 3]
    assert status["error"] == str(excinfo.value)
