from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from app import jobs


def test_sweep_job_prints_counts(session_factory, world, capsys):
    with patch.object(jobs, "SessionLocal", session_factory):
        assert jobs.main(["sweep"]) == 0
    assert json.loads(capsys.readouterr().out) == {"expired_complete": 0, "expired_incomplete": 0}


def test_recompute_job(session_factory, world, capsys):
    with patch.object(jobs, "SessionLocal", session_factory):
        assert jobs.main(["recompute-counters"]) == 0
    assert json.loads(capsys.readouterr().out) == {"programs_changed": 2}


def test_failing_job_returns_1(session_factory, world):
    with patch.object(jobs, "SessionLocal", session_factory):
        with patch.dict(jobs.JOBS, {"sweep": lambda db: 1 / 0}):
            assert jobs.main(["sweep"]) == 1


def test_unknown_job_exits():
    with pytest.raises(SystemExit):
        jobs.main(["vacuum"])
