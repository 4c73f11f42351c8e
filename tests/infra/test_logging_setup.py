from __future__ import annotations

import logging

import pytest

from plansync.infra.logging.setup import (
    StdStreamToLogger,
    bindPlanId,
    closeCommandLogger,
    createCommandLogger,
    logEvent,
    mapLogLevel,
)


@pytest.mark.parametrize("name, level", [("warn", logging.WARNING), (" Debug ", logging.DEBUG), ("ERROR", logging.ERROR)])
def test_map_log_level(name, level):
    assert mapLogLevel(name) == level


def test_map_log_level_rejects_unknown():
    with pytest.raises(ValueError, match="TRACE"):
        mapLogLevel("TRACE")


def test_command_log_carries_run_and_plan(tmp_path):
    logger, path = createCommandLogger("plan-submit", str(tmp_path), "run-1", "INFO")
    logEvent(logger, logging.INFO, "run-1", "core", "started")
    bindPlanId(logger, "7")
    logEvent(logger, logging.WARNING, "run-1", "sync", "departments: skipped")
    logEvent(logger, logging.DEBUG, "run-1", "sync", "hidden")
    closeCommandLogger(logger)

    assert path.endswith("plan-submit_run-1.log")
    lines = open(path, encoding="utf-8").read().splitlines()
    assert len(lines) == 2
    assert "runId=run-1 plan=- comp=core msg=started" in lines[0]
    assert "WARNING runId=run-1 plan=7 comp=sync msg=departments: skipped" in lines[1]


def test_std_stream_is_logged_per_line(tmp_path):
    logger, path = createCommandLogger("plan-show", str(tmp_path), "run-2", "INFO")
    stream = StdStreamToLogger(logger, logging.INFO, "run-2", "stdout")
    stream.write("first\nsec")
    stream.write("ond\n\n")
    stream.write("tail")
    stream.flush()
    closeCommandLogger(logger)

    messages = [line.split("msg=", 1)[1] for line in open(path, encoding="utf-8").read().splitlines()]
    assert messages == ["first", "second", "tail"]
