"""CLI fixtures: a file-backed database and silenced logging."""

import json

import pytest
import structlog
from typer.testing import CliRunner

import relay.cli.utils


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch):
    """Keep log lines out of captured stdout; CliRunner swaps the streams per invoke."""
    monkeypatch.setattr(relay.cli.utils, "configure_logging", lambda **_: None)
    structlog.configure(
        processors=[structlog.processors.KeyValueRenderer()],
        logger_factory=structlog.ReturnLoggerFactory(),
        cache_logger_on_first_use=False,
    )


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def database(tmp_path):
    return str(tmp_path / "relay.db")


@pytest.fixture
def document_file(tmp_path):
    """Write a workflow document and return its path."""

    def _write(steps, *, name="CLI workflow", trigger=None, filename="workflow.json"):
        document = {"name": name, "config": {"steps": steps}}
        if trigger is not None:
            document["trigger"] = trigger
        path = tmp_path / filename
        path.write_text(json.dumps(document), encoding="utf-8")
        return path

    return _write
