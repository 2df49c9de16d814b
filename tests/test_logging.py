"""Tests for logging setup and helpers."""

from __future__ import annotations

import pytest

from embroidery_buddy import logging as logging_module


@pytest.fixture
def captured():
    """Replace all sinks with a list collector; restore a clean logger afterwards."""
    logging_module.logger.remove()
    records: list[dict] = []
    logging_module.logger.add(lambda message: records.append(message.record), level="TRACE")
    yield records
    logging_module.logger.remove()


def test_setup_logging_creates_log_files(tmp_path):
    """Test that the operations and structured sinks are created in log_dir."""
    log_dir = tmp_path / "logs"
    logging_module.setup_logging(log_dir=log_dir)

    logging_module.get_logger(source="test").info("Hello")
    logging_module.logger.complete()

    assert (log_dir / "operations.log").exists()
    assert (log_dir / "structured.jsonl").exists()
    assert not (log_dir / "debug.log").exists()
    assert "Hello" in (log_dir / "operations.log").read_text()
    logging_module.logger.remove()


def test_setup_logging_debug_sink(tmp_path):
    """Test that debug mode adds the debug log."""
    log_dir = tmp_path / "logs"
    logging_module.setup_logging(debug=True, log_dir=log_dir)

    logging_module.get_logger(source="test").debug("Details")
    logging_module.logger.complete()

    assert "Details" in (log_dir / "debug.log").read_text()
    logging_module.logger.remove()


def test_get_logger_preserves_context_metadata(captured):
    """Test bound logger keeps job_id, tags, and source metadata."""
    log = logging_module.get_logger(job_id="job-123", tags=["disk"], source="disk")
    log.info("Context test")

    record = captured[0]
    assert record["extra"]["job_id"] == "job-123"
    assert record["extra"]["tags"] == ["disk"]
    assert record["extra"]["source"] == "disk"


def test_operation_context_success(captured):
    """Test that start and completion are logged under one job id."""
    with logging_module.operation_context("transaction", disk="/tmp/x.img") as log:
        log.debug("Writing /a.txt")

    messages = [r["message"] for r in captured]
    assert messages == ["Transaction started", "Writing /a.txt", "Transaction completed"]
    job_ids = {r["extra"]["job_id"] for r in captured}
    assert len(job_ids) == 1
    assert job_ids.pop().startswith("transaction-")
    assert captured[-1]["level"].name == "SUCCESS"


def test_operation_context_tags_records(captured):
    """Test that records in the block carry the operation as source and tag."""
    with logging_module.operation_context("clear") as log:
        log.info("Recreating filesystem")

    record = next(r for r in captured if r["message"] == "Recreating filesystem")
    assert record["extra"]["source"] == "clear"
    assert record["extra"]["tags"] == ["clear"]
    assert record["extra"]["job_id"].startswith("clear-")


def test_operation_context_failure_reraises(captured):
    """Test that failures are logged with the error and re-raised."""
    with pytest.raises(ValueError):
        with logging_module.operation_context("clear"):
            raise ValueError("disk busy")

    failure = captured[-1]
    assert failure["message"] == "Clear failed"
    assert failure["level"].name == "ERROR"
    assert failure["extra"]["error"] == "disk busy"
    assert failure["extra"]["error_type"] == "ValueError"


def test_logger_factory_sources(captured):
    """Test that domain loggers tag their records."""
    logging_module.LoggerFactory.for_disk().info("disk")
    logging_module.LoggerFactory.for_gadget().info("gadget")
    logging_module.LoggerFactory.for_configfs().info("configfs")
    logging_module.LoggerFactory.for_system().info("system")

    assert [r["extra"]["source"] for r in captured] == ["disk", "gadget", "configfs", "system"]
    assert "configfs" in captured[2]["extra"]["tags"]


def test_trace_records_only_with_trace(tmp_path):
    """Test that configfs writes reach debug.log only in trace mode."""
    debug_dir = tmp_path / "debug"
    logging_module.setup_logging(debug=True, log_dir=debug_dir)
    logging_module.LoggerFactory.for_configfs().trace("UDC <- '\\n'")
    logging_module.logger.complete()
    assert "UDC" not in (debug_dir / "debug.log").read_text()

    trace_dir = tmp_path / "trace"
    logging_module.setup_logging(trace=True, log_dir=trace_dir)
    logging_module.LoggerFactory.for_configfs().trace("UDC <- '\\n'")
    logging_module.logger.complete()
    assert "UDC" in (trace_dir / "debug.log").read_text()
    logging_module.logger.remove()
