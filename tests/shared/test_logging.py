import contextvars
import io
import json
import threading

from sftp_ingest.shared.observability import get_logger, set_correlation_id, setup_logging


def _lines(stream):
    return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]


def test_log_lines_are_json_with_run_id():
    stream = io.StringIO()
    setup_logging("INFO", stream=stream)

    set_correlation_id("run-json")
    get_logger("sftp_ingest.tests").info("file_processed", path="/data/inbound/a.csv")

    [line] = [entry for entry in _lines(stream) if entry["event"] == "file_processed"]
    assert line["correlation_id"] == "run-json"
    assert line["path"] == "/data/inbound/a.csv"
    assert line["level"] == "info"


def test_worker_threads_inherit_run_id_through_copied_context():
    stream = io.StringIO()
    setup_logging("INFO", stream=stream)
    set_correlation_id("run-worker")

    ctx = contextvars.copy_context()
    worker = threading.Thread(
        target=ctx.run, args=(get_logger("sftp_ingest.tests").info, "worker_event")
    )
    worker.start()
    worker.join()

    [line] = [entry for entry in _lines(stream) if entry["event"] == "worker_event"]
    assert line["correlation_id"] == "run-worker"


def test_level_filters_lower_events():
    stream = io.StringIO()
    setup_logging("WARNING", stream=stream)

    get_logger("sftp_ingest.tests").info("quiet_event")

    assert all(entry["event"] != "quiet_event" for entry in _lines(stream))
