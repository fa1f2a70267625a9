# tests/test_lifecycle.py
"""
Index lifecycle tests.

Key tests verify that:
1. Setup steps run in order and are fatal on error
2. Index creation is idempotent
3. Refresh is restored and the index flushed whatever the load does
"""
import json
import logging

import pytest
from elasticsearch import BadRequestError, ConnectionError, NotFoundError

from bulkload.exceptions import ConfigError, IndexSetupError
from bulkload.lifecycle import (
    LoadSummary,
    create_index,
    delete_index,
    load_mapping,
    run_load,
)
from bulkload.worker import WorkerStats

DISABLE = {"index": {"refresh_interval": "-1"}}
RESTORE = {"index": {"refresh_interval": "1s"}}


def test_run_load_call_sequence(es, make_config):
    summary = run_load(es, make_config(), ['{"a":1}', '{"a":2}', '{"a":3}'])
    assert es.call_names() == [
        "exists", "create", "put_settings", "bulk", "bulk", "put_settings", "flush",
    ]
    settings = [kw["settings"] for name, kw in es.calls if name == "put_settings"]
    assert settings == [DISABLE, RESTORE]
    assert summary.docs == 3
    assert summary.stats.accepted == 3
    assert summary.workers == 1


def test_purge_and_mapping_run_before_refresh_toggle(es, make_config):
    es.indices.existing.add("test")
    mapping = {"properties": {"a": {"type": "keyword"}}}
    run_load(es, make_config(purge=True, mapping=json.dumps(mapping)), ['{"a":1}'])
    names = es.call_names()
    assert names[:5] == ["delete", "exists", "create", "put_mapping", "put_settings"]
    assert es.calls[3][1]["body"] == mapping


def test_create_existing_index_is_a_noop(es):
    es.indices.existing.add("test")
    assert create_index(es, "test") is False
    assert "create" not in es.call_names()
    assert create_index(es, "test") is False


def test_create_race_already_exists_is_not_fatal(es, api_error):
    es.indices.failures["create"] = api_error(BadRequestError, 400, "resource_already_exists_exception")
    assert create_index(es, "test") is False


def test_create_failure_is_fatal(es, make_config):
    es.indices.failures["create"] = ConnectionError("connection refused")
    with pytest.raises(IndexSetupError) as exc_info:
        run_load(es, make_config(), ['{"a":1}'])
    assert exc_info.value.step == "create index"
    assert "bulk" not in es.call_names()
    assert "put_settings" not in es.call_names()


def test_purge_of_missing_index_is_fine(es, api_error):
    es.indices.failures["delete"] = api_error(NotFoundError, 404, "index_not_found_exception")
    delete_index(es, "test")


def test_purge_failure_is_fatal(es, api_error):
    es.indices.failures["delete"] = api_error(BadRequestError, 400, "illegal_argument_exception")
    with pytest.raises(IndexSetupError):
        delete_index(es, "test")


def test_mapping_failure_is_fatal(es, make_config, api_error):
    es.indices.failures["put_mapping"] = api_error(BadRequestError, 400, "mapper_parsing_exception")
    with pytest.raises(IndexSetupError) as exc_info:
        run_load(es, make_config(mapping='{"properties": {}}'), ['{"a":1}'])
    assert exc_info.value.step == "put mapping"
    assert "bulk" not in es.call_names()


def test_disable_refresh_failure_is_fatal_and_skips_teardown(es, make_config):
    es.indices.failures["put_settings"] = ConnectionError("connection refused")
    with pytest.raises(IndexSetupError):
        run_load(es, make_config(), ['{"a":1}'])
    assert "flush" not in es.call_names()


def test_load_mapping_from_file(tmp_path):
    path = tmp_path / "mapping.json"
    path.write_text('{"properties": {"a": {"type": "long"}}}', encoding="utf-8")
    assert load_mapping(str(path)) == {"properties": {"a": {"type": "long"}}}


def test_load_mapping_literal():
    assert load_mapping('{"dynamic": false}') == {"dynamic": False}


@pytest.mark.parametrize("source", ["no-such-file.json", "[1, 2]"])
def test_load_mapping_rejects_non_objects(source):
    with pytest.raises(ConfigError):
        load_mapping(source)


def test_teardown_runs_after_read_error(es, make_config):
    def records():
        yield '{"a":1}'
        raise OSError("truncated")

    with pytest.raises(OSError):
        run_load(es, make_config(), records())
    assert es.call_names()[-2:] == ["put_settings", "flush"]


def test_teardown_errors_are_logged_not_raised(es, make_config, caplog):
    es.indices.failures["flush"] = ConnectionError("connection refused")
    with caplog.at_level(logging.ERROR, logger="bulkload.lifecycle"):
        summary = run_load(es, make_config(), ['{"a":1}'])
    assert summary.stats.accepted == 1
    assert "flush test failed" in caplog.text


def test_failed_batch_does_not_fail_the_load(es, make_config):
    es.bulk_failures = [ConnectionError("connection refused")]
    summary = run_load(es, make_config(), ['{"a":1}', '{"a":2}', '{"a":3}'])
    assert summary.stats.failed_batches == 1
    assert summary.stats.accepted == 1
    assert es.call_names()[-2:] == ["put_settings", "flush"]


def test_summary_line():
    summary = LoadSummary(docs=1000, elapsed=2.0, workers=4, stats=WorkerStats())
    assert str(summary) == "1000 docs in 2.000s at 500.000 docs/s with 4 workers"


def test_end_of_run_warning_lists_rejection_kinds(es, make_config, caplog):
    es.reject_sources = {'{"a":2}'}
    with caplog.at_level(logging.WARNING, logger="bulkload.lifecycle"):
        summary = run_load(es, make_config(), ['{"a":1}', '{"a":2}', '{"a":3}'])
    assert summary.stats.rejected == 1
    assert "mapper_parsing_exception=1" in caplog.text
