# tests/conftest.py
"""Shared fakes: an in-memory stand-in for the Elasticsearch client."""
import json
import threading
from typing import Any, Dict, List, Optional

import pytest
from elastic_transport import ApiResponseMeta, HttpHeaders, NodeConfig

from bulkload.config import LoadConfiguration


def api_error(cls, status: int, error_type: str):
    """Build an elasticsearch ApiError subclass the way the client raises it."""
    meta = ApiResponseMeta(
        status=status,
        http_version="1.1",
        headers=HttpHeaders(),
        duration=0.0,
        node=NodeConfig("http", "localhost", 9200),
    )
    body = {"error": {"type": error_type, "root_cause": [{"type": error_type, "reason": error_type}]},
            "status": status}
    return cls(message=error_type, meta=meta, body=body)


class FakeIndices:
    def __init__(self, client: "FakeElasticsearch"):
        self._client = client
        self.existing = set()
        self.failures: Dict[str, Exception] = {}

    def _call(self, name: str, **kwargs):
        self._client.calls.append((name, kwargs))
        if name in self.failures:
            raise self.failures[name]

    def delete(self, index: str):
        self._call("delete", index=index)
        self.existing.discard(index)
        return {"acknowledged": True}

    def exists(self, index: str):
        self._call("exists", index=index)
        return index in self.existing

    def create(self, index: str):
        self._call("create", index=index)
        self.existing.add(index)
        return {"acknowledged": True}

    def put_mapping(self, index: str, body: Dict[str, Any]):
        self._call("put_mapping", index=index, body=body)
        return {"acknowledged": True}

    def put_settings(self, index: str, settings: Dict[str, Any]):
        self._call("put_settings", index=index, settings=settings)
        return {"acknowledged": True}

    def flush(self, index: str):
        self._call("flush", index=index)
        return {"_shards": {"total": 1, "successful": 1, "failed": 0}}


class FakeElasticsearch:
    """Records every call; bulk bodies are kept as raw NDJSON strings."""

    def __init__(self):
        self.calls: List[tuple] = []
        self.indices = FakeIndices(self)
        self.bodies: List[str] = []
        self.bulk_failures: List[Optional[Exception]] = []
        self.reject_sources = set()
        self._lock = threading.Lock()

    def bulk(self, operations: str):
        with self._lock:
            self.calls.append(("bulk", {}))
            failure = self.bulk_failures.pop(0) if self.bulk_failures else None
            if failure is not None:
                raise failure
            self.bodies.append(operations)
        lines = operations.split("\n")[:-1]
        items = []
        for source in lines[1::2]:
            if source in self.reject_sources:
                items.append({"index": {"status": 400, "error": {
                    "type": "mapper_parsing_exception", "reason": "failed to parse"}}})
            else:
                items.append({"index": {"status": 201, "result": "created"}})
        errors = any("error" in item["index"] for item in items)
        return {"took": 1, "errors": errors, "items": items}

    @property
    def batches(self) -> List[List[str]]:
        """Source lines of every successful bulk body, one list per request."""
        return [body.split("\n")[:-1][1::2] for body in self.bodies]

    @property
    def actions(self) -> List[dict]:
        return [json.loads(line) for body in self.bodies for line in body.split("\n")[:-1][0::2]]

    def call_names(self) -> List[str]:
        return [name for name, _ in self.calls]


@pytest.fixture
def es():
    return FakeElasticsearch()


@pytest.fixture
def make_config():
    def _make(**kwargs) -> LoadConfiguration:
        kwargs.setdefault("index", "test")
        kwargs.setdefault("batch_size", 2)
        kwargs.setdefault("workers", 1)
        return LoadConfiguration(**kwargs)

    return _make


@pytest.fixture(name="api_error")
def api_error_fixture():
    return api_error
