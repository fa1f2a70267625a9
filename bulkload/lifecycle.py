"""Index lifecycle around a load: prepare, disable refresh, load, restore, flush."""
import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable

from elasticsearch import ApiError, NotFoundError, TransportError

from .config import LoadConfiguration
from .exceptions import ConfigError, IndexSetupError
from .worker import WorkerStats, run_pool

logger = logging.getLogger(__name__)

REFRESH_DISABLED = "-1"
REFRESH_DEFAULT = "1s"

_ES_ERRORS = (ApiError, TransportError)


@dataclass(frozen=True)
class LoadSummary:
    docs: int
    elapsed: float
    workers: int
    stats: WorkerStats

    @property
    def rate(self) -> float:
        return self.docs / self.elapsed if self.elapsed > 0 else 0.0

    def __str__(self) -> str:
        return (f"{self.docs} docs in {self.elapsed:.3f}s at {self.rate:0.3f} docs/s "
                f"with {self.workers} workers")


def delete_index(client: Any, index: str) -> None:
    """Drop ``index``; an index that does not exist is already purged."""
    try:
        client.indices.delete(index=index)
        logger.info("deleted index %s", index)
    except NotFoundError:
        logger.info("index %s does not exist, nothing to purge", index)
    except _ES_ERRORS as e:
        raise IndexSetupError("delete index", str(e)) from e


def create_index(client: Any, index: str) -> bool:
    """Create ``index`` unless it exists. Returns True if it was created."""
    try:
        if client.indices.exists(index=index):
            logger.info("index %s exists, skipped", index)
            return False
        client.indices.create(index=index)
    except ApiError as e:
        # lost a race with another creator
        if "resource_already_exists" in str(e).lower():
            logger.info("index %s exists, skipped", index)
            return False
        raise IndexSetupError("create index", str(e)) from e
    except TransportError as e:
        raise IndexSetupError("create index", str(e)) from e
    logger.info("created index %s", index)
    return True


def load_mapping(source: str) -> Dict[str, Any]:
    """Parse a mapping given either as a file path or as literal JSON."""
    if os.path.exists(source):
        try:
            with open(source, "r", encoding="utf-8") as f:
                text = f.read()
        except OSError as e:
            raise ConfigError(f"cannot read mapping file {source}: {e}") from e
    else:
        text = source
    try:
        mapping = json.loads(text)
    except ValueError as e:
        raise ConfigError(f"mapping is neither a file nor valid JSON: {e}") from e
    if not isinstance(mapping, dict):
        raise ConfigError("mapping must be a JSON object")
    return mapping


def put_mapping(client: Any, index: str, mapping: Dict[str, Any]) -> None:
    try:
        client.indices.put_mapping(index=index, body=mapping)
    except _ES_ERRORS as e:
        raise IndexSetupError("put mapping", str(e)) from e
    logger.info("applied mapping to %s", index)


def set_refresh_interval(client: Any, index: str, value: str) -> None:
    client.indices.put_settings(index=index, settings={"index": {"refresh_interval": value}})
    logger.info("set index.refresh_interval to %s", value)


def disable_refresh(client: Any, index: str) -> None:
    try:
        set_refresh_interval(client, index, REFRESH_DISABLED)
    except _ES_ERRORS as e:
        raise IndexSetupError("disable refresh", str(e)) from e


def restore_and_flush(client: Any, index: str) -> None:
    """Restore the refresh interval, then flush. Errors are logged only."""
    try:
        set_refresh_interval(client, index, REFRESH_DEFAULT)
    except _ES_ERRORS as e:
        logger.error("restore refresh interval on %s failed: %s", index, e)
    try:
        client.indices.flush(index=index)
        logger.info("index %s flushed", index)
    except _ES_ERRORS as e:
        logger.error("flush %s failed: %s", index, e)


def prepare_index(client: Any, config: LoadConfiguration) -> None:
    """Purge, create and map the index. Every failure here is fatal."""
    if config.purge:
        delete_index(client, config.index)
    create_index(client, config.index)
    if config.mapping:
        put_mapping(client, config.index, load_mapping(config.mapping))


def run_load(client: Any, config: LoadConfiguration, records: Iterable[str]) -> LoadSummary:
    """Prepare the index, load ``records`` with the worker pool and restore settings.

    Refresh is restored and the index flushed once refresh has been disabled,
    whatever happens during the load itself.
    """
    prepare_index(client, config)
    disable_refresh(client, config.index)
    start = time.monotonic()
    try:
        docs, stats = run_pool(records, client, config)
        elapsed = time.monotonic() - start
    finally:
        restore_and_flush(client, config.index)
    if stats.malformed or stats.failed_batches or stats.rejected:
        logger.warning(
            "%d malformed documents skipped, %d documents rejected, %d batches failed (%d documents lost)",
            stats.malformed, stats.rejected, stats.failed_batches, stats.lost,
        )
        if stats.rejected_by_kind:
            logger.warning("rejections by kind: %s",
                           ", ".join(f"{k}={n}" for k, n in sorted(stats.rejected_by_kind.items())))
    return LoadSummary(docs=docs, elapsed=elapsed, workers=config.workers, stats=stats)
