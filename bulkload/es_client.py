"""Elasticsearch client shared by the lifecycle steps and all workers."""
import os

from dotenv import load_dotenv
from elasticsearch import Elasticsearch

from .config import DEFAULT_SERVER, LoadConfiguration

load_dotenv()

ES_URL = (os.getenv("ES_URL") or "").strip() or DEFAULT_SERVER
ES_API_KEY = (os.getenv("ES_API_KEY") or "").strip() or None
ES_USER = (os.getenv("ES_USER") or "").strip() or None
ES_VERIFY_TLS = os.getenv("ES_VERIFY_TLS", "true").lower() in ("true", "1", "yes")


def _float_env(name: str):
    value = os.getenv(name)
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


ES_REQUEST_TIMEOUT = _float_env("ES_REQUEST_TIMEOUT")


def get_client(config: LoadConfiguration) -> Elasticsearch:
    """Build a client for ``config.server``.

    Retries are switched off: a failed bulk request is reported, never resent.
    The connection pool holds one connection per worker.
    """
    kwargs = {
        "verify_certs": config.verify_certs,
        "max_retries": 0,
        "retry_on_timeout": False,
        "connections_per_node": max(config.workers, 1),
    }
    if config.basic_auth:
        kwargs["basic_auth"] = config.basic_auth
    if config.api_key:
        kwargs["api_key"] = config.api_key
    if config.request_timeout is not None:
        kwargs["request_timeout"] = config.request_timeout
    return Elasticsearch(config.server, **kwargs)
