"""Load configuration: one immutable object shared by every pipeline stage."""
import os
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import urlsplit

from .exceptions import ConfigError

DEFAULT_SERVER = "http://localhost:9200"
DEFAULT_BATCH_SIZE = 1000


def default_workers() -> int:
    return os.cpu_count() or 1


def parse_credentials(value: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """Split curl-style ``username:password``. Empty input means no auth."""
    if not value:
        return None, None
    parts = value.split(":")
    if len(parts) != 2:
        raise ConfigError("http basic auth syntax is: username:password")
    return parts[0], parts[1]


def normalize_server(server: str) -> str:
    """Validate a server URL and strip any trailing slash."""
    server = (server or "").strip().rstrip("/")
    parts = urlsplit(server)
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise ConfigError(f"server must look like http(s)://host[:port], got {server!r}")
    try:
        parts.port
    except ValueError as e:
        raise ConfigError(f"invalid port in server {server!r}") from e
    return server


@dataclass(frozen=True)
class LoadConfiguration:
    index: str
    server: str = DEFAULT_SERVER
    doc_type: Optional[str] = None
    batch_size: int = DEFAULT_BATCH_SIZE
    workers: int = 1
    id_field: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    api_key: Optional[str] = None
    verify_certs: bool = True
    request_timeout: Optional[float] = None
    verbose: bool = False
    purge: bool = False
    mapping: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.index:
            raise ConfigError("index name required")
        if self.batch_size < 1:
            raise ConfigError(f"batch size must be at least 1, got {self.batch_size}")
        if self.workers < 1:
            raise ConfigError(f"worker count must be at least 1, got {self.workers}")
        if self.username and self.api_key:
            raise ConfigError("use either basic auth or an API key, not both")
        # frozen: go through object.__setattr__
        object.__setattr__(self, "server", normalize_server(self.server))

    @property
    def basic_auth(self) -> Optional[Tuple[str, str]]:
        if self.username is None:
            return None
        return (self.username, self.password or "")
