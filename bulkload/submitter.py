"""Bulk submitter: one batch in, one ``_bulk`` request out."""
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Sequence

from elasticsearch import ApiError, TransportError

from .encoder import EncodedDocument
from .exceptions import SubmissionFailed

logger = logging.getLogger(__name__)

Batch = Sequence[EncodedDocument]

MAX_LOGGED_ERRORS = 5


@dataclass(frozen=True)
class SubmissionResult:
    accepted: int
    rejected: int = 0
    rejected_by_kind: Dict[str, int] = field(default_factory=dict)


def serialize_batch(batch: Batch) -> str:
    """Two newline-terminated lines per document, metadata first."""
    parts = []
    for doc in batch:
        parts.append(doc.action)
        parts.append("\n")
        parts.append(doc.source)
        parts.append("\n")
    return "".join(parts)


def _body(resp: Any) -> Dict[str, Any]:
    body = getattr(resp, "body", resp)
    return body if isinstance(body, dict) else {}


def _item_errors(items: Sequence[Dict[str, Any]]) -> list:
    errors = []
    for item in items:
        # each item is keyed by its op type: {"index": {...}}
        for result in item.values():
            if isinstance(result, dict) and "error" in result:
                errors.append(result["error"])
    return errors


def _error_kind(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get("type") or "unknown")
    return str(error)


def submit_batch(client: Any, batch: Batch, worker: str = "") -> SubmissionResult:
    """POST ``batch`` to ``/_bulk`` and interpret the response.

    A transport failure or a non-success status raises SubmissionFailed.
    Item-level rejections inside a successful response are counted and logged,
    the rest of the batch counts as accepted.
    """
    size = len(batch)
    try:
        resp = client.bulk(operations=serialize_batch(batch))
    except ApiError as e:
        raise SubmissionFailed(f"bulk request rejected: {e}", size, e.status_code) from e
    except TransportError as e:
        raise SubmissionFailed(f"bulk request failed: {e}", size) from e

    body = _body(resp)
    if not body.get("errors"):
        return SubmissionResult(accepted=size)

    errors = _item_errors(body.get("items") or [])
    kinds = Counter(_error_kind(e) for e in errors)
    rejected = len(errors)
    prefix = f"[{worker}] " if worker else ""
    logger.info("%sbulk request: %d of %d documents rejected (%s)",
                prefix, rejected, size, ", ".join(f"{k}={n}" for k, n in kinds.items()))
    for i, err in enumerate(errors[:MAX_LOGGED_ERRORS]):
        logger.info("%s  [%d] %s", prefix, i + 1, err)
    if rejected > MAX_LOGGED_ERRORS:
        logger.info("%s  ... and %d more errors", prefix, rejected - MAX_LOGGED_ERRORS)
    return SubmissionResult(
        accepted=size - rejected,
        rejected=rejected,
        rejected_by_kind=dict(kinds),
    )
