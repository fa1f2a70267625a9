"""Encode raw records into bulk action/source line pairs."""
import json
from dataclasses import dataclass
from typing import Any, Optional, Tuple

from .config import LoadConfiguration
from .exceptions import MalformedDocument


@dataclass(frozen=True)
class EncodedDocument:
    action: str
    source: str
    id: Optional[str] = None

    def lines(self) -> Tuple[str, str]:
        return self.action, self.source


def _id_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    # numbers and booleans keep their JSON spelling, e.g. 1 -> "1"
    return json.dumps(value)


def extract_id(record: str, id_field: str) -> str:
    """Return the value of ``id_field`` from a JSON object record."""
    try:
        doc = json.loads(record)
    except (ValueError, RecursionError) as e:
        raise MalformedDocument(f"invalid JSON: {e}", record) from e
    if not isinstance(doc, dict):
        raise MalformedDocument(f"expected a JSON object, got {type(doc).__name__}", record)
    if id_field not in doc:
        raise MalformedDocument(f"document has no id field ({id_field})", record)
    value = doc[id_field]
    if value is None or isinstance(value, (dict, list)):
        raise MalformedDocument(f"id field ({id_field}) must be a scalar, got {value!r}", record)
    return _id_text(value)


def encode_document(record: str, config: LoadConfiguration) -> EncodedDocument:
    """Build the action line and keep the record bytes as the source line."""
    meta = {"_index": config.index}
    if config.doc_type:
        meta["_type"] = config.doc_type
    doc_id = None
    if config.id_field:
        doc_id = extract_id(record, config.id_field)
        meta["_id"] = doc_id
    action = json.dumps({"index": meta}, ensure_ascii=False)
    return EncodedDocument(action=action, source=record, id=doc_id)


def decode_document(action: str, source: str) -> Tuple[Optional[str], str]:
    """Inverse of encode_document: return ``(id, source)`` from two wire lines."""
    meta = json.loads(action)["index"]
    return meta.get("_id"), source
