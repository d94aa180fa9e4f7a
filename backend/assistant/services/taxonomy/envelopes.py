"""Decoders for the response envelopes the marketplace APIs return.

Each known shape gets its own decoder. A payload that matches none of them is
tagged `UnrecognizedEnvelope` and yields no items; there is no best-effort
walk through arbitrary nesting.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from assistant.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ListEnvelope:
    """`{"data": [...]}`"""

    items: List[Dict[str, Any]]
    kind: str = "list"


@dataclass(frozen=True)
class DocsEnvelope:
    """`{"data": {"docs": [...], "totalDocs": n, ...}}`"""

    items: List[Dict[str, Any]]
    total: Optional[int] = None
    kind: str = "docs"


@dataclass(frozen=True)
class BareListEnvelope:
    """`[...]`"""

    items: List[Dict[str, Any]]
    kind: str = "bare_list"


@dataclass(frozen=True)
class UnrecognizedEnvelope:
    top_level_keys: List[str] = field(default_factory=list)
    items: List[Dict[str, Any]] = field(default_factory=list)
    kind: str = "unrecognized"


Envelope = Union[ListEnvelope, DocsEnvelope, BareListEnvelope, UnrecognizedEnvelope]


def _records(values: Sequence[Any]) -> List[Dict[str, Any]]:
    return [v for v in values if isinstance(v, dict)]


def _decode_docs(payload: Any) -> Optional[Envelope]:
    if not isinstance(payload, dict):
        return None
    data = payload.get("data")
    if isinstance(data, dict) and isinstance(data.get("docs"), list):
        total = data.get("totalDocs")
        return DocsEnvelope(items=_records(data["docs"]), total=total if isinstance(total, int) else None)
    return None


def _decode_list(payload: Any) -> Optional[Envelope]:
    if isinstance(payload, dict) and isinstance(payload.get("data"), list):
        return ListEnvelope(items=_records(payload["data"]))
    return None


def _decode_bare_list(payload: Any) -> Optional[Envelope]:
    if isinstance(payload, list):
        return BareListEnvelope(items=_records(payload))
    return None


_DECODERS: Sequence[Callable[[Any], Optional[Envelope]]] = (
    _decode_docs,
    _decode_list,
    _decode_bare_list,
)


def decode_envelope(payload: Any, *, source: str = "api") -> Envelope:
    for decoder in _DECODERS:
        envelope = decoder(payload)
        if envelope is not None:
            return envelope
    keys = sorted(payload.keys()) if isinstance(payload, dict) else []
    logger.warning(f"Unrecognized response envelope from {source} (keys={keys})")
    return UnrecognizedEnvelope(top_level_keys=keys)
