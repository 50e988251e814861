"""
Decode an included extrinsic's events into the gateway's result payload.

Success yields a list of events, where an `OrderCreated` event carries the
on-chain `orderId` the coordinator needs for later replace/cancel. A dispatch
failure or interrupted batch raises SubmissionFailed with the decoded
section/method/docs.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Sequence

from dexgate.core.errors import SubmissionFailed

ORDER_CREATED_PALLETS = frozenset({"EqDex", "EqMarketMaker"})


def _event_fields(event: Any) -> tuple[str, str, Any]:
    value = getattr(event, "value", event)
    if isinstance(value, dict) and "event" in value and isinstance(value["event"], dict):
        value = value["event"]
    if not isinstance(value, dict):
        return "", "", None
    return (
        str(value.get("module_id", "")),
        str(value.get("event_id", "")),
        value.get("attributes"),
    )


def _attr(attributes: Any, index: int, name: str) -> Any:
    if isinstance(attributes, dict):
        return attributes.get(name)
    if isinstance(attributes, (list, tuple)) and len(attributes) > index:
        return attributes[index]
    return None


def _lower_first(s: str) -> str:
    return s[:1].lower() + s[1:] if s else s


def _describe(error: Optional[Dict[str, Any]]) -> tuple[Optional[str], Optional[str], str]:
    if not error:
        return None, None, "Extrinsic failed"
    section = error.get("module") or error.get("type")
    method = error.get("name")
    docs = error.get("docs") or []
    if isinstance(docs, str):
        docs = [docs]
    reason = " ".join(str(d) for d in docs)
    section_name = _lower_first(str(section)) if section else None
    return section_name, method, f"{section_name}.{method}: {reason}".strip()


def decode_events(
    events: Iterable[Any],
    error_message: Optional[Dict[str, Any]] = None,
    order_pallets: Sequence[str] = tuple(ORDER_CREATED_PALLETS),
) -> List[Dict[str, Any]]:
    """Turn triggered events into a success payload or raise SubmissionFailed."""
    success: List[Dict[str, Any]] = []
    failed = False
    batch_errors: List[Any] = []

    for event in events:
        module, name, attributes = _event_fields(event)
        if (module, name) == ("System", "ExtrinsicFailed"):
            failed = True
        elif (module, name) == ("Utility", "BatchInterrupted"):
            batch_errors.append(attributes)
        elif (module, name) == ("System", "ExtrinsicSuccess"):
            success.append({"section": "system", "method": "ExtrinsicSuccess"})
        elif name == "OrderCreated" and module in order_pallets:
            order_id = _attr(attributes, 1, "order_id")
            success.append({
                "section": _lower_first(module),
                "method": "OrderCreated",
                "orderId": None if order_id is None else str(order_id),
            })

    if batch_errors:
        messages = []
        first_index: Optional[int] = None
        for attrs in batch_errors:
            index = _attr(attrs, 0, "index")
            if first_index is None and index is not None:
                first_index = int(index)
            _, _, reason = _describe(error_message)
            messages.append(f"Batch tx failed at extrinsic #{index}. {reason}")
        section, method, _ = _describe(error_message)
        raise SubmissionFailed(", ".join(messages), section=section, method=method, step_index=first_index)

    if failed:
        section, method, reason = _describe(error_message)
        raise SubmissionFailed(reason, section=section, method=method)

    return success


def decode_receipt(receipt: Any, order_pallets: Sequence[str] = tuple(ORDER_CREATED_PALLETS)) -> List[Dict[str, Any]]:
    """Decode a substrate ExtrinsicReceipt (or anything shaped like one)."""
    events = receipt.triggered_events
    error_message = None
    if not receipt.is_success:
        error_message = receipt.error_message
    return decode_events(events, error_message, order_pallets)


def find_order_id(payload: Any) -> Optional[str]:
    """First on-chain order id in a decoded success payload, if any."""
    if not isinstance(payload, list):
        return None
    for event in payload:
        if isinstance(event, dict) and event.get("orderId") not in (None, ""):
            return str(event["orderId"])
    return None
