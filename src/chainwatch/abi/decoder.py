"""ABI log decoder - turns raw logs into named events with rendered arguments."""

from __future__ import annotations

import logging
from typing import Any

from eth_abi import decode as abi_decode
from eth_utils import decode_hex, to_checksum_address

from chainwatch.abi.signatures import canonical_type, event_fragments, fragment_topic
from chainwatch.errors import DecodeError
from chainwatch.models.records import DecodedEvent, RawLog

log = logging.getLogger(__name__)


def _is_dynamic(abi_type: str) -> bool:
    return abi_type in ("string", "bytes") or abi_type.endswith("]") or abi_type.startswith("tuple")


def render_value(value: Any, abi_type: str, components: list[dict] | None = None) -> Any:
    """Render a decoded value in canonical textual form.

    Integers become decimal strings, addresses are checksummed, byte arrays
    become 0x-hex, booleans become "true"/"false". Arrays and tuples render
    as lists of rendered elements.
    """
    if abi_type.endswith("]"):
        inner = abi_type[: abi_type.rindex("[")]
        return [render_value(v, inner, components) for v in value]
    if abi_type == "tuple":
        return [
            render_value(v, c["type"], c.get("components"))
            for v, c in zip(value, components or [])
        ]
    if abi_type == "address":
        return to_checksum_address(value)
    if abi_type == "bool":
        return "true" if value else "false"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    return value


class AbiDecoder:
    """Decodes logs against the event fragments of one interface descriptor.

    A descriptor that cannot be parsed yields a decoder that never decodes.
    """

    def __init__(self, descriptor: Any) -> None:
        self._by_topic: dict[str, dict] = {}
        self._anonymous: list[dict] = []
        try:
            fragments = event_fragments(descriptor)
        except DecodeError as exc:
            log.warning("Unusable interface descriptor: %s", exc)
            fragments = []

        for fragment in fragments:
            if fragment.get("anonymous"):
                self._anonymous.append(fragment)
                continue
            try:
                self._by_topic[fragment_topic(fragment)] = fragment
            except (KeyError, TypeError) as exc:
                log.debug("Skipping malformed event fragment %r: %s", fragment.get("name"), exc)

    def decode(self, raw: RawLog) -> DecodedEvent | None:
        """Decode a log, or return None if no fragment matches cleanly."""
        topic0 = raw.topics[0].lower() if raw.topics else None
        fragment = self._by_topic.get(topic0) if topic0 else None
        if fragment is not None:
            try:
                return self._decode_with(fragment, raw, list(raw.topics[1:]))
            except Exception as exc:
                log.debug("Log %s does not decode as %s: %s", raw.event_id, fragment["name"], exc)
                return None

        for candidate in self._anonymous:
            try:
                return self._decode_with(candidate, raw, list(raw.topics))
            except Exception:
                continue
        return None

    def _decode_with(self, fragment: dict, raw: RawLog, topics: list[str]) -> DecodedEvent:
        inputs = fragment.get("inputs", [])
        indexed = [p for p in inputs if p.get("indexed")]
        plain = [p for p in inputs if not p.get("indexed")]
        if len(indexed) != len(topics):
            raise DecodeError(
                f"expected {len(indexed)} indexed topics, log has {len(topics)}"
            )

        indexed_values = []
        for param, topic in zip(indexed, topics):
            abi_type = canonical_type(param)
            topic_bytes = decode_hex(topic)
            if len(topic_bytes) != 32:
                raise DecodeError(f"topic is {len(topic_bytes)} bytes, expected 32")
            if _is_dynamic(param["type"]):
                # only the keccak hash of dynamic indexed values is on-chain
                indexed_values.append("0x" + topic_bytes.hex())
            else:
                value = abi_decode([abi_type], topic_bytes)[0]
                indexed_values.append(render_value(value, param["type"], param.get("components")))

        data_values = abi_decode([canonical_type(p) for p in plain], decode_hex(raw.data or "0x"))
        rendered_plain = [
            render_value(v, p["type"], p.get("components")) for v, p in zip(data_values, plain)
        ]

        args: dict[str, Any] = {}
        it_indexed = iter(indexed_values)
        it_plain = iter(rendered_plain)
        for position, param in enumerate(inputs):
            value = next(it_indexed) if param.get("indexed") else next(it_plain)
            args[str(position)] = value
            if param.get("name"):
                args[param["name"]] = value

        return DecodedEvent(name=fragment["name"], args=args)


def decode_log(descriptor: Any, raw: RawLog) -> DecodedEvent | None:
    """One-shot decode. Never raises."""
    return AbiDecoder(descriptor).decode(raw)
