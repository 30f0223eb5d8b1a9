"""Event signature helpers: canonical signatures, topic hashes, fragment lookup."""

from __future__ import annotations

import json
import re
from typing import Any

from eth_utils import keccak

from chainwatch.errors import DecodeError

_BARE_INT = re.compile(r"^(u?int)(\[.*)?$")


def normalize_signature(signature: str) -> str:
    """Strip whitespace from a human-written signature like ``Transfer(address, uint256)``."""
    return "".join(signature.split())


def signature_topic(signature: str) -> str:
    """keccak256 of a canonical event signature, as 0x-prefixed hex (topic0)."""
    return "0x" + keccak(text=normalize_signature(signature)).hex()


def canonical_type(param: dict[str, Any]) -> str:
    """Canonical ABI type of one parameter, expanding tuple components."""
    typ = str(param["type"])
    if typ.startswith("tuple"):
        inner = ",".join(canonical_type(c) for c in param.get("components", []))
        return f"({inner}){typ[len('tuple'):]}"
    m = _BARE_INT.match(typ)
    if m:
        return f"{m.group(1)}256{m.group(2) or ''}"
    return typ


def canonical_signature(fragment: dict[str, Any]) -> str:
    """``Name(type1,type2,...)`` for an event fragment."""
    types = ",".join(canonical_type(p) for p in fragment.get("inputs", []))
    return f"{fragment['name']}({types})"


def fragment_topic(fragment: dict[str, Any]) -> str:
    return signature_topic(canonical_signature(fragment))


def load_descriptor(descriptor: Any) -> list[dict[str, Any]]:
    """Accept an ABI list, a JSON string, or a Hardhat/Truffle artifact dict."""
    if isinstance(descriptor, (str, bytes)):
        try:
            descriptor = json.loads(descriptor)
        except ValueError as exc:
            raise DecodeError(f"interface descriptor is not valid JSON: {exc}") from exc
    if isinstance(descriptor, dict) and isinstance(descriptor.get("abi"), list):
        descriptor = descriptor["abi"]
    if not isinstance(descriptor, list):
        raise DecodeError("interface descriptor must be a list of ABI entries")
    return [item for item in descriptor if isinstance(item, dict)]


def event_fragments(descriptor: Any) -> list[dict[str, Any]]:
    """All well-formed event fragments of a descriptor."""
    return [
        item for item in load_descriptor(descriptor)
        if item.get("type") == "event" and item.get("name")
    ]


def find_event(descriptor: Any, name: str) -> dict[str, Any]:
    """Resolve an event by bare name or by full signature.

    Raises DecodeError when nothing matches or a bare name is overloaded.
    """
    fragments = event_fragments(descriptor)
    if "(" in name:
        wanted = normalize_signature(name)
        matches = [f for f in fragments if canonical_signature(f) == wanted]
    else:
        matches = [f for f in fragments if f["name"] == name]

    if not matches:
        raise DecodeError(f"no event named {name!r} in interface descriptor")
    if len(matches) > 1:
        raise DecodeError(f"event name {name!r} is ambiguous ({len(matches)} overloads)")
    return matches[0]
