"""Interface-descriptor (ABI) handling: signatures and log decoding."""

from chainwatch.abi.decoder import AbiDecoder, decode_log, render_value
from chainwatch.abi.signatures import (
    canonical_signature,
    find_event,
    normalize_signature,
    signature_topic,
)

__all__ = [
    "AbiDecoder", "decode_log", "render_value",
    "canonical_signature", "find_event", "normalize_signature", "signature_topic",
]
