"""Filter construction - derives {address, topic0} from a subscription."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Union

from chainwatch.abi.signatures import canonical_signature, find_event, signature_topic
from chainwatch.errors import DecodeError
from chainwatch.models.records import LogFilter, Subscription

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignatureSource:
    """Filter on an explicit event signature string."""

    signature: str


@dataclass(frozen=True)
class DescriptorSource:
    """Filter on a named event resolved from an interface descriptor."""

    descriptor: Any
    event_name: str


@dataclass(frozen=True)
class WildcardSource:
    """No event filter: every log emitted by the contract."""


FilterSource = Union[SignatureSource, DescriptorSource, WildcardSource]


def filter_source(sub: Subscription) -> FilterSource:
    """Pick the single effective filter source. A signature wins over a descriptor."""
    if sub.event_signature:
        return SignatureSource(sub.event_signature)
    if sub.interface_descriptor and sub.event_name:
        return DescriptorSource(sub.interface_descriptor, sub.event_name)
    return WildcardSource()


def resolve_topic0(source: FilterSource) -> str | None:
    """topic0 for a filter source, or None for wildcard.

    Descriptor resolution failures degrade to wildcard instead of raising.
    """
    if isinstance(source, SignatureSource):
        return signature_topic(source.signature)
    if isinstance(source, DescriptorSource):
        try:
            fragment = find_event(source.descriptor, source.event_name)
            return signature_topic(canonical_signature(fragment))
        except (DecodeError, KeyError, TypeError) as exc:
            log.warning(
                "Could not resolve event %r from descriptor, watching all events: %s",
                source.event_name, exc,
            )
            return None
    return None


class FilterBuilder:
    """Builds the live/historical LogFilter for a subscription."""

    def build(self, sub: Subscription) -> LogFilter:
        source = filter_source(sub)
        topic0 = resolve_topic0(source)
        log.debug(
            "Filter for %s: address=%s source=%s topic0=%s",
            sub.id, sub.contract_address, type(source).__name__, topic0,
        )
        return LogFilter(address=sub.contract_address, topics=(topic0,))
