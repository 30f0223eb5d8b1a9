"""Tests 13-20: Signature hashing, filter construction, and log decoding."""

from __future__ import annotations

import json

import pytest
from eth_utils import to_checksum_address

from chainwatch.abi.decoder import AbiDecoder, decode_log, render_value
from chainwatch.abi.signatures import canonical_signature, find_event, load_descriptor, signature_topic
from chainwatch.chain.filters import (
    DescriptorSource,
    FilterBuilder,
    SignatureSource,
    WildcardSource,
    filter_source,
)
from chainwatch.errors import DecodeError
from chainwatch.models.records import RawLog

from tests.factories import (
    ALICE,
    BOB,
    ERC20_ABI,
    TOKEN,
    TRANSFER_SIGNATURE,
    TRANSFER_TOPIC,
    address_topic,
    make_approval_log,
    make_subscription,
    make_transfer_log,
    uint_word,
)


# ── Test 13: Signature topic ──────────────────────────────────────


def test_signature_topic_matches_known_hash():
    assert signature_topic(TRANSFER_SIGNATURE) == TRANSFER_TOPIC
    assert signature_topic("Transfer(address, address, uint256)") == TRANSFER_TOPIC


def test_canonical_signature_expands_tuples_and_bare_ints():
    fragment = {
        "type": "event",
        "name": "Order",
        "inputs": [
            {"name": "id", "type": "uint"},
            {"name": "leg", "type": "tuple[]", "components": [
                {"name": "asset", "type": "address"},
                {"name": "qty", "type": "int"},
            ]},
        ],
    }
    assert canonical_signature(fragment) == "Order(uint256,(address,int256)[])"


# ── Test 14: Descriptor forms ─────────────────────────────────────


def test_load_descriptor_accepts_json_and_artifacts():
    assert load_descriptor(json.dumps(ERC20_ABI)) == ERC20_ABI
    assert load_descriptor({"contractName": "Token", "abi": ERC20_ABI}) == ERC20_ABI
    with pytest.raises(DecodeError):
        load_descriptor("not json")
    with pytest.raises(DecodeError):
        load_descriptor({"name": "nope"})


def test_find_event_rejects_overloads():
    overloaded = ERC20_ABI + [{
        "type": "event",
        "name": "Transfer",
        "inputs": [{"name": "id", "type": "uint256", "indexed": True}],
    }]
    with pytest.raises(DecodeError):
        find_event(overloaded, "Transfer")
    fragment = find_event(overloaded, "Transfer(uint256)")
    assert fragment["inputs"][0]["name"] == "id"


# ── Test 15: Filter source precedence ─────────────────────────────


def test_filter_source_precedence():
    assert isinstance(
        filter_source(make_subscription(event_signature=TRANSFER_SIGNATURE,
                                        interface_descriptor=ERC20_ABI, event_name="Approval")),
        SignatureSource,
    )
    assert isinstance(
        filter_source(make_subscription(interface_descriptor=ERC20_ABI, event_name="Transfer")),
        DescriptorSource,
    )
    assert isinstance(filter_source(make_subscription(interface_descriptor=ERC20_ABI)), WildcardSource)
    assert isinstance(filter_source(make_subscription()), WildcardSource)


# ── Test 16: Filter construction ──────────────────────────────────


def test_filter_builder_resolves_topic0():
    builder = FilterBuilder()

    by_sig = builder.build(make_subscription(event_signature=TRANSFER_SIGNATURE))
    by_name = builder.build(make_subscription(interface_descriptor=ERC20_ABI, event_name="Transfer"))
    wildcard = builder.build(make_subscription())

    assert by_sig.topic0 == TRANSFER_TOPIC
    assert by_name.topic0 == TRANSFER_TOPIC
    assert by_sig.address == to_checksum_address(TOKEN)
    assert wildcard.is_wildcard
    assert "topics" not in wildcard.to_rpc(1, 2)
    assert by_sig.to_rpc(16, 255) == {
        "address": to_checksum_address(TOKEN),
        "topics": [TRANSFER_TOPIC],
        "fromBlock": "0x10",
        "toBlock": "0xff",
    }


def test_unresolvable_event_name_degrades_to_wildcard(caplog):
    log_filter = FilterBuilder().build(
        make_subscription(interface_descriptor=ERC20_ABI, event_name="Mint")
    )
    assert log_filter.is_wildcard
    assert "watching all events" in caplog.text


# ── Test 17: Decode a Transfer ────────────────────────────────────


def test_decode_transfer_keys_by_position_and_name():
    decoded = decode_log(ERC20_ABI, make_transfer_log(value=10**21))

    assert decoded.name == "Transfer"
    assert decoded.args["0"] == decoded.args["from"] == to_checksum_address(ALICE)
    assert decoded.args["1"] == decoded.args["to"] == to_checksum_address(BOB)
    assert decoded.args["2"] == decoded.args["value"] == "1000000000000000000000"


def test_decoder_picks_fragment_by_topic0():
    decoder = AbiDecoder(ERC20_ABI)
    decoded = decoder.decode(make_approval_log(value=5))
    assert decoded.name == "Approval"
    assert decoded.args["owner"] == to_checksum_address(ALICE)
    assert decoded.args["value"] == "5"


# ── Test 18: No matching fragment → None ──────────────────────────


def test_decode_returns_none_for_unknown_event():
    unknown = RawLog(
        address=to_checksum_address(TOKEN),
        topics=(signature_topic("Paused(address)"),),
        data="0x" + uint_word(1),
        block_number=1,
        transaction_hash="0x" + "11" * 32,
        log_index=0,
    )
    assert decode_log(ERC20_ABI, unknown) is None


def test_decode_returns_none_for_malformed_payload():
    truncated = make_transfer_log()
    truncated = RawLog(
        address=truncated.address,
        topics=truncated.topics[:2],  # missing indexed "to"
        data=truncated.data,
        block_number=truncated.block_number,
        transaction_hash=truncated.transaction_hash,
        log_index=truncated.log_index,
    )
    assert decode_log(ERC20_ABI, truncated) is None
    assert decode_log("garbage", make_transfer_log()) is None


# ── Test 19: Dynamic and boolean values ───────────────────────────


def test_decode_dynamic_and_bool_values():
    abi = [{
        "type": "event",
        "name": "Named",
        "inputs": [
            {"name": "label", "type": "string", "indexed": True},
            {"name": "note", "type": "string", "indexed": False},
            {"name": "ok", "type": "bool", "indexed": False},
        ],
    }]
    label_hash = "0x" + "ab" * 32
    # head: offset(note)=0x40, ok=1; tail: len=5, "hello" padded
    data = (
        "0x" + uint_word(64) + uint_word(1) + uint_word(5)
        + b"hello".ljust(32, b"\0").hex()
    )
    raw = RawLog(
        address=to_checksum_address(TOKEN),
        topics=(signature_topic("Named(string,string,bool)"), label_hash),
        data=data,
        block_number=1,
        transaction_hash="0x" + "22" * 32,
        log_index=0,
    )

    decoded = decode_log(abi, raw)

    assert decoded.args["label"] == label_hash
    assert decoded.args["note"] == "hello"
    assert decoded.args["ok"] == "true"


# ── Test 20: Rendering ────────────────────────────────────────────


def test_render_value_canonical_forms():
    assert render_value(2**255, "uint256") == str(2**255)
    assert render_value(-1, "int8") == "-1"
    assert render_value(False, "bool") == "false"
    assert render_value(b"\x01\x02", "bytes2") == "0x0102"
    assert render_value([1, 2], "uint8[]") == ["1", "2"]
    assert render_value(ALICE, "address") == to_checksum_address(ALICE)
    assert render_value(
        (ALICE, 3), "tuple",
        [{"name": "who", "type": "address"}, {"name": "n", "type": "uint256"}],
    ) == [to_checksum_address(ALICE), "3"]
    assert address_topic(ALICE).endswith(ALICE[2:])
