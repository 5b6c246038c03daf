"""
ERC-20 transfer calldata decoding, one test per field offset
"""

from decimal import Decimal

import pytest

from verifiers.calldata import (
    AMOUNT_OFFSET,
    RECIPIENT_OFFSET,
    TRANSFER_CALLDATA_SIZE,
    TRANSFER_EVENT_TOPIC,
    TRANSFER_SELECTOR,
    CalldataError,
    address_topic,
    decode_transfer_calldata,
    encode_transfer_calldata,
    scale_amount,
    to_base_units,
)

RECIPIENT = "a30a689ec0f9d717c5ba1098455b031b868b720f"

# transfer(0xa30a...720f, 29_990_000) as sent by a wallet
RAW_CALLDATA = (
    "0xa9059cbb"
    + "000000000000000000000000" + RECIPIENT
    + "0000000000000000000000000000000000000000000000000000000001c99c70"
)


class TestLayout:

    def test_selector_constant(self):
        assert TRANSFER_SELECTOR == "0xa9059cbb"

    def test_event_topic_constant(self):
        assert TRANSFER_EVENT_TOPIC == "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"

    def test_offsets(self):
        assert RECIPIENT_OFFSET == 4
        assert AMOUNT_OFFSET == 36
        assert TRANSFER_CALLDATA_SIZE == 68


class TestDecode:

    def test_selector_at_offset_0(self):
        bad = "0x23b872dd" + RAW_CALLDATA[10:]  # transferFrom selector
        with pytest.raises(CalldataError):
            decode_transfer_calldata(bad)

    def test_recipient_at_offset_4(self):
        call = decode_transfer_calldata(RAW_CALLDATA)
        assert call.recipient == "0x" + RECIPIENT

    def test_amount_at_offset_36(self):
        call = decode_transfer_calldata(RAW_CALLDATA)
        assert call.raw_amount == 29_990_000

    def test_recipient_padding_must_be_zero(self):
        dirty = RAW_CALLDATA[:10] + "ff" + RAW_CALLDATA[12:]
        with pytest.raises(CalldataError):
            decode_transfer_calldata(dirty)

    def test_truncated_calldata(self):
        with pytest.raises(CalldataError):
            decode_transfer_calldata(RAW_CALLDATA[:-2])

    def test_non_hex_input(self):
        with pytest.raises(CalldataError):
            decode_transfer_calldata("0xzz")

    def test_accepts_bytes_and_uppercase_prefix(self):
        raw = bytes.fromhex(RAW_CALLDATA[2:])
        assert decode_transfer_calldata(raw).raw_amount == 29_990_000
        assert decode_transfer_calldata("0X" + RAW_CALLDATA[2:]).raw_amount == 29_990_000

    def test_trailing_bytes_ignored(self):
        assert decode_transfer_calldata(RAW_CALLDATA + "00" * 4).raw_amount == 29_990_000

    def test_decode_error_is_value_error(self):
        assert issubclass(CalldataError, ValueError)


class TestHelpers:

    def test_encode_matches_wallet_calldata(self):
        assert encode_transfer_calldata("0x" + RECIPIENT, 29_990_000) == RAW_CALLDATA

    def test_scale_amount_six_decimals(self):
        assert scale_amount(29_990_000, 6) == Decimal("29.99")
        assert scale_amount(1, 6) == Decimal("0.000001")

    def test_to_base_units(self):
        assert to_base_units(Decimal("79.98"), 6) == 79_980_000

    def test_address_topic_is_left_padded(self):
        topic = address_topic("0x" + RECIPIENT.upper())
        assert topic == "0x" + "0" * 24 + RECIPIENT
        assert len(topic) == 66
