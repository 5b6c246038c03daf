"""
ERC-20 transfer calldata decoding.

`transfer(address,uint256)` calldata is fixed-width ABI encoding:

    offset  size  field
    0       4     function selector (0xa9059cbb)
    4       32    recipient, left-padded: 12 zero bytes + 20 address bytes
    36      32    amount, big-endian uint256 in token base units

Anything shorter, with a different selector, or with non-zero address
padding is not a plain transfer and is rejected.
"""

from decimal import Decimal
from typing import NamedTuple

from web3 import Web3

TRANSFER_SIGNATURE = "transfer(address,uint256)"
TRANSFER_SELECTOR = Web3.to_hex(Web3.keccak(text=TRANSFER_SIGNATURE)[:4])
TRANSFER_EVENT_TOPIC = Web3.to_hex(Web3.keccak(text="Transfer(address,address,uint256)"))

SELECTOR_OFFSET = 0
SELECTOR_SIZE = 4
RECIPIENT_OFFSET = 4
AMOUNT_OFFSET = 36
WORD_SIZE = 32
ADDRESS_PADDING = 12
TRANSFER_CALLDATA_SIZE = AMOUNT_OFFSET + WORD_SIZE


class CalldataError(ValueError):
    """Input is not a decodable transfer(address,uint256) call"""


class TransferCall(NamedTuple):
    recipient: str  # lowercase 0x-prefixed
    raw_amount: int


def _to_bytes(input_data) -> bytes:
    if isinstance(input_data, (bytes, bytearray)):
        return bytes(input_data)
    text = str(input_data)
    if text.startswith(("0x", "0X")):
        text = text[2:]
    try:
        return bytes.fromhex(text)
    except ValueError:
        raise CalldataError("calldata is not valid hex")


def decode_transfer_calldata(input_data) -> TransferCall:
    data = _to_bytes(input_data)
    if len(data) < TRANSFER_CALLDATA_SIZE:
        raise CalldataError(f"calldata is {len(data)} bytes, transfer needs {TRANSFER_CALLDATA_SIZE}")

    selector = "0x" + data[SELECTOR_OFFSET:SELECTOR_OFFSET + SELECTOR_SIZE].hex()
    if selector != TRANSFER_SELECTOR:
        raise CalldataError(f"selector {selector} is not {TRANSFER_SIGNATURE}")

    recipient_word = data[RECIPIENT_OFFSET:RECIPIENT_OFFSET + WORD_SIZE]
    if any(recipient_word[:ADDRESS_PADDING]):
        raise CalldataError("recipient word has non-zero padding")

    amount_word = data[AMOUNT_OFFSET:AMOUNT_OFFSET + WORD_SIZE]
    return TransferCall(
        recipient="0x" + recipient_word[ADDRESS_PADDING:].hex(),
        raw_amount=int.from_bytes(amount_word, "big"),
    )


def encode_transfer_calldata(recipient: str, raw_amount: int) -> str:
    """Inverse of decode_transfer_calldata; handed to wallets for EVM intents."""
    address = bytes.fromhex(recipient[2:] if recipient.startswith("0x") else recipient)
    return (
        TRANSFER_SELECTOR
        + (b"\x00" * ADDRESS_PADDING + address).hex()
        + raw_amount.to_bytes(WORD_SIZE, "big").hex()
    )


def scale_amount(raw_amount: int, decimals: int) -> Decimal:
    return Decimal(raw_amount).scaleb(-decimals)


def to_base_units(amount: Decimal, decimals: int) -> int:
    return int(Decimal(amount).scaleb(decimals))


def address_topic(address: str) -> str:
    """32-byte log topic form of an address, for filtering indexed Transfer args."""
    body = address[2:] if address.startswith("0x") else address
    return "0x" + "0" * 24 + body.lower()
