# /bridgekeeper/adapters/cctp.py
# Calldata encoding and message decoding for Circle CCTP V2.
from dataclasses import dataclass

from eth_abi import decode, encode
from web3 import Web3

ZERO_BYTES32 = b"\x00" * 32

# Arc's CCTP wrapper has no published ABI; this is the selector of its
# bridgeWithPreapproval entry point, taken from a confirmed transaction.
WRAPPER_BRIDGE_METHOD_ID = bytes.fromhex("d0d4229a")


def function_selector(signature: str) -> bytes:
    return bytes(Web3.keccak(text=signature)[:4])


DEPOSIT_FOR_BURN = function_selector("depositForBurn(uint256,uint32,bytes32,address,bytes32,uint256,uint32)")
RECEIVE_MESSAGE = function_selector("receiveMessage(bytes,bytes)")
USED_NONCES = function_selector("usedNonces(bytes32)")
APPROVE = function_selector("approve(address,uint256)")


def address_to_bytes32(address: str) -> bytes:
    """Left-pad a 20-byte EVM address to the bytes32 form CCTP expects."""
    raw = bytes.fromhex(Web3.to_checksum_address(address)[2:])
    return raw.rjust(32, b"\x00")


def _calldata(selector: bytes, types: list, values: list) -> str:
    return "0x" + (selector + encode(types, values)).hex()


def encode_approve(spender: str, amount: int) -> str:
    return _calldata(APPROVE, ["address", "uint256"], [Web3.to_checksum_address(spender), amount])


def encode_deposit_for_burn(
    amount: int,
    destination_domain: int,
    mint_recipient: bytes,
    burn_token: str,
    max_fee: int,
    min_finality_threshold: int,
    destination_caller: bytes = ZERO_BYTES32,
) -> str:
    return _calldata(
        DEPOSIT_FOR_BURN,
        ["uint256", "uint32", "bytes32", "address", "bytes32", "uint256", "uint32"],
        [amount, destination_domain, mint_recipient, Web3.to_checksum_address(burn_token),
         destination_caller, max_fee, min_finality_threshold],
    )


def encode_wrapper_bridge(
    amount: int,
    max_fee: int,
    mint_recipient: bytes,
    burn_token: str,
    bridge_address: str,
    destination_domain: int,
    finality_threshold: int,
) -> str:
    # Word layout of bridgeWithPreapproval: amount, maxFee, 0, recipient,
    # 0, burnToken, bridge, destinationDomain, finality.
    return _calldata(
        WRAPPER_BRIDGE_METHOD_ID,
        ["uint256", "uint256", "uint256", "bytes32", "uint256", "address", "address", "uint32", "uint32"],
        [amount, max_fee, 0, mint_recipient, 0, Web3.to_checksum_address(burn_token),
         Web3.to_checksum_address(bridge_address), destination_domain, finality_threshold],
    )


def encode_receive_message(message: bytes, attestation: bytes) -> str:
    return _calldata(RECEIVE_MESSAGE, ["bytes", "bytes"], [message, attestation])


def encode_used_nonces(nonce: bytes) -> str:
    return _calldata(USED_NONCES, ["bytes32"], [nonce])


def decode_uint256(data: bytes) -> int:
    if not data:
        return 0
    return decode(["uint256"], data)[0]


@dataclass(frozen=True)
class MessageHeader:
    version: int
    source_domain: int
    destination_domain: int
    nonce: bytes


def decode_message_header(message: bytes) -> MessageHeader:
    """Read the fixed V2 header: version, source, destination, bytes32 nonce."""
    if len(message) < 44:
        raise ValueError(f"CCTP message too short: {len(message)} bytes")
    return MessageHeader(
        version=int.from_bytes(message[0:4], "big"),
        source_domain=int.from_bytes(message[4:8], "big"),
        destination_domain=int.from_bytes(message[8:12], "big"),
        nonce=bytes(message[12:44]),
    )


def hex_to_bytes(value: str) -> bytes:
    return bytes.fromhex(value[2:] if value.startswith("0x") else value)
