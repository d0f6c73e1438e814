"""Unsigned varints as used in CAR framing.

Implements the unsigned LEB128 encoding used by multiformats
(CAR section lengths and CID fields): seven payload bits per byte, least
significant group first, with the high bit set on every byte except the last.
Values are limited to 63 bits, i.e. at most 9 bytes.
"""

MAX_VARINT_BYTES = 9


def encode_varint(value: int) -> bytes:
    """Encode value as unsigned LEB128 (300 encodes as the bytes ac 02).

    Raises:
        ValueError: For negative values and values of 2^63 or more
    """
    if value < 0:
        raise ValueError(f"Cannot encode negative value: {value}")
    if value >= (1 << 63):
        raise ValueError(f"Value {value} exceeds maximum (2^63-1)")

    result = bytearray()
    while True:
        low_bits = value & 0x7F
        value >>= 7
        if value:
            result.append(low_bits | 0x80)
        else:
            result.append(low_bits)
            return bytes(result)


def decode_varint(data: bytes, offset: int = 0) -> tuple[int, int]:
    """Read the varint starting at data[offset].

    Returns:
        (value, number of bytes the varint occupies)

    Raises:
        ValueError: If the varint is truncated or longer than 9 bytes
    """
    if offset >= len(data):
        raise ValueError(f"No varint at offset {offset}: only {len(data)} bytes")

    value = 0
    shift = 0
    for consumed in range(1, MAX_VARINT_BYTES + 1):
        position = offset + consumed - 1
        if position >= len(data):
            raise ValueError(f"Insufficient data: varint truncated after {consumed - 1} bytes")

        byte = data[position]
        value |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return value, consumed
        shift += 7

    raise ValueError(f"Varint exceeds {MAX_VARINT_BYTES} bytes")
