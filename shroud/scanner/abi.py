"""
Shroud v1 ABI Codec

Minimal Solidity ABI head/tail codec for the handful of shapes the engine
reads and writes: address, uintN, bool, bytesN, bytes, string, tuples
and dynamic arrays of those.

Type strings use canonical form, e.g. "(address,uint256,bytes)[]".
"""

from typing import Any, List, Sequence, Tuple

from shroud.crypto.hashing import function_selector
from shroud.errors import AbiDecodeError

WORD = 32

# Upper bound on decoded array lengths / byte strings to keep hostile
# calldata from allocating unbounded memory.
MAX_DYNAMIC_LENGTH = 1 << 20


# ============================================================================
# TYPE GRAMMAR
# ============================================================================

def split_types(inner: str) -> List[str]:
    """Split a comma-separated type list at the top nesting level."""
    if not inner:
        return []
    parts = []
    depth = 0
    start = 0
    for i, c in enumerate(inner):
        if c == '(':
            depth += 1
        elif c == ')':
            depth -= 1
        elif c == ',' and depth == 0:
            parts.append(inner[start:i])
            start = i + 1
    parts.append(inner[start:])
    return [p.strip() for p in parts]


def _is_array(t: str) -> bool:
    return t.endswith('[]')


def _is_tuple(t: str) -> bool:
    return t.startswith('(') and t.endswith(')')


def _components(t: str) -> List[str]:
    return split_types(t[1:-1])


def is_dynamic(t: str) -> bool:
    if t in ('bytes', 'string') or _is_array(t):
        return True
    if _is_tuple(t):
        return any(is_dynamic(c) for c in _components(t))
    return False


def static_size(t: str) -> int:
    if _is_tuple(t):
        return sum(static_size(c) for c in _components(t))
    return WORD


# ============================================================================
# DECODING
# ============================================================================

def _read_word(data: bytes, offset: int) -> bytes:
    if offset < 0 or offset + WORD > len(data):
        raise AbiDecodeError(f"word at {offset} out of range ({len(data)} bytes)")
    return data[offset:offset + WORD]


def _read_uint(data: bytes, offset: int) -> int:
    return int.from_bytes(_read_word(data, offset), 'big')


def _decode_sequence(types: Sequence[str], data: bytes, base: int) -> List[Any]:
    values = []
    head = base
    for t in types:
        if is_dynamic(t):
            rel = _read_uint(data, head)
            if rel > len(data):
                raise AbiDecodeError(f"offset {rel} out of range")
            values.append(_decode_value(t, data, base + rel))
            head += WORD
        else:
            values.append(_decode_value(t, data, head))
            head += static_size(t)
    return values


def _decode_value(t: str, data: bytes, offset: int) -> Any:
    if _is_array(t):
        length = _read_uint(data, offset)
        if length > MAX_DYNAMIC_LENGTH or length * WORD > len(data):
            raise AbiDecodeError(f"array length {length} too large")
        return _decode_sequence([t[:-2]] * length, data, offset + WORD)

    if _is_tuple(t):
        return tuple(_decode_sequence(_components(t), data, offset))

    if t in ('bytes', 'string'):
        length = _read_uint(data, offset)
        start = offset + WORD
        if length > MAX_DYNAMIC_LENGTH or start + length > len(data):
            raise AbiDecodeError(f"{t} length {length} out of range")
        raw = data[start:start + length]
        if t == 'string':
            try:
                return raw.decode('utf-8')
            except UnicodeDecodeError as e:
                raise AbiDecodeError(f"invalid utf-8 string: {e}") from e
        return raw

    word = _read_word(data, offset)

    if t == 'address':
        if any(word[:12]):
            raise AbiDecodeError("address has dirty high bytes")
        return '0x' + word[12:].hex()

    if t == 'bool':
        value = int.from_bytes(word, 'big')
        if value > 1:
            raise AbiDecodeError(f"invalid bool {value}")
        return bool(value)

    if t.startswith('uint'):
        return int.from_bytes(word, 'big')

    if t.startswith('bytes'):
        size = int(t[5:])
        return word[:size]

    raise AbiDecodeError(f"unsupported type {t}")


def decode(types: Sequence[str], data: bytes) -> List[Any]:
    """
    Decode ABI-encoded values.

    Raises:
        AbiDecodeError: malformed or truncated data
    """
    try:
        return _decode_sequence(list(types), bytes(data), 0)
    except (ValueError, IndexError) as e:
        raise AbiDecodeError(str(e)) from e


# ============================================================================
# ENCODING
# ============================================================================

def _pad_right(data: bytes) -> bytes:
    remainder = len(data) % WORD
    return data + b'\x00' * ((WORD - remainder) % WORD)


def _encode_sequence(types: Sequence[str], values: Sequence[Any]) -> bytes:
    if len(types) != len(values):
        raise ValueError(f"expected {len(types)} values, got {len(values)}")

    head_size = sum(WORD if is_dynamic(t) else static_size(t) for t in types)
    heads: List[bytes] = []
    tails: List[bytes] = []
    tail_offset = head_size
    for t, v in zip(types, values):
        encoded = _encode_value(t, v)
        if is_dynamic(t):
            heads.append(tail_offset.to_bytes(WORD, 'big'))
            tails.append(encoded)
            tail_offset += len(encoded)
        else:
            heads.append(encoded)
    return b''.join(heads) + b''.join(tails)


def _encode_value(t: str, value: Any) -> bytes:
    if _is_array(t):
        items = list(value)
        return len(items).to_bytes(WORD, 'big') + _encode_sequence([t[:-2]] * len(items), items)

    if _is_tuple(t):
        return _encode_sequence(_components(t), list(value))

    if t in ('bytes', 'string'):
        raw = value.encode('utf-8') if isinstance(value, str) else bytes(value)
        return len(raw).to_bytes(WORD, 'big') + _pad_right(raw)

    if t == 'address':
        raw = bytes.fromhex(value[2:]) if isinstance(value, str) else bytes(value)
        if len(raw) != 20:
            raise ValueError(f"address must be 20 bytes, got {len(raw)}")
        return raw.rjust(WORD, b'\x00')

    if t == 'bool':
        return int(bool(value)).to_bytes(WORD, 'big')

    if t.startswith('uint'):
        if value < 0:
            raise ValueError("uint cannot be negative")
        return int(value).to_bytes(WORD, 'big')

    if t.startswith('bytes'):
        size = int(t[5:])
        raw = bytes(value)
        if len(raw) != size:
            raise ValueError(f"{t} must be {size} bytes, got {len(raw)}")
        return raw.ljust(WORD, b'\x00')

    raise ValueError(f"unsupported type {t}")


def encode(types: Sequence[str], values: Sequence[Any]) -> bytes:
    return _encode_sequence(list(types), list(values))


def parse_signature(signature: str) -> Tuple[str, List[str]]:
    """'name(t1,t2)' -> ('name', ['t1', 't2'])."""
    name, _, rest = signature.partition('(')
    if not rest.endswith(')'):
        raise ValueError(f"malformed signature {signature}")
    return name, split_types(rest[:-1])


def encode_call(signature: str, values: Sequence[Any]) -> bytes:
    """selector || encoded arguments."""
    _, types = parse_signature(signature)
    return function_selector(signature) + encode(types, values)


def decode_call(signature: str, calldata: bytes) -> List[Any]:
    """
    Decode calldata for a known function.

    Raises:
        AbiDecodeError: selector mismatch or malformed arguments
    """
    _, types = parse_signature(signature)
    if len(calldata) < 4 or bytes(calldata[:4]) != function_selector(signature):
        raise AbiDecodeError(f"selector mismatch for {signature}")
    return decode(types, bytes(calldata[4:]))
