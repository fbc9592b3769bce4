"""Type-length-value codec for the adaptive-lighting sub-protocol.

Every element is encoded as::

    [type: 1 byte][length: 1 byte][value: length bytes]

Values longer than 254 bytes are split into consecutive chunks of the
same type; every chunk but the last has length 255.  Elements are
decoded against a *schema* that maps a dotted type-path (``"2.1.5.1"``)
to a :class:`TlvField`.  A ``TLV`` field is decoded recursively with
its own path as prefix.

Usage::

    from pyHueSync.tlv import TlvField, TlvType, decode, encode

    schema = {"1": TlvField("iid", TlvType.UINT)}
    decode(encode([(1, 42)]), schema)    # {'iid': 42}
"""

from __future__ import annotations

import enum
import struct
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Sequence, Tuple

from pyHueSync.errors import TlvDecodeError

#: Reference date of ``DATE`` values.
EPOCH = datetime(2001, 1, 1, tzinfo=timezone.utc)

#: Longest value carried by a single chunk.
MAX_CHUNK = 255

#: Lengths accepted for ``UINT`` values and their ``struct`` formats.
_UINT_FORMATS = {1: "<B", 2: "<H", 4: "<I", 8: "<Q"}


class TlvType(enum.Enum):
    """Interpretation of a TLV value."""

    UINT = "uint"
    FLOAT = "float"
    DATE = "date"
    HEX = "hex"
    TLV = "tlv"


class TlvField(NamedTuple):
    """Schema entry: semantic key (``None`` keeps the path) and type."""

    key: Optional[str]
    type: TlvType


Schema = Mapping[str, TlvField]
#: An encodable item: ``(type, value)``.
Item = Tuple[int, Any]


# ---------------------------------------------------------------------------
#  Value conversion
# ---------------------------------------------------------------------------


def epoch_ms(iso: str) -> int:
    """Milliseconds since :data:`EPOCH` for an ISO-8601 timestamp."""
    value = datetime.fromisoformat(iso.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return round((value - EPOCH).total_seconds() * 1000)


def iso_date(ms: int) -> str:
    """ISO-8601 rendering (``...T12:00:00.000Z``) of *ms* since the epoch."""
    value = EPOCH + timedelta(milliseconds=ms)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _convert(value: bytes, type_: TlvType) -> Any:
    if type_ is TlvType.UINT:
        fmt = _UINT_FORMATS.get(len(value))
        if fmt is None:
            return value.hex().upper()
        return struct.unpack(fmt, value)[0]
    if type_ is TlvType.FLOAT:
        if len(value) != 4:
            return value.hex().upper()
        return struct.unpack("<f", value)[0]
    if type_ is TlvType.DATE:
        if len(value) != 8:
            return value.hex().upper()
        return iso_date(struct.unpack("<Q", value)[0])
    return value.hex().upper()


# ---------------------------------------------------------------------------
#  Decoding
# ---------------------------------------------------------------------------


def _read_chunk(buf: bytes, offset: int) -> Tuple[int, bytes, int]:
    if offset + 2 > len(buf):
        raise TlvDecodeError("truncated header at offset %d" % offset)
    type_ = buf[offset]
    length = buf[offset + 1]
    start = offset + 2
    if start + length > len(buf):
        raise TlvDecodeError(
            "type %d: need %d bytes at offset %d, have %d"
            % (type_, length, start, len(buf) - start)
        )
    return type_, buf[start:start + length], start + length


def _add(result: Dict[str, Any], key: str, value: Any) -> None:
    if key not in result:
        result[key] = value
    elif isinstance(result[key], list):
        result[key].append(value)
    else:
        result[key] = [result[key], value]


def decode(
    data: bytes,
    schema: Optional[Schema] = None,
    prefix: Optional[str] = None,
) -> Dict[str, Any]:
    """Decode a TLV buffer into a dictionary.

    Parameters
    ----------
    data:
        The raw buffer.
    schema:
        Maps dotted type-paths to :class:`TlvField` entries.  Types
        without an entry are kept under their path (rendered as hex) when
        they carry a value and dropped when empty.
    prefix:
        Type-path of the enclosing element (used for recursion).

    Raises
    ------
    TlvDecodeError
        If the buffer is truncated.
    """
    schema = schema or {}
    result: Dict[str, Any] = {}
    offset = 0
    while offset < len(data):
        type_, value, offset = _read_chunk(data, offset)
        chunk_length = len(value)
        while (
            chunk_length == MAX_CHUNK
            and offset < len(data)
            and data[offset] == type_
        ):
            _, more, offset = _read_chunk(data, offset)
            value += more
            chunk_length = len(more)

        path = str(type_) if prefix is None else "%s.%d" % (prefix, type_)
        field = schema.get(path)
        if field is None:
            if value:
                _add(result, path, value.hex().upper())
            continue
        key = field.key if field.key is not None else path
        if not value:
            _add(result, key, None)
        elif field.type is TlvType.TLV:
            _add(result, key, decode(value, schema, path))
        else:
            _add(result, key, _convert(value, field.type))
    return result


# ---------------------------------------------------------------------------
#  Encoding
# ---------------------------------------------------------------------------


def _chunks(type_: int, value: bytes) -> bytes:
    out = bytearray()
    if not value:
        out += bytes((type_, 0))
    for start in range(0, len(value), MAX_CHUNK):
        chunk = value[start:start + MAX_CHUNK]
        out += bytes((type_, len(chunk)))
        out += chunk
    return bytes(out)


def uint_bytes(value: int) -> bytes:
    """Little-endian encoding of *value* in 1, 2, 4 or 8 bytes."""
    if value < 0:
        raise ValueError("negative value %d" % value)
    for length, fmt in _UINT_FORMATS.items():
        if value < 1 << (8 * length):
            return struct.pack(fmt, value)
    raise ValueError("value %d does not fit 8 bytes" % value)


def encode(items: Sequence[Item]) -> bytes:
    """Encode a list of ``(type, value)`` items.

    ``None`` encodes a null marker, ``int`` an unsigned integer of
    minimal length, ``bytes`` a raw value, ``str`` a hex string and a
    list or tuple of items a nested TLV.
    """
    out = bytearray()
    for type_, value in items:
        if value is None:
            payload = b""
        elif isinstance(value, bool):
            raise TypeError("type %d: bool is not encodable" % type_)
        elif isinstance(value, int):
            payload = uint_bytes(value)
        elif isinstance(value, (bytes, bytearray)):
            payload = bytes(value)
        elif isinstance(value, str):
            payload = bytes.fromhex(value)
        elif isinstance(value, (list, tuple)):
            payload = encode(value)
        else:
            raise TypeError(
                "type %d: cannot encode %s" % (type_, type(value).__name__)
            )
        out += _chunks(type_, payload)
    return bytes(out)


def as_list(value: Any) -> List[Any]:
    """Normalise a decoded value that may or may not be a list."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]
