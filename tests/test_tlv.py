"""Tests for the TLV codec."""

import pytest

from pyHueSync.errors import ProtocolError, TlvDecodeError
from pyHueSync.tlv import (
    TlvField,
    TlvType,
    as_list,
    decode,
    encode,
    epoch_ms,
    iso_date,
    uint_bytes,
)


SCHEMA = {
    "1": TlvField("iid", TlvType.UINT),
    "2": TlvField("blob", TlvType.HEX),
    "3": TlvField("nested", TlvType.TLV),
    "3.1": TlvField("value", TlvType.UINT),
    "3.2": TlvField(None, TlvType.HEX),
    "4": TlvField("when", TlvType.DATE),
    "5": TlvField("factor", TlvType.FLOAT),
    "6": TlvField("marker", TlvType.UINT),
}


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


class TestDecode:

    def test_uint_lengths(self):
        assert decode(bytes([1, 1, 42]), SCHEMA) == {"iid": 42}
        assert decode(bytes([1, 2, 0x34, 0x12]), SCHEMA) == {"iid": 0x1234}
        assert decode(bytes([1, 4, 1, 0, 0, 0]), SCHEMA) == {"iid": 1}

    def test_uint_odd_length_rendered_as_hex(self):
        assert decode(bytes([1, 3, 0xAB, 0xCD, 0xEF]), SCHEMA) == {
            "iid": "ABCDEF"
        }

    def test_hex(self):
        assert decode(bytes([2, 2, 0x0A, 0xFF]), SCHEMA) == {"blob": "0AFF"}

    def test_float(self):
        data = bytes([5, 4]) + bytes.fromhex("0000803F")
        assert decode(data, SCHEMA) == {"factor": 1.0}

    def test_date(self):
        data = bytes([4, 8]) + (1000).to_bytes(8, "little")
        assert decode(data, SCHEMA) == {"when": "2001-01-01T00:00:01.000Z"}

    def test_nested_with_unnamed_field(self):
        inner = bytes([1, 1, 7, 2, 1, 0xEE])
        data = bytes([3, len(inner)]) + inner
        assert decode(data, SCHEMA) == {"nested": {"value": 7, "3.2": "EE"}}

    def test_unknown_type_with_value_kept_as_hex(self):
        assert decode(bytes([9, 2, 1, 2]), SCHEMA) == {"9": "0102"}

    def test_unknown_empty_type_dropped(self):
        assert decode(bytes([0, 0, 1, 1, 5]), SCHEMA) == {"iid": 5}

    def test_known_empty_type_is_none(self):
        assert decode(bytes([6, 0]), SCHEMA) == {"marker": None}

    def test_duplicate_keys_become_list(self):
        data = bytes([1, 1, 1, 1, 1, 2, 1, 1, 3])
        assert decode(data, SCHEMA) == {"iid": [1, 2, 3]}

    def test_prefix(self):
        assert decode(bytes([1, 1, 9]), SCHEMA, "3") == {"value": 9}

    def test_without_schema(self):
        assert decode(bytes([1, 1, 9])) == {"1": "09"}

    def test_truncated_value(self):
        with pytest.raises(TlvDecodeError):
            decode(bytes([1, 4, 0, 0]), SCHEMA)

    def test_truncated_header(self):
        with pytest.raises(TlvDecodeError):
            decode(bytes([1, 1, 0, 2]), SCHEMA)

    def test_decode_error_is_protocol_error(self):
        assert issubclass(TlvDecodeError, ProtocolError)


# ---------------------------------------------------------------------------
# Long values
# ---------------------------------------------------------------------------


class TestChunking:

    def test_long_value_split_into_chunks(self):
        value = bytes(range(256)) * 2  # 512 bytes
        data = encode([(2, value)])
        assert data[0] == 2 and data[1] == 255
        assert data[257] == 2 and data[258] == 255
        assert data[514] == 2 and data[515] == 2
        assert len(data) == 512 + 3 * 2

    def test_long_value_reassembled(self):
        value = bytes(range(256)) * 2
        assert decode(encode([(2, value)]), SCHEMA) == {
            "blob": value.hex().upper()
        }

    def test_exact_chunk_followed_by_other_type(self):
        value = b"\x01" * 255
        data = encode([(2, value), (1, 5)])
        assert decode(data, SCHEMA) == {"blob": "01" * 255, "iid": 5}


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


class TestEncode:

    def test_uint_minimal_length(self):
        assert uint_bytes(1) == b"\x01"
        assert uint_bytes(256) == b"\x00\x01"
        assert uint_bytes(1 << 16) == b"\x00\x00\x01\x00"
        assert len(uint_bytes(1 << 40)) == 8

    def test_negative_uint(self):
        with pytest.raises(ValueError):
            uint_bytes(-1)

    def test_null_marker(self):
        assert encode([(0, None)]) == b"\x00\x00"

    def test_hex_string(self):
        assert encode([(2, "0aff")]) == b"\x02\x02\x0a\xff"

    def test_nested(self):
        assert encode([(3, [(1, 7)])]) == b"\x03\x03\x01\x01\x07"

    def test_unsupported_value(self):
        with pytest.raises(TypeError):
            encode([(1, 1.5)])

    def test_round_trip(self):
        items = [(1, 300), (3, [(1, 2), (2, "ab")]), (6, None)]
        assert decode(encode(items), SCHEMA) == {
            "iid": 300,
            "nested": {"value": 2, "3.2": "AB"},
            "marker": None,
        }


class TestHelpers:

    def test_epoch_ms(self):
        assert epoch_ms("2001-01-01T00:00:01.500Z") == 1500

    def test_iso_date(self):
        assert iso_date(0) == "2001-01-01T00:00:00.000Z"

    def test_as_list(self):
        assert as_list(None) == []
        assert as_list(1) == [1]
        assert as_list([1, 2]) == [1, 2]
