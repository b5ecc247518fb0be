"""
Wire Format Tests
=================

Tests for header variants, chunk walking and the binary transform.
"""

import struct

import pytest

from framepipe.errors import ProtocolError, ProtocolErrorKind
from framepipe.wire.format import (
    TRANSFORM_SIZE,
    HeaderVariant,
    decode_chunk_header,
    decode_header,
    decode_transform,
    encode_chunk_header,
    encode_header,
    encode_transform,
    locate_chunks,
    minimum_message_length,
    rgba_size,
    split_payload,
)


class TestHeaderVariants:
    """Tests for header sizes and layout."""

    def test_header_sizes(self):
        """Verify the fixed size of every header variant."""
        assert HeaderVariant.FIXED.header_size == 0
        assert HeaderVariant.LEGACY.header_size == 8
        assert HeaderVariant.BASIC.header_size == 16
        assert HeaderVariant.STAMPED.header_size == 32

    def test_chunked_variants(self):
        """Only BASIC carries chunk prefixes."""
        assert HeaderVariant.BASIC.chunked
        assert not HeaderVariant.STAMPED.chunked
        assert not HeaderVariant.LEGACY.chunked
        assert not HeaderVariant.FIXED.chunked

    def test_fixed_has_no_header(self):
        """FIXED encodes to nothing and cannot be decoded."""
        assert encode_header(HeaderVariant.FIXED, 4, 4, 64) == b""
        with pytest.raises(ValueError):
            decode_header(HeaderVariant.FIXED, b"")

    def test_basic_layout_is_little_endian(self):
        """BASIC header is four little-endian u32 fields."""
        data = encode_header(HeaderVariant.BASIC, 640, 480, 1228800, chunk_count=1)
        assert data == struct.pack("<IIII", 640, 480, 1228800, 1)

    def test_stamped_round_trip(self):
        """STAMPED header keeps dimensions, timestamps and pose id."""
        data = encode_header(
            HeaderVariant.STAMPED,
            8,
            6,
            rgba_size(8, 6),
            frame_timestamp=10.25,
            pose_timestamp=10.0,
            pose_id=17,
        )
        assert len(data) == 32

        header = decode_header(HeaderVariant.STAMPED, data)
        assert (header.width, header.height) == (8, 6)
        assert header.payload_length == 8 * 6 * 4
        assert header.frame_timestamp == 10.25
        assert header.pose_timestamp == 10.0
        assert header.pose_id == 17

    def test_stamped_pose_fallback(self):
        """Without a pose, pose_timestamp mirrors frame_timestamp and id is 0."""
        data = encode_header(
            HeaderVariant.STAMPED, 2, 2, 16, frame_timestamp=3.5
        )
        header = decode_header(HeaderVariant.STAMPED, data)
        assert header.pose_timestamp == 3.5
        assert header.pose_id == 0

    def test_legacy_implies_rgba_payload(self):
        """LEGACY declares only dimensions; payload is width*height*4."""
        header = decode_header(HeaderVariant.LEGACY, struct.pack("<II", 3, 5))
        assert header.payload_length == 60
        assert header.chunk_count is None

    def test_decode_at_offset(self):
        """Headers can be decoded in the middle of a buffer."""
        data = b"\xff" * 5 + encode_header(HeaderVariant.BASIC, 2, 2, 16, chunk_count=2)
        header = decode_header(HeaderVariant.BASIC, data, offset=5)
        assert header.chunk_count == 2

    def test_encode_rejects_out_of_range(self):
        """Fields that do not fit u32 are rejected at encode time."""
        with pytest.raises(ValueError):
            encode_header(HeaderVariant.BASIC, 2**32, 1, 4)
        with pytest.raises(ValueError):
            encode_header(HeaderVariant.LEGACY, -1, 1, 4)


class TestHeaderValidation:
    """Tests for header fields that must be rejected."""

    def test_insufficient_bytes(self):
        """A truncated header is malformed."""
        with pytest.raises(ProtocolError) as exc_info:
            decode_header(HeaderVariant.STAMPED, b"\x00" * 31)
        assert exc_info.value.kind is ProtocolErrorKind.MALFORMED
        assert exc_info.value.declared == 32
        assert exc_info.value.actual == 31

    def test_zero_dimensions(self):
        """Width or height of zero is malformed."""
        with pytest.raises(ProtocolError):
            decode_header(HeaderVariant.BASIC, struct.pack("<IIII", 0, 4, 0, 0))

    def test_payload_larger_than_rgba(self):
        """BASIC payload may not exceed width*height*4."""
        with pytest.raises(ProtocolError):
            decode_header(HeaderVariant.BASIC, struct.pack("<IIII", 2, 2, 17, 1))

    def test_payload_with_zero_chunks(self):
        """A non-empty payload needs at least one chunk."""
        with pytest.raises(ProtocolError):
            decode_header(HeaderVariant.BASIC, struct.pack("<IIII", 2, 2, 16, 0))

    def test_more_chunks_than_bytes(self):
        """Every chunk carries at least one byte."""
        with pytest.raises(ProtocolError):
            decode_header(HeaderVariant.BASIC, struct.pack("<IIII", 2, 2, 3, 4))

    def test_non_finite_timestamp(self):
        """NaN timestamps are malformed."""
        data = struct.pack("<IIddd", 2, 2, float("nan"), 0.0, 0.0)
        with pytest.raises(ProtocolError):
            decode_header(HeaderVariant.STAMPED, data)

    def test_fractional_pose_id(self):
        """Pose ids must be non-negative integers."""
        data = struct.pack("<IIddd", 2, 2, 0.0, 0.0, 1.5)
        with pytest.raises(ProtocolError):
            decode_header(HeaderVariant.STAMPED, data)

    def test_error_message_carries_lengths(self):
        """ProtocolError text names kind and both lengths."""
        error = ProtocolError(
            "too big", ProtocolErrorKind.CAPACITY_EXCEEDED, declared=10, actual=4
        )
        assert str(error) == "[CAPACITY_EXCEEDED] too big (declared=10, actual=4)"


class TestChunks:
    """Tests for chunk prefixes and chunk walking."""

    def test_chunk_header_round_trip(self):
        """Chunk prefix is a little-endian u32."""
        data = encode_chunk_header(1000)
        assert data == struct.pack("<I", 1000)
        assert decode_chunk_header(data) == 1000

    def test_zero_length_chunk_cannot_be_encoded(self):
        """Zero-length chunks are never produced."""
        with pytest.raises(ValueError):
            encode_chunk_header(0)

    def test_split_payload(self):
        """Spans cover the payload with at most max_chunk_size bytes each."""
        assert split_payload(10, 4) == [(0, 4), (4, 8), (8, 10)]
        assert split_payload(8, 8) == [(0, 8)]
        assert split_payload(0, 8) == []

    def test_minimum_message_length(self):
        """BASIC counts its chunk prefixes; STAMPED is header plus raw payload."""
        basic = decode_header(HeaderVariant.BASIC, struct.pack("<IIII", 2, 2, 16, 3))
        assert minimum_message_length(HeaderVariant.BASIC, basic) == 16 + 16 + 3 * 4

        stamped = decode_header(
            HeaderVariant.STAMPED, encode_header(HeaderVariant.STAMPED, 2, 2, 16)
        )
        assert minimum_message_length(HeaderVariant.STAMPED, stamped) == 32 + 16

    def _basic_message(self, chunks, payload_length=None, width=2, height=2):
        payload_length = sum(len(c) for c in chunks) if payload_length is None else payload_length
        data = encode_header(
            HeaderVariant.BASIC, width, height, payload_length, chunk_count=len(chunks)
        )
        for chunk in chunks:
            data += struct.pack("<I", len(chunk)) + chunk
        return data

    def test_locate_complete_message(self):
        """Complete message yields spans and total length."""
        data = self._basic_message([b"a" * 10, b"b" * 6])
        header = decode_header(HeaderVariant.BASIC, data)
        layout = locate_chunks(HeaderVariant.BASIC, header, data, 0, len(data))

        assert layout.message_length == len(data)
        assert [data[s:e] for s, e in layout.spans] == [b"a" * 10, b"b" * 6]

    def test_locate_incomplete_message(self):
        """Missing bytes anywhere in the message mean 'not yet'."""
        data = self._basic_message([b"a" * 10, b"b" * 6])
        header = decode_header(HeaderVariant.BASIC, data)
        for end in range(16, len(data)):
            assert locate_chunks(HeaderVariant.BASIC, header, data, 0, end) is None

    def test_chunk_sum_mismatch(self):
        """Chunk lengths that fall short of payloadLength are a length mismatch."""
        data = self._basic_message([b"a" * 4, b"b" * 4], payload_length=10)
        header = decode_header(HeaderVariant.BASIC, data)
        with pytest.raises(ProtocolError) as exc_info:
            locate_chunks(HeaderVariant.BASIC, header, data, 0, len(data))
        assert exc_info.value.kind is ProtocolErrorKind.LENGTH_MISMATCH
        assert exc_info.value.declared == 10
        assert exc_info.value.actual == 8

    def test_chunk_overrun(self):
        """A chunk running past payloadLength is rejected before it is buffered."""
        data = encode_header(HeaderVariant.BASIC, 2, 2, 8, chunk_count=1)
        data += struct.pack("<I", 12)
        header = decode_header(HeaderVariant.BASIC, data)
        with pytest.raises(ProtocolError) as exc_info:
            locate_chunks(HeaderVariant.BASIC, header, data, 0, len(data))
        assert exc_info.value.kind is ProtocolErrorKind.LENGTH_MISMATCH

    def test_zero_length_chunk(self):
        """A zero-length chunk on the wire is a length mismatch."""
        data = encode_header(HeaderVariant.BASIC, 1, 1, 4, chunk_count=1)
        data += struct.pack("<I", 0)
        header = decode_header(HeaderVariant.BASIC, data)
        with pytest.raises(ProtocolError) as exc_info:
            locate_chunks(HeaderVariant.BASIC, header, data, 0, len(data))
        assert exc_info.value.kind is ProtocolErrorKind.LENGTH_MISMATCH

    def test_stamped_raw_payload(self):
        """STAMPED pixels follow the 32-byte header directly, with no chunk prefix."""
        payload = bytes(range(16))
        data = struct.pack("<IIddd", 2, 2, 1.0, 1.0, 3.0) + payload
        header = decode_header(HeaderVariant.STAMPED, data)

        assert locate_chunks(HeaderVariant.STAMPED, header, data, 0, len(data) - 1) is None
        layout = locate_chunks(HeaderVariant.STAMPED, header, data, 0, len(data))

        assert layout.spans == ((32, 48),)
        assert layout.message_length == 48
        assert data[32:48] == payload

    def test_legacy_raw_payload(self):
        """LEGACY payload follows the header with no chunk prefix."""
        payload = b"\x01" * 16
        data = encode_header(HeaderVariant.LEGACY, 2, 2, 16) + payload
        header = decode_header(HeaderVariant.LEGACY, data)

        assert locate_chunks(HeaderVariant.LEGACY, header, data, 0, len(data) - 1) is None
        layout = locate_chunks(HeaderVariant.LEGACY, header, data, 0, len(data))
        assert layout.spans == ((8, 24),)


class TestTransform:
    """Tests for the 64-byte binary pose transform."""

    def test_size(self):
        """16 little-endian float32 values."""
        assert TRANSFORM_SIZE == 64

    def test_round_trip_pads_homogeneous_row(self):
        """3x4 input is padded to 4x4; decoding returns the top three rows."""
        rows = [
            [1.0, 0.0, 0.0, 0.5],
            [0.0, 1.0, 0.0, -2.0],
            [0.0, 0.0, 1.0, 4.25],
        ]
        data = encode_transform(rows)
        assert len(data) == 64
        assert struct.unpack("<16f", data)[12:] == (0.0, 0.0, 0.0, 1.0)
        assert decode_transform(data) == tuple(tuple(r) for r in rows)

    def test_wrong_size_rejected(self):
        """Anything but 64 bytes is not a transform."""
        with pytest.raises(ProtocolError):
            decode_transform(b"\x00" * 48)

    def test_bad_shape_rejected(self):
        """Only 3x4 or 4x4 matrices can be encoded."""
        with pytest.raises(ValueError):
            encode_transform([[1.0, 0.0, 0.0]] * 3)
