"""
Wire Module
===========

Binary layout of frame messages shared by producer and consumer.
"""

from framepipe.wire.format import (
    BYTES_PER_PIXEL,
    CHUNK_HEADER_SIZE,
    TRANSFORM_SIZE,
    ChunkLayout,
    FrameHeader,
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


__all__ = [
    "BYTES_PER_PIXEL",
    "CHUNK_HEADER_SIZE",
    "TRANSFORM_SIZE",
    "ChunkLayout",
    "FrameHeader",
    "HeaderVariant",
    "decode_chunk_header",
    "decode_header",
    "decode_transform",
    "encode_chunk_header",
    "encode_header",
    "encode_transform",
    "locate_chunks",
    "minimum_message_length",
    "rgba_size",
    "split_payload",
]
