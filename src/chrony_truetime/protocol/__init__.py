"""Wire protocol - chronyd command-and-monitoring tracking codec."""

from .candm import (
    DEFAULT_CANDM_HOST,
    DEFAULT_CANDM_PORT,
    HEADER_SIZE,
    REQUEST_SIZE,
    RESPONSE_SIZE,
    ReplyHeader,
    decode_cfloat,
    decode_header,
    decode_response,
    encode_cfloat,
    encode_header,
    encode_request,
    encode_response,
)

__all__ = [
    'DEFAULT_CANDM_HOST',
    'DEFAULT_CANDM_PORT',
    'HEADER_SIZE',
    'REQUEST_SIZE',
    'RESPONSE_SIZE',
    'ReplyHeader',
    'decode_cfloat',
    'decode_header',
    'decode_response',
    'encode_cfloat',
    'encode_header',
    'encode_request',
    'encode_response',
]
