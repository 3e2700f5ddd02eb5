"""
Chrony Command-and-Monitoring (C&M) Wire Codec

This module encodes the tracking request and decodes the tracking reply
of chronyd's binary C&M protocol, the same exchange `chronyc tracking`
performs over UDP port 323.

Only the tracking query is supported. Every field is packed explicitly
in network byte order; no native struct layout is relied on.

Request Layout (512 bytes):
---------------------------
    uint8   version          = 6
    uint8   pkt_type         = 1 (request)
    uint8   res1, res2
    uint16  command          = 33 (tracking)
    uint16  attempt          = 0
    uint32  sequence         (random, echoed by the daemon)
    ...     zero padding to 512 bytes

    The padding makes the request at least as large as the reply so the
    daemon cannot be used to amplify spoofed traffic.

Reply Layout (104 bytes known prefix):
--------------------------------------
    uint8   version, pkt_type (2 = reply), res1, res2
    uint16  command, reply (5 = tracking), status (0 = success)
    uint16  pad1, pad2, pad3
    uint32  sequence
    uint32  pad4, pad5
    -- tracking payload (76 bytes) --
    uint32  ref_id
    IPAddr  { uint8 addr[16]; uint16 family; uint16 pad; }
    uint16  stratum, leap_status
    Timespec{ uint32 sec_high, sec_low, nsec; }
    Float   current_correction, last_offset, rms_offset,
            freq_ppm, resid_freq_ppm, skew_ppm,
            root_delay, root_dispersion, last_update_interval

    A failed request is answered with the 28-byte header alone
    (reply = 1, RPY_NULL) and a non-zero status.

Compact Float:
--------------
    32-bit word: 7-bit signed exponent over a 25-bit signed coefficient,
    no hidden bit.  value = coef * 2^(exp - 25)

Reference:
- chrony candm.h / util.c (UTI_FloatNetworkToHost)
"""

import math
import struct
from typing import NamedTuple

from ..errors import DecodeError
from ..interfaces.tracking import IPAddr, RefTime, TrackingResponse


# Well-known C&M port
DEFAULT_CANDM_PORT = 323
DEFAULT_CANDM_HOST = '127.0.0.1'

PROTO_VERSION_NUMBER = 6

# Packet types
PKT_TYPE_CMD_REQUEST = 1
PKT_TYPE_CMD_REPLY = 2

# Commands
REQ_TRACKING = 33

# Replies
RPY_NULL = 1
RPY_TRACKING = 5

# Statuses
STT_SUCCESS = 0
STATUS_NAMES = {
    0: 'SUCCESS',
    1: 'FAILED',
    2: 'UNAUTH',
    3: 'INVALID',
    4: 'NOSUCHSOURCE',
    5: 'INVALIDTS',
    6: 'NOTENABLED',
    7: 'BADSUBNET',
    8: 'ACCESSALLOWED',
    9: 'ACCESSDENIED',
    10: 'NOHOSTACCESS',
    11: 'SOURCEALREADYKNOWN',
    12: 'TOOMANYSOURCES',
    13: 'NORTC',
    14: 'BADRTCFILE',
    15: 'INACTIVE',
    16: 'BADSAMPLE',
    17: 'INVALIDAF',
    18: 'BADPKTVERSION',
    19: 'BADPKTLENGTH',
}

# Reference ID the daemon reports when synchronised only to its own clock
# ("LOCAL" refid, 127.127.1.1)
REFID_LOCAL = 0x7F7F0101

# Compact float parameters
CFLOAT_EXP_BITS = 7
CFLOAT_COEF_BITS = 32 - CFLOAT_EXP_BITS
CFLOAT_EXP_MIN = -(1 << (CFLOAT_EXP_BITS - 1))
CFLOAT_EXP_MAX = -CFLOAT_EXP_MIN - 1
CFLOAT_COEF_MAX = (1 << (CFLOAT_COEF_BITS - 1)) - 1

REQUEST_SIZE = 512
_REQUEST = struct.Struct('>BBBBHHI500x')

# Failed requests are answered with the header alone (reply RPY_NULL)
_HEADER = struct.Struct('>BBBBHHHHHHIII')
HEADER_SIZE = _HEADER.size  # 28 bytes

_RESPONSE = struct.Struct(
    '>BBBBHHHHHHIII'   # header (28 bytes)
    'I16sHHHHIII9i'    # tracking payload (76 bytes)
)
RESPONSE_SIZE = _RESPONSE.size  # 104 bytes


class ReplyHeader(NamedTuple):
    """The fixed 28-byte prefix shared by every C&M reply."""
    version: int
    pkt_type: int
    command: int
    reply: int
    status: int
    sequence: int


def status_name(status: int) -> str:
    return STATUS_NAMES.get(status, f'UNKNOWN({status})')


def decode_cfloat(raw: int) -> float:
    """
    Decode a compact float word.

    Args:
        raw: The 32-bit word, as either a signed or unsigned integer

    Returns:
        coef * 2^(exp - 25), with both fields sign-extended
    """
    x = raw & 0xFFFFFFFF

    exp = x >> CFLOAT_COEF_BITS
    if exp >= 1 << (CFLOAT_EXP_BITS - 1):
        exp -= 1 << CFLOAT_EXP_BITS
    exp -= CFLOAT_COEF_BITS

    coef = x % (1 << CFLOAT_COEF_BITS)
    if coef >= 1 << (CFLOAT_COEF_BITS - 1):
        coef -= 1 << CFLOAT_COEF_BITS

    return coef * math.pow(2.0, exp)


def encode_cfloat(value: float) -> int:
    """
    Encode a float as a compact float word (signed 32-bit).

    Values out of range saturate the way the daemon does: too large
    clamps to the largest coefficient, too small flushes to zero.
    """
    if value == 0.0:
        return 0

    neg = value < 0.0
    x = -value if neg else value

    _, exp = math.frexp(x)
    coef = int(x * math.pow(2.0, CFLOAT_COEF_BITS - exp) + 0.5)

    # rounding may leave up to two extra bits
    while coef > CFLOAT_COEF_MAX:
        coef >>= 1
        exp += 1

    if exp > CFLOAT_EXP_MAX:
        exp = CFLOAT_EXP_MAX
        coef = CFLOAT_COEF_MAX
    elif exp < CFLOAT_EXP_MIN:
        exp = CFLOAT_EXP_MIN
        coef = 0

    if neg:
        coef = -coef & ((1 << CFLOAT_COEF_BITS) - 1)

    word = ((exp & ((1 << CFLOAT_EXP_BITS) - 1)) << CFLOAT_COEF_BITS) | coef
    if word >= 1 << 31:
        word -= 1 << 32
    return word


def encode_request(sequence: int) -> bytes:
    """
    Encode a tracking request.

    Args:
        sequence: Unpredictable 32-bit value the daemon echoes back

    Returns:
        Exactly REQUEST_SIZE bytes
    """
    if not 0 <= sequence <= 0xFFFFFFFF:
        raise ValueError(f"sequence out of uint32 range: {sequence}")

    return _REQUEST.pack(
        PROTO_VERSION_NUMBER,
        PKT_TYPE_CMD_REQUEST,
        0,              # res1
        0,              # res2
        REQ_TRACKING,
        0,              # attempt
        sequence,
    )


def decode_header(data: bytes) -> ReplyHeader:
    """
    Decode the reply header, without the tracking payload.

    Raises:
        DecodeError: if the buffer is shorter than HEADER_SIZE
    """
    if len(data) < HEADER_SIZE:
        raise DecodeError(f"reply header needs {HEADER_SIZE} bytes, got {len(data)}")

    (version, pkt_type, _res1, _res2,
     command, reply, status, _pad1, _pad2, _pad3,
     sequence, _pad4, _pad5) = _HEADER.unpack_from(data, 0)
    return ReplyHeader(version, pkt_type, command, reply, status, sequence)


def encode_header(header: ReplyHeader) -> bytes:
    """Encode a header-only reply, as the daemon sends for failed requests."""
    return _HEADER.pack(
        header.version, header.pkt_type, 0, 0,
        header.command, header.reply, header.status,
        0, 0, 0,
        header.sequence, 0, 0,
    )


def decode_response(data: bytes) -> TrackingResponse:
    """
    Decode a tracking reply.

    Bytes beyond the known layout are ignored.

    Raises:
        DecodeError: if the buffer is shorter than RESPONSE_SIZE
    """
    if len(data) < RESPONSE_SIZE:
        raise DecodeError(
            f"tracking reply needs {RESPONSE_SIZE} bytes, got {len(data)}"
        )

    try:
        fields = _RESPONSE.unpack_from(data, 0)
    except struct.error as e:
        raise DecodeError(f"malformed tracking reply: {e}") from e

    (version, pkt_type, _res1, _res2,
     command, reply, status, _pad1, _pad2, _pad3,
     sequence, _pad4, _pad5,
     ref_id, addr, family, addr_pad,
     stratum, leap_status,
     sec_high, sec_low, nsec) = fields[:22]
    floats = [decode_cfloat(raw) for raw in fields[22:]]

    return TrackingResponse(
        version=version,
        pkt_type=pkt_type,
        command=command,
        reply=reply,
        status=status,
        sequence=sequence,
        ref_id=ref_id,
        addr=IPAddr(addr=addr, family=family, padding=addr_pad),
        stratum=stratum,
        leap_status=leap_status,
        ref_time=RefTime(sec_high=sec_high, sec_low=sec_low, nsec=nsec),
        current_correction=floats[0],
        last_offset=floats[1],
        rms_offset=floats[2],
        freq_ppm=floats[3],
        resid_freq_ppm=floats[4],
        skew_ppm=floats[5],
        root_delay=floats[6],
        root_dispersion=floats[7],
        last_update_interval=floats[8],
    )


def encode_response(response: TrackingResponse) -> bytes:
    """
    Encode a tracking reply, as the daemon would send it.

    Used by loopback test daemons; float fields go through encode_cfloat
    and so carry its rounding.
    """
    return _RESPONSE.pack(
        response.version,
        response.pkt_type,
        0, 0,
        response.command,
        response.reply,
        response.status,
        0, 0, 0,
        response.sequence,
        0, 0,
        response.ref_id,
        bytes(response.addr.addr).ljust(16, b'\x00')[:16],
        response.addr.family,
        response.addr.padding,
        response.stratum,
        response.leap_status,
        response.ref_time.sec_high,
        response.ref_time.sec_low,
        response.ref_time.nsec,
        encode_cfloat(response.current_correction),
        encode_cfloat(response.last_offset),
        encode_cfloat(response.rms_offset),
        encode_cfloat(response.freq_ppm),
        encode_cfloat(response.resid_freq_ppm),
        encode_cfloat(response.skew_ppm),
        encode_cfloat(response.root_delay),
        encode_cfloat(response.root_dispersion),
        encode_cfloat(response.last_update_interval),
    )
