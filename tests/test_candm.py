"""
Unit tests for the C&M wire codec.

Checks the compact float decoder against chronyc's printed values and
decodes a reply captured from a real chronyd.
"""

import struct

import pytest

from chrony_truetime.errors import DecodeError
from chrony_truetime.interfaces.tracking import AddressFamily, LeapStatus
from chrony_truetime.protocol.candm import (
    HEADER_SIZE,
    PKT_TYPE_CMD_REPLY,
    REQ_TRACKING,
    REQUEST_SIZE,
    RESPONSE_SIZE,
    RPY_NULL,
    RPY_TRACKING,
    STT_SUCCESS,
    ReplyHeader,
    decode_cfloat,
    decode_header,
    decode_response,
    encode_cfloat,
    encode_header,
    encode_request,
    encode_response,
)


class TestCompactFloat:
    """Test compact float decoding."""

    @pytest.mark.parametrize("raw,expected,tolerance", [
        (-320148152, 0.000448087, 1e-9),
        (-349885382, -0.000208690, 1e-9),
        (-356455327, 0.000183986, 1e-9),
        (182955620, 14.480, 1e-3),
        (-213802485, -0.003, 1e-3),
        (-87438093, 0.049, 1e-3),
        (-154422419, 0.012432915, 1e-9),
        (-254273351, 0.001648686, 1e-9),
        (411118241, 1033.3, 0.1),
    ])
    def test_matches_chronyc_output(self, raw, expected, tolerance):
        """Decoded values match what chronyc printed for the same words."""
        assert decode_cfloat(raw) == pytest.approx(expected, abs=tolerance)

    def test_exact_value(self):
        """0xECEAED48: exponent -10, coefficient 15396168."""
        assert decode_cfloat(-320148152) == 15396168 * 2.0 ** -35

    def test_signed_and_unsigned_words_agree(self):
        assert decode_cfloat(-320148152) == decode_cfloat(0xECEAED48)

    def test_negative_coefficient(self):
        """Coefficient is sign-extended from 25 bits."""
        assert decode_cfloat(-349885382) == -14341062 * 2.0 ** -36

    def test_zero(self):
        assert decode_cfloat(0) == 0.0
        assert encode_cfloat(0.0) == 0

    def test_encode_saturates_large_values(self):
        huge = decode_cfloat(encode_cfloat(1e30))
        assert huge == pytest.approx((2 ** 24 - 1) * 2.0 ** (63 - 25))

    def test_encode_flushes_tiny_values(self):
        assert decode_cfloat(encode_cfloat(1e-30)) == 0.0


class TestTrackingRequest:
    """Test request encoding."""

    @pytest.mark.parametrize("sequence", [0, 1, 0x7FFFFFFF, 0xFFFFFFFF])
    def test_request_is_always_512_bytes(self, sequence):
        assert len(encode_request(sequence)) == REQUEST_SIZE == 512

    def test_header_fields(self):
        data = encode_request(0xA2156952)
        version, pkt_type, res1, res2, command, attempt, sequence = struct.unpack('>BBBBHHI', data[:12])

        assert version == 6
        assert pkt_type == 1
        assert (res1, res2) == (0, 0)
        assert command == REQ_TRACKING == 33
        assert attempt == 0
        assert sequence == 0xA2156952

    def test_padding_is_zero(self):
        data = encode_request(0xFFFFFFFF)
        assert data[12:] == b'\x00' * (REQUEST_SIZE - 12)

    @pytest.mark.parametrize("sequence", [-1, 2 ** 32])
    def test_rejects_out_of_range_sequence(self, sequence):
        with pytest.raises(ValueError):
            encode_request(sequence)


class TestTrackingResponse:
    """Test reply decoding with a captured chronyd reply."""

    def test_response_size(self):
        assert RESPONSE_SIZE == 104

    def test_header(self, captured_reply):
        rep = decode_response(captured_reply)

        assert rep.version == 6
        assert rep.pkt_type == PKT_TYPE_CMD_REPLY
        assert rep.command == REQ_TRACKING
        assert rep.reply == RPY_TRACKING
        assert rep.status == STT_SUCCESS
        assert rep.sequence == 2719312210

    def test_tracking_payload(self, captured_reply):
        rep = decode_response(captured_reply)

        assert rep.ref_id == 0xCE6C0084
        assert rep.ref_id_name == "CE6C0084"
        assert rep.addr.family == AddressFamily.INET4
        assert rep.addr.ip == "206.108.0.132"
        assert rep.stratum == 2
        assert rep.leap_status == LeapStatus.NORMAL
        assert rep.ref_time.sec_high == 0
        assert rep.ref_time.sec_low == 1588114879
        assert rep.ref_time.nsec == 479787460

    def test_reference_time(self, captured_reply):
        rep = decode_response(captured_reply)
        formatted = rep.ref_time.to_datetime().strftime('%a %b %d %H:%M:%S %Y')
        assert formatted == "Tue Apr 28 23:01:19 2020"

    def test_float_fields(self, captured_reply):
        rep = decode_response(captured_reply)

        assert rep.current_correction == decode_cfloat(-320148152)
        assert rep.last_offset == decode_cfloat(-349885382)
        assert rep.rms_offset == decode_cfloat(-356455327)
        assert rep.freq_ppm == decode_cfloat(182955620)
        assert rep.resid_freq_ppm == decode_cfloat(-213802485)
        assert rep.skew_ppm == decode_cfloat(-87438093)
        assert rep.root_delay == decode_cfloat(-154422419)
        assert rep.root_dispersion == decode_cfloat(-254273351)
        assert rep.last_update_interval == decode_cfloat(411118241)
        assert int(rep.current_correction * 1e9) == 448087

    def test_decoding_is_idempotent(self, captured_reply):
        assert decode_response(captured_reply) == decode_response(captured_reply)

    def test_trailing_bytes_ignored(self, captured_reply):
        assert decode_response(captured_reply + b'\xff' * 64) == decode_response(captured_reply)

    @pytest.mark.parametrize("length", [0, 1, 28, RESPONSE_SIZE - 1])
    def test_short_buffer_is_decode_error(self, captured_reply, length):
        with pytest.raises(DecodeError):
            decode_response(captured_reply[:length])

    def test_reencoding_reproduces_capture(self, captured_reply):
        """encode_response writes the same bytes chronyd sent."""
        assert encode_response(decode_response(captured_reply)) == captured_reply

    def test_to_dict_is_json_friendly(self, captured_reply):
        data = decode_response(captured_reply).to_dict()
        assert data['ref_id'] == "CE6C0084"
        assert data['addr'] == {'ip': "206.108.0.132", 'family': 1}
        assert data['ref_time'].startswith("2020-04-28T23:01:19")


class TestReplyHeader:
    """Test the header shared by tracking and header-only replies."""

    def test_header_size(self):
        assert HEADER_SIZE == 28

    def test_header_of_captured_reply(self, captured_reply):
        header = decode_header(captured_reply)

        assert header == ReplyHeader(
            version=6, pkt_type=PKT_TYPE_CMD_REPLY, command=REQ_TRACKING,
            reply=RPY_TRACKING, status=STT_SUCCESS, sequence=2719312210,
        )
        assert decode_header(captured_reply[:HEADER_SIZE]) == header

    def test_header_only_failure_reply(self):
        data = struct.pack('>BBBBHHHHHHIII', 6, 2, 0, 0, 33, RPY_NULL, 2, 0, 0, 0, 1234, 0, 0)

        header = decode_header(data)

        assert header.reply == RPY_NULL
        assert header.status == 2
        assert header.sequence == 1234
        assert encode_header(header) == data

    def test_short_header_is_decode_error(self, captured_reply):
        with pytest.raises(DecodeError):
            decode_header(captured_reply[:HEADER_SIZE - 1])
