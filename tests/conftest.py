"""
Pytest configuration and fixtures for chrony-truetime tests.
"""

import dataclasses
import socket
import struct
import sys
import threading
import time
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from chrony_truetime.interfaces.tracking import IPAddr, RefTime, TrackingResponse
from chrony_truetime.protocol.candm import RPY_NULL, ReplyHeader, encode_header, encode_response


# $ strace -f -e trace=network -x -s 10000 chronyc tracking
# Reference ID    : CE6C0084 (ntp2.torix.ca)
# Stratum         : 2
# Ref time (UTC)  : Tue Apr 28 23:01:19 2020
# System time     : 0.000448087 seconds slow of NTP time
# Last offset     : -0.000208690 seconds
# RMS offset      : 0.000183986 seconds
# Frequency       : 14.480 ppm fast
# Residual freq   : -0.003 ppm
# Skew            : 0.049 ppm
# Root delay      : 0.012432915 seconds
# Root dispersion : 0.001648686 seconds
# Update interval : 1033.3 seconds
# Leap status     : Normal
CAPTURED_TRACKING_REPLY = (
    b"\x06\x02\x00\x00\x00\x21\x00\x05\x00\x00\x00\x00\x00\x00\x00\x00"
    b"\xa2\x15\x69\x52\x00\x00\x00\x00\x00\x00\x00\x00\xce\x6c\x00\x84"
    b"\xce\x6c\x00\x84\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00"
    b"\x00\x01\x00\x00\x00\x02\x00\x00\x00\x00\x00\x00\x5e\xa8\xb5\xbf"
    b"\x1c\x98\xf9\xc4\xec\xea\xed\x48\xeb\x25\x2c\x3a\xea\xc0\xec\x61"
    b"\x0a\xe7\xae\x64\xf3\x41\xa2\x0b\xfa\xc9\xcc\xf3\xf6\xcb\xb3\x6d"
    b"\xf0\xd8\x18\xb9\x18\x81\x2a\xa1"
)


@pytest.fixture
def captured_reply():
    """A real chronyd tracking reply (104 bytes)."""
    return CAPTURED_TRACKING_REPLY


def _make_tracking(**overrides) -> TrackingResponse:
    tracking = TrackingResponse(
        version=6,
        pkt_type=2,
        command=33,
        reply=5,
        status=0,
        ref_id=0xCE6C0084,
        addr=IPAddr(addr=bytes([206, 108, 0, 132]) + b'\x00' * 12, family=1),
        stratum=2,
        leap_status=0,
        ref_time=RefTime(sec_high=0, sec_low=1588114879, nsec=479787460),
        current_correction=0.000448087,
        last_offset=-0.000208690,
        rms_offset=0.000183986,
        freq_ppm=14.480,
        resid_freq_ppm=-0.003,
        skew_ppm=0.049,
        root_delay=0.012432915,
        root_dispersion=0.001648686,
        last_update_interval=1033.3,
    )
    return dataclasses.replace(tracking, **overrides)


@pytest.fixture
def make_tracking():
    """Factory for synchronised-looking tracking replies with overrides."""
    return _make_tracking


class FakeChronyd:
    """
    Loopback stand-in for chronyd's C&M port.

    Answers each tracking request with the next entry of `responses`
    (the last one repeats). `mode` injects misbehaviour:
        'normal'  - reply once
        'stale'   - send a reply with the wrong sequence first
        'foreign' - send a matching reply from another port first
        'silent'  - never reply
        'empty'   - reply with a zero-length datagram
        'short'   - reply with the first `short_length` bytes
        'refused' - reply header-only with `refusal_status`, as chronyd
                    answers a failed request
        'stale_refusal' - send a header-only failure with the wrong
                    sequence first
    """

    def __init__(self):
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.bind(('127.0.0.1', 0))
        self.sock.settimeout(0.05)
        self.port = self.sock.getsockname()[1]

        self.foreign = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.foreign.bind(('127.0.0.1', 0))

        self.responses = [_make_tracking()]
        self.mode = 'normal'
        self.refusal_status = 2  # UNAUTH
        self.short_length = 40
        self.requests = []
        self._running = False
        self._thread = None

    def _reply_for(self, sequence: int, **overrides) -> bytes:
        index = min(len(self.requests), len(self.responses)) - 1
        tracking = dataclasses.replace(self.responses[index], sequence=sequence, **overrides)
        return encode_response(tracking)

    def _refusal_for(self, sequence: int) -> bytes:
        return encode_header(ReplyHeader(
            version=6, pkt_type=2, command=33, reply=RPY_NULL,
            status=self.refusal_status, sequence=sequence,
        ))

    def _serve(self):
        while self._running:
            try:
                data, addr = self.sock.recvfrom(1024)
            except socket.timeout:
                continue
            except OSError:
                break

            self.requests.append(data)
            sequence = struct.unpack_from('>I', data, 8)[0]

            if self.mode == 'silent':
                continue
            if self.mode == 'empty':
                self.sock.sendto(b'', addr)
                continue
            if self.mode == 'short':
                self.sock.sendto(self._reply_for(sequence)[:self.short_length], addr)
                continue
            if self.mode == 'refused':
                self.sock.sendto(self._refusal_for(sequence), addr)
                continue
            if self.mode == 'stale':
                self.sock.sendto(self._reply_for((sequence + 1) & 0xFFFFFFFF), addr)
            elif self.mode == 'foreign':
                self.foreign.sendto(self._reply_for(sequence, stratum=99), addr)
                time.sleep(0.01)
            elif self.mode == 'stale_refusal':
                self.sock.sendto(self._refusal_for((sequence + 1) & 0xFFFFFFFF), addr)

            self.sock.sendto(self._reply_for(sequence), addr)

    def start(self):
        self._running = True
        self._thread = threading.Thread(target=self._serve, name="FakeChronyd", daemon=True)
        self._thread.start()

    def stop(self):
        self._running = False
        if self._thread:
            self._thread.join(timeout=2.0)
        self.sock.close()
        self.foreign.close()


@pytest.fixture
def fake_chronyd():
    """A running FakeChronyd on an ephemeral loopback port."""
    daemon = FakeChronyd()
    daemon.start()
    yield daemon
    daemon.stop()
