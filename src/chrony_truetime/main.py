#!/usr/bin/env python3
"""
chrony-truetime: TrueTime-style interval clock on top of chronyd

Command-line front end for the library. It:
1. Opens a C&M session with the local chronyd (UDP 127.0.0.1:323)
2. Optionally waits until chronyd reports usable synchronisation
3. Prints an interval-clock reading, or a tracking report
4. In monitor mode, polls continuously and serves health endpoints

Usage:
    # One reading
    chrony-truetime

    # chronyc-style tracking report
    chrony-truetime --tracking

    # Continuous monitoring with health endpoint
    chrony-truetime --monitor --config /etc/chrony-truetime/config.toml
"""

import argparse
import json
import logging
import signal
import sys
import time
from pathlib import Path
from typing import Any, Dict, Optional

import toml

# Set up logging before imports that use it
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger('chrony-truetime')

from .client import TrueTimeClient
from .errors import TrueTimeError
from .interfaces.tracking import LeapStatus, Reading, TrackingResponse
from .output.health_server import HealthServer


def default_config() -> Dict[str, Any]:
    return {
        'daemon': {
            'host': '127.0.0.1',
            'port': 323,
            'timeout': 1.0,
        },
        'sync': {
            'wait_for_sync': True,
            'max_attempts': 3,
            'max_uncertainty_ms': 20.0,
            'retry_interval': 0.5,
        },
        'monitor': {
            'poll_interval': 1.0,
            'health_port': 8080,
        },
    }


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from TOML file, filling unset keys from the defaults."""
    config = default_config()
    if config_path and Path(config_path).exists():
        with open(config_path, 'r') as f:
            loaded = toml.load(f)
        for section, values in loaded.items():
            if isinstance(values, dict):
                config.setdefault(section, {}).update(values)
            else:
                config[section] = values
    elif config_path:
        logger.warning(f"Config file {config_path} not found, using defaults")
    return config


def format_tracking(tracking: TrackingResponse) -> str:
    """Render a tracking reply the way `chronyc tracking` does."""
    correction = tracking.current_correction
    direction = 'slow' if correction >= 0 else 'fast'
    freq_direction = 'slow' if tracking.freq_ppm < 0 else 'fast'
    try:
        leap = LeapStatus(tracking.leap_status).name.replace('_', ' ').title()
    except ValueError:
        leap = f'Unknown ({tracking.leap_status})'
    ref_name = tracking.addr.ip or tracking.ref_id_name

    lines = [
        f"Reference ID    : {tracking.ref_id_name} ({ref_name})",
        f"Stratum         : {tracking.stratum}",
        f"Ref time (UTC)  : {tracking.ref_time.to_datetime().strftime('%a %b %d %H:%M:%S %Y')}",
        f"System time     : {abs(correction):.9f} seconds {direction} of NTP time",
        f"Last offset     : {tracking.last_offset:+.9f} seconds",
        f"RMS offset      : {tracking.rms_offset:.9f} seconds",
        f"Frequency       : {abs(tracking.freq_ppm):.3f} ppm {freq_direction}",
        f"Residual freq   : {tracking.resid_freq_ppm:+.3f} ppm",
        f"Skew            : {tracking.skew_ppm:.3f} ppm",
        f"Root delay      : {tracking.root_delay:.9f} seconds",
        f"Root dispersion : {tracking.root_dispersion:.9f} seconds",
        f"Update interval : {tracking.last_update_interval:.1f} seconds",
        f"Leap status     : {leap}",
    ]
    return '\n'.join(lines)


def format_reading(reading: Reading) -> str:
    return (
        f"{reading.now.isoformat()} "
        f"±{reading.uncertainty_ns / 1e6:.3f}ms "
        f"(earliest={reading.earliest()}, latest={reading.latest()})"
    )


class Monitor:
    """Polls the interval clock until stopped, keeping health status fresh."""

    def __init__(self, client: TrueTimeClient, poll_interval: float = 1.0):
        self.client = client
        self.poll_interval = poll_interval
        self.running = False

    def _signal_handler(self, signum, frame):
        logger.info(f"Received signal {signum}, stopping")
        self.running = False

    def run(self):
        signal.signal(signal.SIGTERM, self._signal_handler)
        signal.signal(signal.SIGINT, self._signal_handler)

        self.running = True
        logger.info(f"Monitoring every {self.poll_interval}s")
        while self.running:
            try:
                reading = self.client.get()
                logger.info(format_reading(reading))
            except TrueTimeError as e:
                logger.warning(f"Reading failed: {e}")
            time.sleep(self.poll_interval)


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description='chrony-truetime: TrueTime-style interval clock backed by chronyd',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # One reading
    chrony-truetime

    # Tracking report as JSON
    chrony-truetime --tracking --json

    # Monitor with health endpoint on port 8080
    chrony-truetime --monitor --health-port 8080
        """
    )

    parser.add_argument(
        '--config', '-c',
        help='Path to TOML configuration file'
    )
    parser.add_argument(
        '--host',
        help='chronyd address (overrides config, default: 127.0.0.1)'
    )
    parser.add_argument(
        '--port',
        type=int,
        help='chronyd C&M port (overrides config, default: 323)'
    )
    parser.add_argument(
        '--no-sync',
        action='store_true',
        help='Skip waiting for chronyd to report synchronisation'
    )
    parser.add_argument(
        '--tracking',
        action='store_true',
        help='Print the daemon tracking report instead of a reading'
    )
    parser.add_argument(
        '--json',
        action='store_true',
        help='Print JSON output'
    )
    parser.add_argument(
        '--monitor',
        action='store_true',
        help='Poll continuously until interrupted'
    )
    parser.add_argument(
        '--health-port',
        type=int,
        help='HTTP port for health monitoring in monitor mode (0 to disable)'
    )
    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )

    args = parser.parse_args()

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    config = load_config(args.config)

    # Apply command-line overrides
    if args.host:
        config['daemon']['host'] = args.host
    if args.port:
        config['daemon']['port'] = args.port
    if args.no_sync:
        config['sync']['wait_for_sync'] = False
    if args.health_port is not None:
        config['monitor']['health_port'] = args.health_port

    try:
        client = TrueTimeClient.from_config(config)
    except TrueTimeError as e:
        logger.error(f"Cannot use chronyd: {e}")
        sys.exit(1)

    with client:
        if args.monitor:
            health_server = None
            health_port = config['monitor'].get('health_port', 8080)
            if health_port > 0:
                health_server = HealthServer(port=health_port)
                health_server.set_client(client)
                health_server.start()
            try:
                Monitor(client, config['monitor'].get('poll_interval', 1.0)).run()
            finally:
                if health_server:
                    health_server.stop()
            return

        try:
            if args.tracking:
                tracking = client.tracking()
                print(tracking.to_json() if args.json else format_tracking(tracking))
            else:
                reading = client.get()
                print(json.dumps(reading.to_dict(), indent=2) if args.json else format_reading(reading))
        except TrueTimeError as e:
            logger.error(f"Query failed: {e}")
            sys.exit(1)


if __name__ == '__main__':
    main()
