"""
Health Monitoring HTTP Server for chrony-truetime.

Exposes the interval clock's latest reading and the daemon's latest
tracking reply for monitoring systems.

Endpoints:
    GET /health     - Basic health check (200 OK if running)
    GET /status     - JSON reading, tracking and counters
    GET /metrics    - Prometheus-compatible metrics

Usage:
    from chrony_truetime.output.health_server import HealthServer

    server = HealthServer(port=8080)
    server.set_client(truetime_client)
    server.start()
"""

import json
import logging
import threading
import time
from http.server import HTTPServer, BaseHTTPRequestHandler
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class HealthRequestHandler(BaseHTTPRequestHandler):
    """HTTP request handler for health endpoints."""

    # Class-level reference to status callback
    get_status: Optional[Callable[[], Dict[str, Any]]] = None

    def log_message(self, format, *args):
        """Suppress default HTTP logging."""
        pass

    def do_GET(self):
        if self.path == '/health':
            self._handle_health()
        elif self.path == '/status':
            self._handle_status()
        elif self.path == '/metrics':
            self._handle_metrics()
        else:
            self.send_error(404, "Not Found")

    def _handle_health(self):
        self.send_response(200)
        self.send_header('Content-Type', 'text/plain')
        self.end_headers()
        self.wfile.write(b'OK\n')

    def _send(self, code: int, content_type: str, body: bytes):
        self.send_response(code)
        self.send_header('Content-Type', content_type)
        self.end_headers()
        self.wfile.write(body)

    def _handle_status(self):
        if not self.get_status:
            self._send(503, 'application/json', json.dumps({'error': 'No client connected'}).encode())
            return
        try:
            status = self.get_status()
        except Exception as e:
            logger.error(f"Status callback failed: {e}")
            self._send(500, 'application/json', json.dumps({'error': str(e)}).encode())
            return
        self._send(200, 'application/json', json.dumps(status, indent=2).encode())

    def _handle_metrics(self):
        if not self.get_status:
            self._send(503, 'text/plain', b'# No client connected\n')
            return
        try:
            metrics = self._format_prometheus_metrics(self.get_status())
        except Exception as e:
            logger.error(f"Status callback failed: {e}")
            self._send(500, 'text/plain', f'# Error: {e}\n'.encode())
            return
        self._send(200, 'text/plain; version=0.0.4', metrics.encode())

    def _format_prometheus_metrics(self, status: Dict[str, Any]) -> str:
        """Format status as Prometheus metrics."""
        reading = status.get('reading') or {}
        tracking = status.get('tracking') or {}
        stats = status.get('stats', {})

        lines = [
            '# HELP truetime_uncertainty_seconds Epsilon of the latest reading',
            '# TYPE truetime_uncertainty_seconds gauge',
            f'truetime_uncertainty_seconds {reading.get("uncertainty_ns", 0) / 1e9:.9f}',
            '',
            '# HELP truetime_correction_seconds Correction applied to the local clock',
            '# TYPE truetime_correction_seconds gauge',
            f'truetime_correction_seconds {reading.get("correction_ns", 0) / 1e9:.9f}',
            '',
            '# HELP truetime_stratum Stratum reported by the daemon',
            '# TYPE truetime_stratum gauge',
            f'truetime_stratum {tracking.get("stratum", 0)}',
            '',
            '# HELP truetime_readings_total Total interval clock readings',
            '# TYPE truetime_readings_total counter',
            f'truetime_readings_total {stats.get("readings", 0)}',
            '',
            '# HELP truetime_errors_total Total failed readings',
            '# TYPE truetime_errors_total counter',
            f'truetime_errors_total {stats.get("errors", 0)}',
            '',
            '# HELP truetime_discarded_datagrams_total Datagrams dropped by sender or sequence check',
            '# TYPE truetime_discarded_datagrams_total counter',
            f'truetime_discarded_datagrams_total{{reason="sender"}} {stats.get("discarded_sender", 0)}',
            f'truetime_discarded_datagrams_total{{reason="sequence"}} {stats.get("discarded_sequence", 0)}',
            '',
            '# HELP truetime_uptime_seconds Client uptime in seconds',
            '# TYPE truetime_uptime_seconds gauge',
            f'truetime_uptime_seconds {status.get("uptime_seconds", 0):.1f}',
            '',
        ]
        return '\n'.join(lines)


class HealthServer:
    """
    HTTP server for health monitoring.

    Runs in a background thread and reports on a TrueTimeClient.
    """

    def __init__(self, port: int = 8080, bind_address: str = '127.0.0.1'):
        """
        Args:
            port: HTTP port to listen on
            bind_address: Address to bind to (default: loopback only)
        """
        self.port = port
        self.bind_address = bind_address
        self.server: Optional[HTTPServer] = None
        self.thread: Optional[threading.Thread] = None
        self.client = None
        self._running = False

    def set_client(self, client):
        """
        Connect to a TrueTimeClient for status reporting.

        Args:
            client: TrueTimeClient instance
        """
        self.client = client
        HealthRequestHandler.get_status = self._get_status

    def _get_status(self) -> Dict[str, Any]:
        if not self.client:
            return {'error': 'No client connected'}

        reading = self.client.last_reading
        tracking = self.client.last_tracking
        stats = dict(self.client.stats)
        stats.update(self.client.session.stats)

        return {
            'timestamp': time.time(),
            'uptime_seconds': time.time() - stats.get('start_time', time.time()),
            'reading': reading.to_dict() if reading else None,
            'tracking': tracking.to_dict() if tracking else None,
            'stats': stats,
        }

    def start(self):
        """Start the health server in a background thread."""
        if self._running:
            logger.warning("Health server already running")
            return

        try:
            self.server = HTTPServer(
                (self.bind_address, self.port),
                HealthRequestHandler
            )
        except OSError as e:
            logger.error(f"Failed to start health server: {e}")
            return

        # Set timeout so handle_request doesn't block forever
        self.server.timeout = 1.0
        self._running = True

        self.thread = threading.Thread(
            target=self._serve,
            name="HealthServer",
            daemon=True
        )
        self.thread.start()

        logger.info(f"Health server started on http://{self.bind_address}:{self.port}")

    def _serve(self):
        while self._running:
            self.server.handle_request()

    def stop(self):
        """Stop the health server."""
        self._running = False
        if self.thread:
            self.thread.join(timeout=2.0)
            self.thread = None
        if self.server:
            self.server.server_close()
            self.server = None
        logger.info("Health server stopped")
