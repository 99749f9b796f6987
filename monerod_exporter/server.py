"""HTTP endpoint serving the publisher's cached snapshot.

Every GET, whatever the path, answers 200 with the last rendered document,
or 503 with an empty body while no snapshot is available.
"""

import logging
import socket
import ssl
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

from prometheus_client import CONTENT_TYPE_LATEST

from .config import parse_host

logger = logging.getLogger(__name__)

TLS_HANDSHAKE_TIMEOUT = 10.0


def resolve(host):
    """Resolve ``host:port`` to the first (family, sockaddr) the resolver returns."""
    name, port = parse_host(host)
    infos = socket.getaddrinfo(name, port, type=socket.SOCK_STREAM, flags=socket.AI_PASSIVE)
    if not infos:
        raise OSError(f"hostname lookup failed: {host}")
    family, _, _, _, sockaddr = infos[0]
    return family, sockaddr


def build_ssl_context(cert_path, key_path):
    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    ctx.load_cert_chain(certfile=cert_path, keyfile=key_path)
    return ctx


def make_handler(publisher):
    class Handler(BaseHTTPRequestHandler):
        def _send(self, include_body):
            metrics = publisher.get_metrics()
            if metrics is None:
                self.send_response(503)
                self.send_header("Content-Length", "0")
                self.end_headers()
                return
            data = metrics.encode()
            self.send_response(200)
            self.send_header("Content-Type", CONTENT_TYPE_LATEST)
            self.send_header("Content-Length", str(len(data)))
            self.end_headers()
            if include_body:
                self.wfile.write(data)

        def do_GET(self):
            self._send(include_body=True)

        def do_HEAD(self):
            self._send(include_body=False)

        def log_message(self, format, *args):
            logger.debug("%s - %s", self.address_string(), format % args)

    return Handler


class MetricsServer:
    def __init__(self, publisher, host, ssl_context=None):
        family, sockaddr = resolve(host)

        class Server(ThreadingHTTPServer):
            address_family = family
            daemon_threads = True

            def finish_request(self, request, client_address):
                # runs on the per-request thread, so a stalled handshake only holds its own connection
                if ssl_context is None:
                    super().finish_request(request, client_address)
                    return
                request.settimeout(TLS_HANDSHAKE_TIMEOUT)
                try:
                    tls_request = ssl_context.wrap_socket(request, server_side=True)
                except OSError as e:
                    logger.debug("TLS handshake with %s failed: %s", client_address[0], e)
                    return
                tls_request.settimeout(None)
                try:
                    super().finish_request(tls_request, client_address)
                finally:
                    self.shutdown_request(tls_request)

        self._server = Server(sockaddr[:2], make_handler(publisher))
        self._thread = None

    @property
    def server_address(self):
        return self._server.server_address

    def serve_forever(self):
        self._server.serve_forever()

    def start(self, on_exit=None):
        """Serve on a background thread; ``on_exit`` runs when serving stops for any reason."""

        def target():
            try:
                self.serve_forever()
            finally:
                if on_exit is not None:
                    on_exit()

        self._thread = threading.Thread(target=target, name="metrics-http", daemon=True)
        self._thread.start()

    def stop(self):
        self._server.shutdown()
        self._server.server_close()
