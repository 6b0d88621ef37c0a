"""Bridge from line-delimited JSON-RPC on stdio to the daemon's HTTP endpoint on a unix socket."""

from __future__ import annotations

import http.client
import logging
import socket
import sys
import threading
from typing import BinaryIO, Iterable, Optional, Union

DAEMON_PATH = "/mcp"
SESSION_HEADER = "Mcp-Session-Id"
_CLOSE_TIMEOUT = 2.0


class _UnixHTTPConnection(http.client.HTTPConnection):
    """HTTP connection whose transport is a unix domain socket."""

    def __init__(self, socket_path: str, timeout: Optional[float] = None) -> None:
        if timeout is None:
            super().__init__("daemon")
        else:
            super().__init__("daemon", timeout=timeout)
        self._socket_path = socket_path

    def connect(self) -> None:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        if isinstance(self.timeout, (int, float)):
            sock.settimeout(self.timeout)
        sock.connect(self._socket_path)
        self.sock = sock


def _sse_data(line: Union[str, bytes]) -> Optional[str]:
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")
    line = line.rstrip("\r\n")
    if line.startswith("data: "):
        data = line[len("data: "):]
        if data:
            return data
    return None


class ProxyBridge:
    """Translates stdio JSON-RPC to HTTP for a single session with the daemon."""

    def __init__(
        self,
        socket_path: str,
        stdout: BinaryIO,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.socket_path = socket_path
        self.stdout = stdout
        self.session_id = ""
        self._logger = logger or logging.getLogger(__name__)
        self._write_lock = threading.Lock()
        self._sse_cancel = threading.Event()
        self._sse_conn: Optional[_UnixHTTPConnection] = None
        self._sse_thread: Optional[threading.Thread] = None

    def _connection(self, timeout: Optional[float] = None) -> _UnixHTTPConnection:
        return _UnixHTTPConnection(self.socket_path, timeout)

    def forward(self, json_rpc: bytes) -> None:
        """POST one JSON-RPC message to the daemon and relay the reply to stdout."""
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json, text/event-stream",
        }
        if self.session_id:
            headers[SESSION_HEADER] = self.session_id
        conn = self._connection()
        try:
            conn.request("POST", DAEMON_PATH, body=json_rpc, headers=headers)
            resp = conn.getresponse()

            sid = resp.getheader(SESSION_HEADER) or ""
            if sid and not self.session_id:
                self.session_id = sid
                self._logger.info("Proxy: session established: %s", sid)
                self._start_notification_stream()

            content_type = resp.getheader("Content-Type") or ""
            if content_type.startswith("text/event-stream"):
                self.relay_sse(resp)
            elif content_type.startswith("application/json"):
                self.relay_json(resp.read())
            elif resp.status == http.HTTPStatus.ACCEPTED:
                resp.read()
            else:
                body = resp.read()
                if body:
                    self.write_stdout(body)
        finally:
            conn.close()

    def relay_json(self, body: bytes) -> None:
        """Write a JSON response body to stdout unless it is blank."""
        data = body.strip()
        if data:
            self.write_stdout(data)

    def relay_sse(self, lines: Iterable[Union[str, bytes]]) -> None:
        """Write the data of each SSE ``data:`` line to stdout."""
        for line in lines:
            data = _sse_data(line)
            if data is not None:
                self.write_stdout(data.encode("utf-8"))

    def _start_notification_stream(self) -> None:
        if not self.session_id:
            return
        self._sse_cancel.clear()
        thread = threading.Thread(target=self._notification_stream, daemon=True)
        self._sse_thread = thread
        thread.start()

    def _notification_stream(self) -> None:
        conn = self._connection()
        self._sse_conn = conn
        try:
            conn.request(
                "GET",
                DAEMON_PATH,
                headers={"Accept": "text/event-stream", SESSION_HEADER: self.session_id},
            )
            resp = conn.getresponse()
            if resp.status != http.HTTPStatus.OK:
                self._logger.info("Proxy SSE: unexpected status %d", resp.status)
                return
            for line in resp:
                if self._sse_cancel.is_set():
                    return
                data = _sse_data(line)
                if data is None:
                    continue
                try:
                    self.write_stdout(data.encode("utf-8"))
                except OSError as exc:
                    self._logger.warning("Proxy SSE: write error: %s", exc)
                    return
        except (OSError, http.client.HTTPException) as exc:
            if not self._sse_cancel.is_set():
                self._logger.warning("Proxy SSE: connect: %s", exc)
        finally:
            conn.close()

    def _stop_notification_stream(self) -> None:
        self._sse_cancel.set()
        conn = self._sse_conn
        if conn is not None and conn.sock is not None:
            try:
                conn.sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass

    def close_session(self) -> None:
        """Stop the notification stream and ask the daemon to end the session."""
        self._stop_notification_stream()
        if not self.session_id:
            return
        conn = self._connection(_CLOSE_TIMEOUT)
        try:
            conn.request("DELETE", DAEMON_PATH, headers={SESSION_HEADER: self.session_id})
            conn.getresponse().read()
        except (OSError, http.client.HTTPException):
            pass
        finally:
            conn.close()

    def write_stdout(self, data: bytes) -> None:
        """Write one newline-terminated line to stdout; safe across threads."""
        with self._write_lock:
            self.stdout.write(data)
            self.stdout.write(b"\n")
            self.stdout.flush()


def run_proxy(
    socket_path: str,
    stdin: Optional[BinaryIO] = None,
    stdout: Optional[BinaryIO] = None,
    logger: Optional[logging.Logger] = None,
) -> None:
    """Forward each non-blank stdin line to the daemon until stdin closes.

    A failed forward is logged and re-raised.
    """
    log = logger or logging.getLogger(__name__)
    source = stdin if stdin is not None else sys.stdin.buffer
    sink = stdout if stdout is not None else sys.stdout.buffer
    bridge = ProxyBridge(socket_path, sink, log)
    try:
        for line in source:
            if not line.strip():
                continue
            try:
                bridge.forward(line.rstrip(b"\r\n"))
            except Exception as exc:
                log.error("Proxy forward error: %s", exc)
                raise
    except KeyboardInterrupt:
        pass
    bridge.close_session()
    log.info("Proxy: stdin closed, exiting")