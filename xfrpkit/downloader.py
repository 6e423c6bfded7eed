"""Small HTTP services that fetch media with an external download tool.

Each service listens on a port and accepts ``POST /`` with a JSON body
such as ``{"action": "download", "profile": "name-or-url"}``.  A valid
command is acknowledged at once and carried out in a background thread
that runs the tool and logs its output.
"""

from __future__ import annotations

import enum
import json
import logging
import os
import shlex
import subprocess
import threading
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import List, Optional, Tuple, Union
from urllib.parse import urlsplit

__all__ = [
    "MAX_BODY",
    "INSTALL_URL_ENV",
    "CommandError",
    "DownloadTool",
    "DownloadCommand",
    "DownloadService",
    "parse_command",
    "start_instaloader_service",
    "start_youtubedl_service",
]

logger = logging.getLogger(__name__)

#: Request bodies of this many bytes or more are refused.
MAX_BODY = 4096
#: Environment variable naming where the yt-dlp binary can be downloaded.
INSTALL_URL_ENV = "XFRPKIT_YT_DLP_URL"

_JSON_TYPE = "application/json"


class CommandError(ValueError):
    """Raised when a request body is not a usable download command."""


class DownloadTool(str, enum.Enum):
    """The external programs a service can drive."""

    INSTALOADER = "instaloader"
    YT_DLP = "yt-dlp"

    @property
    def directory(self) -> str:
        """Directory created before each command."""
        return self.value

    @property
    def base_args(self) -> Tuple[str, ...]:
        if self is DownloadTool.INSTALOADER:
            return (
                "instaloader",
                "--no-captions",
                "--no-metadata-json",
                "--no-compress-json",
                "--no-pictures",
            )
        return ("yt-dlp",)

    @property
    def stop_exits(self) -> bool:
        """Whether a ``stop`` command ends the whole program."""
        return self is DownloadTool.INSTALOADER

    @property
    def install_path(self) -> Optional[str]:
        """Where the tool is installed before serving, if it must be."""
        if self is DownloadTool.YT_DLP:
            return "/usr/local/bin/yt-dlp"
        return None


@dataclass(frozen=True)
class DownloadCommand:
    """An action and the profile or URL it applies to."""

    action: str
    profile: str = ""


def _json_string(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        raise CommandError(f"field {key!r} is null")
    return json.dumps(value)


def parse_command(data: Union[str, bytes]) -> DownloadCommand:
    """Parse a JSON command; ``profile`` is required unless the action is ``stop``."""
    try:
        obj = json.loads(data)
    except (ValueError, TypeError) as exc:
        raise CommandError(f"invalid JSON: {exc}") from exc
    if not isinstance(obj, dict) or "action" not in obj:
        raise CommandError("command lacks an action")
    action = _json_string(obj["action"], "action")
    if action == "stop":
        return DownloadCommand(action)
    if "profile" not in obj:
        raise CommandError("command lacks a profile")
    return DownloadCommand(action, _json_string(obj["profile"], "profile"))


def _status_body(status: str) -> bytes:
    return f'{{"status": "{status}"}}'.encode("utf-8")


class DownloadService:
    """An HTTP endpoint that runs ``tool`` for each accepted command."""

    def __init__(self, tool: Union[DownloadTool, str], port: int) -> None:
        self.tool = DownloadTool(tool)
        self.requested_port = port
        self.install_url: Optional[str] = os.environ.get(INSTALL_URL_ENV)
        self.ready = threading.Event()
        self._server: Optional[HTTPServer] = None
        self._workers: List[threading.Thread] = []
        self._lock = threading.Lock()

    @property
    def port(self) -> int:
        """The port actually listened on, once serving has started."""
        if self._server is None:
            raise RuntimeError("service is not listening")
        return self._server.server_address[1]

    def handle_request(
        self, method: str, content_type: Optional[str], body: bytes
    ) -> Tuple[int, bytes]:
        """Answer one request to ``/``; returns the status code and body."""
        if method != "POST":
            logger.error("%s: http request method is not POST", self.tool.value)
            return 405, b"Method Not Allowed"
        if content_type != _JSON_TYPE:
            logger.error(
                "%s: http request content type is not application/json",
                self.tool.value,
            )
            return 400, b"Bad Request"
        if len(body) >= MAX_BODY:
            logger.error("%s: data length is too long", self.tool.value)
            return 200, _status_body("data length is too long")

        data = body.split(b"\0", 1)[0]
        logger.debug("%s: data: %s", self.tool.value, data)
        try:
            command = parse_command(data)
        except CommandError as exc:
            logger.error("%s: parse_command failed: %s", self.tool.value, exc)
            return 200, _status_body("failed to parse command")

        worker = threading.Thread(
            target=self.run_command, args=(command,), daemon=True
        )
        with self._lock:
            self._workers = [w for w in self._workers if w.is_alive()]
            self._workers.append(worker)
        worker.start()
        return 200, _status_body("ok")

    def wait(self, timeout: Optional[float] = None) -> None:
        """Wait for the commands started so far to finish."""
        with self._lock:
            workers = list(self._workers)
        for worker in workers:
            worker.join(timeout)

    def run_command(self, command: DownloadCommand) -> Optional[int]:
        """Carry out ``command``; returns the tool's exit status if it ran."""
        name = self.tool.value
        logger.debug("%s: action: %s, profile: %s", name, command.action, command.profile)
        os.makedirs(self.tool.directory, exist_ok=True)

        if command.action == "download":
            args = [*self.tool.base_args, *shlex.split(command.profile)]
            logger.debug("%s: cmd: %s", name, shlex.join(args))
            try:
                proc = subprocess.Popen(args, stdout=subprocess.PIPE, text=True)
            except OSError as exc:
                logger.error("%s: cannot run %s: %s", name, args[0], exc)
                return None
            try:
                for line in proc.stdout:
                    logger.debug("%s: %s", name, line.rstrip("\n"))
            finally:
                proc.stdout.close()
            return proc.wait()

        if command.action == "stop" and self.tool.stop_exits:
            logger.debug("%s: exit the program", name)
            os._exit(0)
            return None

        logger.error("%s: unknown action: %s", name, command.action)
        return None

    def _ensure_installed(self) -> None:
        path = self.tool.install_path
        if path is None or os.path.exists(path):
            return
        if not self.install_url:
            raise RuntimeError(
                f"{self.tool.value} is not installed and {INSTALL_URL_ENV} is not set"
            )
        if os.path.exists("/usr/bin/curl"):
            fetch = ["sudo", "curl", "-L", self.install_url, "-o", path]
        elif os.path.exists("/usr/bin/wget"):
            fetch = ["sudo", "wget", self.install_url, "-O", path]
        else:
            raise RuntimeError("curl and wget are not installed")
        for args in (fetch, ["sudo", "chmod", "a+rx", path]):
            logger.debug("%s: cmd: %s", self.tool.value, shlex.join(args))
            if subprocess.run(args).returncode != 0:
                raise RuntimeError(f"command failed: {shlex.join(args)}")

    def _make_handler(self) -> type:
        service = self

        class _Handler(BaseHTTPRequestHandler):
            def _dispatch(self) -> None:
                if urlsplit(self.path).path != "/":
                    self.send_error(404)
                    return
                length = int(self.headers.get("Content-Length") or 0)
                body = self.rfile.read(length) if length > 0 else b""
                status, payload = service.handle_request(
                    self.command, self.headers.get("Content-Type"), body
                )
                if status != 200:
                    self.send_error(status, payload.decode("utf-8"))
                    return
                self.send_response(200, "OK")
                self.send_header("Content-Type", _JSON_TYPE)
                self.send_header("Content-Length", str(len(payload)))
                self.end_headers()
                self.wfile.write(payload)

            do_GET = do_POST = do_PUT = do_DELETE = _dispatch
            do_HEAD = do_OPTIONS = do_PATCH = _dispatch

            def log_message(self, format: str, *args: object) -> None:
                logger.debug("%s: " + format, service.tool.value, *args)

        return _Handler

    def serve_forever(self) -> None:
        """Install the tool if needed, then answer requests until closed."""
        self._ensure_installed()
        self._server = HTTPServer(("0.0.0.0", self.requested_port), self._make_handler())
        logger.debug("%s: service on port %d", self.tool.value, self.port)
        self.ready.set()
        try:
            self._server.serve_forever()
        finally:
            self._server.server_close()

    def start(self) -> threading.Thread:
        """Run :meth:`serve_forever` in a background thread."""
        thread = threading.Thread(
            target=self.serve_forever, name=f"{self.tool.value}-service", daemon=True
        )
        thread.start()
        return thread

    def close(self) -> None:
        """Stop serving requests."""
        if self._server is not None and self.ready.is_set():
            self._server.shutdown()


def start_instaloader_service(port: int) -> DownloadService:
    """Start the instaloader service on ``port`` in the background."""
    service = DownloadService(DownloadTool.INSTALOADER, port)
    service.start()
    return service


def start_youtubedl_service(port: int) -> DownloadService:
    """Start the yt-dlp service on ``port`` in the background."""
    service = DownloadService(DownloadTool.YT_DLP, port)
    service.start()
    return service