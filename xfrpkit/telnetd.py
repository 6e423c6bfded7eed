"""A minimal telnet server that attaches each client to a login program on a pty.

Bytes from the client are stripped of telnet commands before they reach
the terminal.  Window-size reports (NAWS) are applied to the pty.  Output
from the terminal is passed back to the client unchanged.
"""

from __future__ import annotations

import fcntl
import logging
import os
import select
import signal
import socket
import struct
import termios
import threading
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

__all__ = [
    "BUFSIZE",
    "DEFAULT_PORT",
    "DEFAULT_LOGIN_PATH",
    "FilteredInput",
    "TelnetSession",
    "TelnetServer",
    "filter_telnet_input",
    "negotiation_bytes",
    "start_telnetd",
]

logger = logging.getLogger(__name__)

#: Capacity of each direction's buffer in a session.
BUFSIZE = 4000
DEFAULT_PORT = 2323
DEFAULT_LOGIN_PATH = "/bin/login"

IAC = 255
DONT = 254
DO = 253
WONT = 252
WILL = 251
SB = 250
SE = 240
TELOPT_ECHO = 1
TELOPT_SGA = 3
TELOPT_NAWS = 31
TELOPT_LFLOW = 33

_CR = 0x0D
_LF = 0x0A
_POLL_INTERVAL = 0.2

BytesLike = Union[bytes, bytearray, memoryview]


@dataclass(frozen=True)
class FilteredInput:
    """Result of stripping telnet commands from client input.

    ``data`` holds the bytes meant for the terminal, ``consumed`` how many
    input bytes were processed (an incomplete command at the end is left
    unprocessed) and ``window_sizes`` every ``(columns, rows)`` reported.
    """

    data: bytes
    consumed: int
    window_sizes: Tuple[Tuple[int, int], ...] = ()


def filter_telnet_input(data: BytesLike) -> FilteredInput:
    """Remove telnet commands from ``data`` and map CR LF and CR NUL to CR."""
    data = bytes(data)
    end = len(data)
    out = bytearray()
    sizes: List[Tuple[int, int]] = []
    pos = 0
    while pos < end:
        byte = data[pos]
        if byte != IAC:
            out.append(byte)
            pos += 1
            # Many clients send CR LF when the user presses return.
            if byte == _CR and pos < end and data[pos] in (_LF, 0):
                pos += 1
            continue
        if pos + 2 >= end:
            break
        if data[pos + 1] == SB and data[pos + 2] == TELOPT_NAWS:
            if pos + 8 >= end:
                break
            cols = (data[pos + 3] << 8) | data[pos + 4]
            rows = (data[pos + 5] << 8) | data[pos + 6]
            sizes.append((cols, rows))
            pos += 9
        else:
            pos += 3
    return FilteredInput(bytes(out), pos, tuple(sizes))


def negotiation_bytes() -> bytes:
    """The options sent to every new client: we echo and want window sizes."""
    return bytes(
        [
            IAC, DO, TELOPT_ECHO,
            IAC, DO, TELOPT_NAWS,
            IAC, DO, TELOPT_LFLOW,
            IAC, WILL, TELOPT_ECHO,
            IAC, WILL, TELOPT_SGA,
        ]
    )


@dataclass(eq=False)
class TelnetSession:
    """One client connection and the pty of the program serving it."""

    sock: Optional[socket.socket] = None
    pty_fd: int = -1
    pid: int = 0
    to_pty: bytearray = field(default_factory=bytearray)
    to_socket: bytearray = field(default_factory=lambda: bytearray(negotiation_bytes()))

    @property
    def pty_room(self) -> int:
        return BUFSIZE - len(self.to_pty)

    @property
    def socket_room(self) -> int:
        return BUFSIZE - len(self.to_socket)

    def receive(self, data: BytesLike) -> int:
        """Queue bytes read from the client; returns how many were queued.

        A trailing NUL byte is dropped, and nothing beyond the buffer's
        capacity is kept.
        """
        chunk = bytes(data)
        if chunk.endswith(b"\0"):
            chunk = chunk[:-1]
        chunk = chunk[: self.pty_room]
        self.to_pty += chunk
        return len(chunk)

    def queue_output(self, data: BytesLike) -> int:
        """Queue bytes read from the pty; returns how many were queued."""
        chunk = bytes(data)[: self.socket_room]
        self.to_socket += chunk
        return len(chunk)

    def prepare_pty_output(self) -> FilteredInput:
        """Strip telnet commands from the head of the pty queue in place.

        Afterwards the first ``len(result.data)`` bytes of ``to_pty`` are
        ready to be written to the terminal.
        """
        result = filter_telnet_input(self.to_pty)
        self.to_pty[: result.consumed] = result.data
        return result

    def close(self) -> None:
        """Kill the program, reap it and close both descriptors."""
        if self.pid > 0:
            try:
                os.kill(self.pid, signal.SIGKILL)
            except ProcessLookupError:
                pass
            try:
                os.waitpid(self.pid, 0)
            except ChildProcessError:
                pass
            self.pid = 0
        if self.pty_fd >= 0:
            try:
                os.close(self.pty_fd)
            except OSError:
                pass
            self.pty_fd = -1
        if self.sock is not None:
            self.sock.close()
            self.sock = None


def _set_window_size(fd: int, cols: int, rows: int) -> None:
    try:
        fcntl.ioctl(fd, termios.TIOCSWINSZ, struct.pack("HHHH", rows, cols, 0, 0))
    except OSError:
        pass


def _run_login(tty_name: str, login_path: str) -> None:
    """Child side: make the pty our terminal and exec the login program."""
    try:
        os.setsid()
        fd = os.open(tty_name, os.O_RDWR)
        for target in (0, 1, 2):
            if fd != target:
                os.dup2(fd, target)
        if fd > 2:
            os.close(fd)
        os.tcsetpgrp(0, os.getpid())
        attrs = termios.tcgetattr(0)
        tabs = getattr(termios, "XTABS", getattr(termios, "TAB3", 0))
        attrs[0] = (attrs[0] | termios.ICRNL) & ~termios.IXOFF
        attrs[1] |= termios.ONLCR | tabs
        attrs[3] |= termios.ECHO
        termios.tcsetattr(0, termios.TCSANOW, attrs)
        os.execv(login_path, [login_path])
    finally:
        os._exit(1)


class TelnetServer:
    """Listens for telnet clients and runs ``login_path`` for each one."""

    def __init__(
        self, port: int = DEFAULT_PORT, login_path: str = DEFAULT_LOGIN_PATH
    ) -> None:
        if not os.access(login_path, os.X_OK):
            raise FileNotFoundError(f"no login program found at {login_path}")
        self.login_path = login_path
        self._sessions: List[TelnetSession] = []
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._serving = False
        self._listener: Optional[socket.socket] = socket.socket(
            socket.AF_INET, socket.SOCK_STREAM
        )
        try:
            self._listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            self._listener.bind(("", port))
            self._listener.listen(1)
        except OSError:
            self._listener.close()
            raise
        self.port = self._listener.getsockname()[1]
        logger.info("telnetd listening on port %d", self.port)

    def __enter__(self) -> "TelnetServer":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def sessions(self) -> Tuple[TelnetSession, ...]:
        return tuple(self._sessions)

    def _new_session(self, conn: socket.socket) -> TelnetSession:
        master, slave = os.openpty()
        try:
            tty_name = os.ttyname(slave)
            pid = os.fork()
            if pid == 0:
                _run_login(tty_name, self.login_path)
        except BaseException:
            os.close(master)
            raise
        finally:
            os.close(slave)
        return TelnetSession(sock=conn, pty_fd=master, pid=pid)

    def _accept(self) -> None:
        assert self._listener is not None
        try:
            conn, _ = self._listener.accept()
        except OSError:
            return
        conn.setblocking(True)
        try:
            session = self._new_session(conn)
        except OSError as exc:
            logger.error("cannot start a session: %s", exc)
            conn.close()
            return
        self._sessions.insert(0, session)

    def _service(self, session: TelnetSession, readable: set, writable: set) -> bool:
        """Move data for one session; returns False once it has ended."""
        assert session.sock is not None
        sock_fd = session.sock.fileno()
        try:
            if session.to_pty and session.pty_fd in writable:
                prepared = session.prepare_pty_output()
                for cols, rows in prepared.window_sizes:
                    _set_window_size(session.pty_fd, cols, rows)
                if prepared.data:
                    written = os.write(
                        session.pty_fd, bytes(session.to_pty[: len(prepared.data)])
                    )
                    del session.to_pty[:written]

            if session.to_socket and sock_fd in writable:
                sent = session.sock.send(bytes(session.to_socket))
                del session.to_socket[:sent]

            if session.pty_room > 0 and sock_fd in readable:
                data = session.sock.recv(session.pty_room)
                if not data:
                    return False
                session.receive(data)

            if session.socket_room > 0 and session.pty_fd in readable:
                data = os.read(session.pty_fd, session.socket_room)
                if not data:
                    return False
                session.queue_output(data)
        except OSError:
            return False
        return True

    def serve_forever(self) -> None:
        """Run the select loop until :meth:`close` is called."""
        with self._lock:
            if self._stop.is_set() or self._listener is None:
                raise RuntimeError("server is closed")
            self._serving = True
        try:
            while not self._stop.is_set():
                rlist = [self._listener.fileno()]
                wlist = []
                for session in self._sessions:
                    assert session.sock is not None
                    sock_fd = session.sock.fileno()
                    if session.to_pty:
                        wlist.append(session.pty_fd)
                    if session.pty_room > 0:
                        rlist.append(sock_fd)
                    if session.to_socket:
                        wlist.append(sock_fd)
                    if session.socket_room > 0:
                        rlist.append(session.pty_fd)
                ready_r, ready_w, _ = select.select(rlist, wlist, [], _POLL_INTERVAL)
                readable, writable = set(ready_r), set(ready_w)

                if self._listener.fileno() in readable:
                    self._accept()

                for session in list(self._sessions):
                    if session.sock is None:
                        continue
                    if not self._service(session, readable, writable):
                        self._sessions.remove(session)
                        session.close()
        finally:
            with self._lock:
                self._serving = False
                self._shutdown()

    def _shutdown(self) -> None:
        for session in self._sessions:
            session.close()
        self._sessions.clear()
        if self._listener is not None:
            self._listener.close()
            self._listener = None

    def close(self) -> None:
        """Stop serving, end every session and close the listening socket."""
        self._stop.set()
        with self._lock:
            if not self._serving:
                self._shutdown()


def start_telnetd(port: Optional[int] = DEFAULT_PORT) -> TelnetServer:
    """Start a telnet server on ``port`` in a background thread."""
    server = TelnetServer(DEFAULT_PORT if port is None else port)
    thread = threading.Thread(
        target=server.serve_forever, name="telnetd", daemon=True
    )
    thread.start()
    return server