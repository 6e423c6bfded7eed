import socket
import sys
import threading
import time

import pytest

from xfrpkit.telnetd import (
    BUFSIZE,
    IAC,
    SB,
    SE,
    TELOPT_NAWS,
    WILL,
    FilteredInput,
    TelnetServer,
    TelnetSession,
    filter_telnet_input,
    negotiation_bytes,
)


def test_negotiation_bytes_are_the_telnet_options():
    assert negotiation_bytes() == bytes(
        [255, 253, 1, 255, 253, 31, 255, 253, 33, 255, 251, 1, 255, 251, 3]
    )


def test_plain_text_passes_through():
    result = filter_telnet_input(b"hello world")
    assert result == FilteredInput(b"hello world", 11, ())


@pytest.mark.parametrize("suffix", [b"\r\n", b"\r\0"])
def test_carriage_return_pairs_become_cr(suffix):
    data = b"ls" + suffix + b"pwd"
    result = filter_telnet_input(data)
    assert result.data == b"ls\rpwd"
    assert result.consumed == len(data)


def test_trailing_carriage_return_kept():
    result = filter_telnet_input(b"ab\r")
    assert result.data == b"ab\r"
    assert result.consumed == 3


def test_three_byte_command_removed():
    data = b"a" + bytes([IAC, WILL, 1]) + b"b"
    result = filter_telnet_input(data)
    assert result.data == b"ab"
    assert result.consumed == len(data)
    assert result.window_sizes == ()


def test_incomplete_command_left_unprocessed():
    data = b"ab" + bytes([IAC, WILL])
    result = filter_telnet_input(data)
    assert result.data == b"ab"
    assert result.consumed == 2


def test_window_size_report_is_decoded():
    naws = bytes([IAC, SB, TELOPT_NAWS, 0, 80, 0, 24, IAC, SE])
    result = filter_telnet_input(b"x" + naws + b"y")
    assert result.data == b"xy"
    assert result.window_sizes == ((80, 24),)
    assert result.consumed == len(naws) + 2


def test_incomplete_window_size_report_stops():
    partial = bytes([IAC, SB, TELOPT_NAWS, 0, 80, 0])
    result = filter_telnet_input(b"z" + partial)
    assert result.data == b"z"
    assert result.consumed == 1
    assert result.window_sizes == ()


def test_filtered_data_never_contains_iac():
    data = bytes(range(256)) * 3
    result = filter_telnet_input(data)
    assert IAC not in result.data
    assert result.consumed <= len(data)


def test_new_session_queues_negotiation():
    session = TelnetSession()
    assert bytes(session.to_socket) == negotiation_bytes()
    assert session.to_pty == bytearray()


def test_session_receive_drops_trailing_nul():
    session = TelnetSession()
    assert session.receive(b"abc\0") == 3
    assert bytes(session.to_pty) == b"abc"


def test_session_receive_respects_capacity():
    session = TelnetSession()
    queued = session.receive(b"a" * (BUFSIZE + 10))
    assert queued == BUFSIZE
    assert len(session.to_pty) == BUFSIZE
    assert session.pty_room == 0
    assert session.receive(b"more") == 0


def test_session_queue_output_respects_capacity():
    session = TelnetSession()
    start = len(session.to_socket)
    queued = session.queue_output(b"b" * BUFSIZE)
    assert queued == BUFSIZE - start
    assert session.socket_room == 0


def test_prepare_pty_output_rewrites_head():
    session = TelnetSession()
    session.receive(b"hi" + bytes([IAC, WILL, 1]) + b"\r\n" + bytes([IAC]))
    prepared = session.prepare_pty_output()
    assert prepared.data == b"hi\r"
    assert bytes(session.to_pty) == b"hi\r" + bytes([IAC])


def test_server_requires_executable_login(tmp_path):
    with pytest.raises(FileNotFoundError):
        TelnetServer(0, str(tmp_path / "missing-login"))


def test_server_binds_ephemeral_port_and_closes_twice():
    server = TelnetServer(0, sys.executable)
    assert server.port > 0
    server.close()
    server.close()
    with pytest.raises(RuntimeError):
        server.serve_forever()


def test_client_receives_negotiation():
    server = TelnetServer(0, sys.executable)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        expected = negotiation_bytes()
        received = b""
        with socket.create_connection(("127.0.0.1", server.port), timeout=5) as client:
            deadline = time.monotonic() + 5
            while len(received) < len(expected) and time.monotonic() < deadline:
                chunk = client.recv(1024)
                if not chunk:
                    break
                received += chunk
        assert received[: len(expected)] == expected
    finally:
        server.close()
        thread.join(timeout=5)
    assert not thread.is_alive()
    assert server.sessions == ()