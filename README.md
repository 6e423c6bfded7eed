# xfrpkit

Building blocks for the client side of an frp-style reverse proxy. The
package uses only the standard library.

## Modules

### `xfrpkit.pbkdf2`

PBKDF2-HMAC key derivation: `pbkdf2_hmac(hash_name, password, salt,
iterations, length)` with `hash_name` one of `"sha1"`, `"sha256"` or
`"sha512"`, and the shortcuts `pbkdf2_hmac_sha1`, `pbkdf2_hmac_sha256` and
`pbkdf2_hmac_sha512`. `iterations` must be between 1 and 2**32 - 1 and
`length` must be positive; otherwise `ValueError` is raised. Password and
salt must be bytes-like (`TypeError` otherwise).

```python
from xfrpkit.pbkdf2 import pbkdf2_hmac_sha256

password = b"password"
key = pbkdf2_hmac_sha256(password, b"salt", 4096, 32)
assert len(key) == 32
```

### `xfrpkit.ini`

A small INI reader that calls `handler(section, name, value)` for every
pair. It understands `[section]` headers, `name=value` and `name: value`
pairs, `;` and `#` comment lines, inline comments started by `;` after
whitespace, a leading UTF-8 BOM, and indented continuation lines (reported
again under the previous name). Lines longer than `MAX_LINE` characters are
read in pieces; section names are cut to `MAX_SECTION - 1` characters.

Entry points: `parse_lines`, `parse_string`, `parse_file` (an open text
file, left open) and `parse` (a file name). Parsing continues past bad
lines; a handler that returns `False` marks its line as bad. At the end
`IniParseError` is raised with `lineno` set to the first bad line.

```python
from xfrpkit.ini import parse_string

pairs = []
parse_string("[common]\nserver_port = 7000 ; comment\n",
             lambda s, n, v: pairs.append((s, n, v)))
assert pairs == [("common", "server_port", "7000")]
```

### `xfrpkit.login`

`LoginConfig` holds what the client announces at login (version, os, arch,
run id, pool count, ...) and whether it is logged in. `new_login(run_id)`
fills in this machine's system name and architecture.
`LoginConfig.check_response(LoginResponse)` marks the login as failed when
the reply has no run id (or one of at most one character), and otherwise
marks it successful and adopts the returned run id.

### `xfrpkit.msg`

The JSON control messages:

- `MsgType`, the one-character message type codes.
- `calc_md5` and `get_auth_key(token, timestamp)`, the MD5 privilege key.
- `login_request_marshal(login, auth_token)`, which stamps the
  `LoginConfig` with the current time and a fresh key.
- `new_proxy_service_marshal(ProxyService)`, `new_work_conn_marshal(WorkConn)`
  and `new_udp_packet_marshal(UdpPacket)`.
- `login_resp_unmarshal`, `new_proxy_resp_unmarshal`,
  `start_work_conn_resp_unmarshal`, `control_response_unmarshal` and
  `udp_packet_unmarshal`, which raise `MessageError` for invalid JSON or
  missing required fields.

```python
from xfrpkit.msg import get_auth_key

auth_key = get_auth_key("token", 1700000000)
assert len(auth_key) == 32
```

### `xfrpkit.telnetd`

`TelnetServer(port, login_path)` listens for telnet clients and runs the
login program (default `/bin/login`, which must be executable) on a
pseudo-terminal for each one. `serve_forever()` runs the loop until
`close()`; the server is also a context manager. `start_telnetd(port)`
starts one on a background thread and returns it. The input filter it
uses is available on its own: `filter_telnet_input(data)` strips telnet
commands, maps CR LF and CR NUL to CR and collects window-size reports
into a `FilteredInput`; `negotiation_bytes()` gives the options sent to
each new client.

```python
from xfrpkit.telnetd import start_telnetd

server = start_telnetd(2323)
# ...
server.close()
```

POSIX only.

### `xfrpkit.downloader`

`DownloadService(tool, port)` is an HTTP service that accepts `POST /`
with `Content-Type: application/json` and a body such as
`{"action": "download", "profile": "name-or-url"}`. It answers
`{"status": "ok"}` and runs the tool in a background thread, logging its
output; bad commands get `{"status": "failed to parse command"}`, bodies of
`MAX_BODY` bytes or more are refused, other methods get 405 and other
content types 400. `handle_request(method, content_type, body)` gives the
same answer without a socket, and `parse_command` raises `CommandError`
for unusable bodies.

`DownloadTool.INSTALOADER` runs `instaloader`; its `stop` action ends the
whole process. `DownloadTool.YT_DLP` runs `yt-dlp`; if
`/usr/local/bin/yt-dlp` is missing, the service installs it with `sudo`
and `curl` or `wget` from the address in the `XFRPKIT_YT_DLP_URL`
environment variable before serving. `start_instaloader_service(port)` and
`start_youtubedl_service(port)` start a service in the background.

## What this package does not do

It is a set of parts, not a complete client. It does not connect to a
server, frame or exchange messages over a network, forward proxy traffic,
read a client configuration file into settings, or provide a command-line
program.