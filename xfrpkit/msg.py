"""Control messages exchanged with the server, as JSON text."""

from __future__ import annotations

import enum
import hashlib
import json
import time
from dataclasses import dataclass
from typing import Any, Optional, Union

from xfrpkit.login import LoginConfig, LoginResponse

__all__ = [
    "MsgType",
    "MessageError",
    "ControlResponse",
    "NewProxyResponse",
    "WorkConn",
    "UdpAddr",
    "UdpPacket",
    "StartWorkConnResp",
    "ProxyService",
    "TYPE_LEN",
    "MSG_TYPE_I",
    "MSG_LEN_I",
    "MSG_DATA_I",
    "calc_md5",
    "get_auth_key",
    "login_request_marshal",
    "new_proxy_service_marshal",
    "new_work_conn_marshal",
    "new_proxy_resp_unmarshal",
    "login_resp_unmarshal",
    "start_work_conn_resp_unmarshal",
    "control_response_unmarshal",
    "new_udp_packet_marshal",
    "udp_packet_unmarshal",
]

#: Size of the type byte at the start of a framed message.
TYPE_LEN = 1
#: Offsets of the type byte, the 8-byte length and the payload in a frame.
MSG_TYPE_I = 0
MSG_LEN_I = 1
MSG_DATA_I = 9

_SEED_LIMIT = 127
_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1


class MsgType(str, enum.Enum):
    """The one-character type tag of each control message."""

    LOGIN = "o"
    LOGIN_RESP = "1"
    NEW_PROXY = "p"
    NEW_PROXY_RESP = "2"
    CLOSE_PROXY = "c"
    NEW_WORK_CONN = "w"
    REQ_WORK_CONN = "r"
    START_WORK_CONN = "s"
    NEW_VISITOR_CONN = "v"
    NEW_VISITOR_CONN_RESP = "3"
    PING = "h"
    PONG = "4"
    UDP_PACKET = "u"
    NAT_HOLE_VISITOR = "i"
    NAT_HOLE_CLIENT = "n"
    NAT_HOLE_RESP = "m"
    NAT_HOLE_CLIENT_DETECT_OK = "d"
    NAT_HOLE_SID = "5"


class MessageError(ValueError):
    """Raised when a message is not valid JSON or lacks a required field."""


@dataclass
class ControlResponse:
    type: int
    code: int
    msg: str


@dataclass
class NewProxyResponse:
    proxy_name: str
    run_id: Optional[str] = None
    error: Optional[str] = None
    remote_port: int = 0


@dataclass
class WorkConn:
    run_id: Optional[str] = None


@dataclass
class UdpAddr:
    addr: str
    port: int
    zone: str = ""


@dataclass
class UdpPacket:
    content: str
    laddr: Optional[UdpAddr] = None
    raddr: Optional[UdpAddr] = None


@dataclass
class StartWorkConnResp:
    proxy_name: str


@dataclass
class ProxyService:
    """A proxy the client asks the server to open."""

    proxy_name: str
    proxy_type: str = "tcp"
    use_encryption: bool = False
    use_compression: bool = False
    group: Optional[str] = None
    group_key: Optional[str] = None
    remote_port: int = -1
    remote_data_port: int = 0
    custom_domains: Optional[str] = None
    subdomain: Optional[str] = None
    locations: Optional[str] = None
    host_header_rewrite: Optional[str] = None
    http_user: Optional[str] = None
    http_pwd: Optional[str] = None

    @property
    def is_ftp(self) -> bool:
        return self.proxy_type == "ftp"


def calc_md5(data: Union[str, bytes]) -> str:
    """Lower-case hex MD5 digest of ``data``."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.md5(data).hexdigest()


def get_auth_key(token: Optional[str], timestamp: Optional[int] = None) -> str:
    """The privilege key: MD5 of the token followed by the timestamp."""
    if timestamp is None:
        timestamp = int(time.time())
    seed = f"{token}{timestamp}" if token else str(timestamp)
    return calc_md5(seed[:_SEED_LIMIT])


def _dumps(obj: dict) -> str:
    return json.dumps(obj, ensure_ascii=False)


def login_request_marshal(login: LoginConfig, auth_token: Optional[str]) -> str:
    """Stamp ``login`` with a fresh timestamp and key and return the request."""
    login.timestamp = int(time.time())
    login.privilege_key = get_auth_key(auth_token, login.timestamp)

    request: dict[str, Any] = {
        "version": login.version,
        "hostname": login.hostname or "",
        "os": login.os,
        "arch": login.arch,
    }
    if login.user:
        request["user"] = login.user
    request["privilege_key"] = login.privilege_key or ""
    request["timestamp"] = login.timestamp
    if login.run_id:
        request["run_id"] = login.run_id
    request["pool_count"] = login.pool_count
    return _dumps(request)


def _unify_domain(name: str) -> str:
    return name.strip().lower()


def new_proxy_service_marshal(service: ProxyService) -> str:
    """The new-proxy request for ``service``."""
    proxy_type = service.proxy_type
    request: dict[str, Any] = {
        "proxy_name": service.proxy_name,
        "proxy_type": "tcp" if proxy_type in ("socks5", "mstsc") else proxy_type,
        "use_encryption": bool(service.use_encryption),
        "use_compression": bool(service.use_compression),
    }

    if proxy_type in ("tcp", "http", "https", "socks5"):
        if service.group is not None:
            request["group"] = service.group
        if service.group_key is not None:
            request["group_key"] = service.group_key

    if service.is_ftp:
        request["remote_data_port"] = service.remote_data_port

    if service.custom_domains is not None:
        request["custom_domains"] = [
            _unify_domain(name) for name in service.custom_domains.split(",")
        ]
        request["remote_port"] = None
    else:
        request["custom_domains"] = None
        request["remote_port"] = (
            service.remote_port if service.remote_port != -1 else None
        )

    request["subdomain"] = service.subdomain or ""

    if service.locations is not None:
        request["locations"] = [path for path in service.locations.split(",") if path]
    else:
        request["locations"] = None

    request["host_header_rewrite"] = service.host_header_rewrite or ""
    request["http_user"] = service.http_user or ""
    request["http_pwd"] = service.http_pwd or ""
    return _dumps(request)


def new_work_conn_marshal(work_conn: WorkConn) -> str:
    """The new-work-connection request."""
    return _dumps({"run_id": work_conn.run_id or ""})


def _parse_object(text: Union[str, bytes]) -> dict:
    try:
        obj = json.loads(text)
    except (ValueError, TypeError) as exc:
        raise MessageError(f"invalid JSON message: {exc}") from exc
    if not isinstance(obj, dict):
        raise MessageError("message is not a JSON object")
    return obj


def _field(obj: Any, key: str) -> Any:
    if not isinstance(obj, dict) or key not in obj:
        raise MessageError(f"message lacks field {key!r}")
    return obj[key]


def _as_string(value: Any, key: str) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        raise MessageError(f"field {key!r} is null")
    return json.dumps(value)


def _atoi(text: str) -> int:
    text = text.lstrip(" \t\n\v\f\r")
    sign = 1
    if text[:1] in ("+", "-"):
        sign = -1 if text[0] == "-" else 1
        text = text[1:]
    digits = ""
    for char in text:
        if not char.isdigit() or not char.isascii():
            break
        digits += char
    return sign * int(digits) if digits else 0


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return max(_INT32_MIN, min(_INT32_MAX, int(value)))
    if isinstance(value, str):
        return max(_INT32_MIN, min(_INT32_MAX, _atoi(value)))
    return 0


def new_proxy_resp_unmarshal(text: Union[str, bytes]) -> NewProxyResponse:
    """Parse the server's reply to a new-proxy request."""
    obj = _parse_object(text)
    run_id = _as_string(obj["run_id"], "run_id") if "run_id" in obj else None
    remote_addr = _as_string(_field(obj, "remote_addr"), "remote_addr")
    _, sep, port = remote_addr.rpartition(":")
    remote_port = _atoi(port) if sep else 0
    proxy_name = _as_string(_field(obj, "proxy_name"), "proxy_name")
    error = _as_string(obj["error"], "error") if "error" in obj else None
    return NewProxyResponse(
        proxy_name=proxy_name, run_id=run_id, error=error, remote_port=remote_port
    )


def login_resp_unmarshal(text: Union[str, bytes]) -> LoginResponse:
    """Parse the server's reply to a login request."""
    obj = _parse_object(text)
    version = _as_string(_field(obj, "version"), "version")
    run_id = _as_string(_field(obj, "run_id"), "run_id")
    error = _as_string(obj["error"], "error") if "error" in obj else None
    return LoginResponse(version=version, run_id=run_id, error=error)


def start_work_conn_resp_unmarshal(text: Union[str, bytes]) -> StartWorkConnResp:
    """Parse a start-work-connection message."""
    obj = _parse_object(text)
    return StartWorkConnResp(
        proxy_name=_as_string(_field(obj, "proxy_name"), "proxy_name")
    )


def control_response_unmarshal(text: Union[str, bytes]) -> ControlResponse:
    """Parse a generic control response."""
    obj = _parse_object(text)
    msg_type = _as_int(_field(obj, "type"))
    code = _as_int(_field(obj, "code"))
    msg = _as_string(_field(obj, "msg"), "msg")
    return ControlResponse(type=msg_type, code=code, msg=msg)


def _addr_to_json(addr: Optional[UdpAddr]) -> dict:
    if addr is None:
        return {}
    return {"IP": addr.addr, "Port": addr.port, "Zone": ""}


def new_udp_packet_marshal(packet: UdpPacket) -> str:
    """The UDP packet message; ``content`` is carried as given (base64)."""
    return _dumps(
        {
            "c": packet.content,
            "l": _addr_to_json(packet.laddr),
            "r": _addr_to_json(packet.raddr),
        }
    )


def _addr_from_json(obj: Any) -> UdpAddr:
    ip = _field(obj, "IP")
    port = _field(obj, "Port")
    zone = _field(obj, "Zone")
    return UdpAddr(
        addr=_as_string(ip, "IP"), port=_as_int(port), zone=_as_string(zone, "Zone")
    )


def udp_packet_unmarshal(text: Union[str, bytes]) -> UdpPacket:
    """Parse a UDP packet message; both addresses must be complete."""
    obj = _parse_object(text)
    content = _as_string(_field(obj, "c"), "c")
    laddr = _addr_from_json(_field(obj, "l"))
    raddr = _addr_from_json(_field(obj, "r"))
    return UdpPacket(content=content, laddr=laddr, raddr=raddr)