import json

import pytest

from xfrpkit.login import LoginConfig
from xfrpkit.msg import (
    ControlResponse,
    MessageError,
    MsgType,
    NewProxyResponse,
    ProxyService,
    StartWorkConnResp,
    UdpAddr,
    UdpPacket,
    WorkConn,
    calc_md5,
    control_response_unmarshal,
    get_auth_key,
    login_request_marshal,
    login_resp_unmarshal,
    new_proxy_resp_unmarshal,
    new_proxy_service_marshal,
    new_udp_packet_marshal,
    new_work_conn_marshal,
    start_work_conn_resp_unmarshal,
    udp_packet_unmarshal,
)


def test_calc_md5_known_vectors():
    assert calc_md5("") == "d41d8cd98f00b204e9800998ecf8427e"
    assert calc_md5(b"abc") == "900150983cd24fb0d6963f7d28e17f72"


def test_calc_md5_str_and_bytes_agree():
    assert calc_md5("hello") == calc_md5(b"hello")
    assert len(calc_md5("hello")) == 32


def test_get_auth_key_seed():
    assert get_auth_key("token", 100) == calc_md5("token100")
    assert get_auth_key(None, 100) == calc_md5("100")
    assert get_auth_key("", 100) == calc_md5("100")


def test_msg_type_lookup_by_tag():
    assert MsgType("o") is MsgType.LOGIN
    assert MsgType("u") is MsgType.UDP_PACKET


def test_login_request_marshal_sets_key_and_fields():
    login = LoginConfig(os="Linux", arch="x86_64", run_id="abc")
    text = login_request_marshal(login, "token")
    data = json.loads(text)
    assert data["privilege_key"] == get_auth_key("token", login.timestamp)
    assert login.privilege_key == data["privilege_key"]
    assert data["timestamp"] == login.timestamp
    assert data["os"] == "Linux"
    assert data["arch"] == "x86_64"
    assert data["run_id"] == "abc"
    assert data["hostname"] == ""
    assert data["pool_count"] == 1
    assert "user" not in data


def test_login_request_marshal_key_order_and_optional_fields():
    login = LoginConfig(os="Linux", arch="arm", user="alice")
    data = json.loads(login_request_marshal(login, None))
    assert list(data) == [
        "version", "hostname", "os", "arch", "user",
        "privilege_key", "timestamp", "pool_count",
    ]
    assert data["user"] == "alice"


def test_new_proxy_service_socks5_becomes_tcp_with_group():
    service = ProxyService(
        proxy_name="web", proxy_type="socks5", group="g1", group_key="k1",
        remote_port=6000,
    )
    data = json.loads(new_proxy_service_marshal(service))
    assert data["proxy_type"] == "tcp"
    assert data["group"] == "g1"
    assert data["group_key"] == "k1"
    assert data["remote_port"] == 6000
    assert data["custom_domains"] is None
    assert data["locations"] is None
    assert data["subdomain"] == ""


def test_new_proxy_service_mstsc_has_no_group():
    service = ProxyService(proxy_name="rdp", proxy_type="mstsc", group="g1")
    data = json.loads(new_proxy_service_marshal(service))
    assert data["proxy_type"] == "tcp"
    assert "group" not in data
    assert data["remote_port"] is None


def test_new_proxy_service_custom_domains_and_locations():
    service = ProxyService(
        proxy_name="site", proxy_type="http",
        custom_domains="a.example.com,b.example.com",
        locations="/api,,/static", remote_port=80,
    )
    data = json.loads(new_proxy_service_marshal(service))
    assert data["custom_domains"] == ["a.example.com", "b.example.com"]
    assert data["remote_port"] is None
    assert data["locations"] == ["/api", "/static"]


def test_new_proxy_service_ftp_data_port():
    service = ProxyService(proxy_name="f", proxy_type="ftp", remote_data_port=2021)
    data = json.loads(new_proxy_service_marshal(service))
    assert data["remote_data_port"] == 2021
    assert data["proxy_type"] == "ftp"


def test_new_work_conn_marshal():
    assert json.loads(new_work_conn_marshal(WorkConn("abc"))) == {"run_id": "abc"}
    assert json.loads(new_work_conn_marshal(WorkConn())) == {"run_id": ""}


def test_new_proxy_resp_unmarshal():
    text = json.dumps({
        "run_id": "r1", "remote_addr": "0.0.0.0:6000",
        "proxy_name": "web", "error": "",
    })
    assert new_proxy_resp_unmarshal(text) == NewProxyResponse(
        proxy_name="web", run_id="r1", error="", remote_port=6000
    )


def test_new_proxy_resp_without_port():
    resp = new_proxy_resp_unmarshal('{"remote_addr": "host", "proxy_name": "p"}')
    assert resp.remote_port == 0
    assert resp.run_id is None
    assert resp.error is None


@pytest.mark.parametrize(
    "text",
    ["not json", '{"proxy_name": "p"}', '{"remote_addr": ":1"}', "[1, 2]"],
)
def test_new_proxy_resp_errors(text):
    with pytest.raises(MessageError):
        new_proxy_resp_unmarshal(text)


def test_login_resp_unmarshal():
    resp = login_resp_unmarshal('{"version": "0.10.0", "run_id": "r1"}')
    assert resp.version == "0.10.0"
    assert resp.run_id == "r1"
    assert resp.error is None


def test_login_resp_missing_run_id():
    with pytest.raises(MessageError):
        login_resp_unmarshal('{"version": "0.10.0"}')


def test_start_work_conn_resp():
    assert start_work_conn_resp_unmarshal('{"proxy_name": "web"}') == StartWorkConnResp("web")
    with pytest.raises(MessageError):
        start_work_conn_resp_unmarshal("{}")


def test_control_response_unmarshal():
    resp = control_response_unmarshal('{"type": 3, "code": 0, "msg": "ok"}')
    assert resp == ControlResponse(type=3, code=0, msg="ok")
    with pytest.raises(MessageError):
        control_response_unmarshal('{"type": 3, "code": 0}')


def test_udp_packet_round_trip():
    packet = UdpPacket(
        content="aGVsbG8=",
        laddr=UdpAddr("127.0.0.1", 5000),
        raddr=UdpAddr("10.0.0.2", 53),
    )
    assert udp_packet_unmarshal(new_udp_packet_marshal(packet)) == packet


def test_udp_packet_marshal_layout():
    packet = UdpPacket(content="eA==", laddr=UdpAddr("127.0.0.1", 5000))
    data = json.loads(new_udp_packet_marshal(packet))
    assert data["l"] == {"IP": "127.0.0.1", "Port": 5000, "Zone": ""}
    assert data["r"] == {}
    assert list(data) == ["c", "l", "r"]


def test_udp_packet_unmarshal_requires_addresses():
    packet = UdpPacket(content="eA==", laddr=UdpAddr("127.0.0.1", 5000))
    with pytest.raises(MessageError):
        udp_packet_unmarshal(new_udp_packet_marshal(packet))
    with pytest.raises(MessageError):
        udp_packet_unmarshal('{"l": {}, "r": {}}')