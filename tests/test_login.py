import platform

import pytest

from xfrpkit.login import LoginConfig, LoginResponse, new_login


def test_new_login_defaults():
    login = new_login("run-id-a")
    assert login.run_id == "run-id-a"
    assert login.version == "0.10.0"
    assert login.pool_count == 1
    assert login.logged is False
    assert login.timestamp == 0
    assert login.hostname is None
    assert login.privilege_key is None


def test_new_login_reports_platform():
    login = new_login("run-id-a")
    info = platform.uname()
    assert (login.os, login.arch) == (info.system, info.machine)


def test_successful_response_updates_run_id():
    login = new_login("run-id-a")
    ok = login.check_response(LoginResponse(version="0.10.0", run_id="run-id-b"))
    assert ok is True
    assert login.logged is True
    assert login.run_id == "run-id-b"


@pytest.mark.parametrize("run_id", [None, "", "x"])
def test_failed_response_keeps_run_id(run_id):
    login = new_login("run-id-a")
    login.logged = True
    ok = login.check_response(LoginResponse(run_id=run_id, error="denied"))
    assert ok is False
    assert login.logged is False
    assert login.run_id == "run-id-a"


def test_failure_after_success_resets_logged():
    login = LoginConfig(run_id="run-id-a")
    assert login.check_response(LoginResponse(run_id="run-id-b")) is True
    assert login.check_response(LoginResponse(run_id=None)) is False
    assert login.run_id == "run-id-b"