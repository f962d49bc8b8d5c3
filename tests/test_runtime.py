import json
import threading

import pytest

from hellofn import home, index
from hellofn.runtime import (
    Completion,
    FunctionNotFound,
    FunctionSpec,
    HandlerError,
    InvalidConfig,
    InvalidEntrypoint,
    InvocationTimeout,
    Response,
    call_handler,
    invoke,
    invoke_function,
    load_spec,
)


@pytest.fixture
def fn_home(tmp_path, monkeypatch):
    monkeypatch.setenv(home.HOME_ENV, str(tmp_path))
    return tmp_path


def write_function(name, source, **cfg):
    base = home.function_dir(name)
    base.mkdir(parents=True)
    (base / "index.py").write_text(source, encoding="utf-8")
    home.save_config(name, cfg)
    return load_spec(name)


def test_completion_keeps_first_settlement(capsys):
    done = Completion("t")
    done(None, "first")
    done(ValueError("late"), "second")
    assert done.calls == 2
    assert done.wait(0.1) == "first"
    assert "[t] callback invoked more than once" in capsys.readouterr().err


def test_completion_error_raises_handler_error():
    done = Completion("t")
    done("boom")
    with pytest.raises(HandlerError) as info:
        done.wait(0.1)
    assert info.value.error == "boom"


def test_completion_times_out():
    with pytest.raises(InvocationTimeout):
        Completion("t").wait(0.05)


def test_call_handler_reference_handler():
    assert call_handler(index.handler, None, None) == "hello world"


def test_call_handler_async_completion():
    def handler(event, context, callback):
        threading.Timer(0.05, callback, args=(None, "later")).start()

    assert call_handler(handler, None, None, timeout=2.0) == "later"


def test_call_handler_missing_callback_times_out():
    with pytest.raises(InvocationTimeout):
        call_handler(lambda e, c, cb: None, None, None, timeout=0.05)


def test_call_handler_raising_handler():
    def handler(event, context, callback):
        raise RuntimeError("kaput")

    with pytest.raises(HandlerError) as info:
        call_handler(handler, None, None)
    assert isinstance(info.value.error, RuntimeError)


def test_call_handler_return_style():
    assert call_handler(lambda e, c: {"ok": True}, None, None, style="return") == {"ok": True}


def test_response_from_result():
    assert Response.from_result("hello world") == Response(200, {"Content-Type": "text/plain"}, b"hello world")
    assert Response.from_result({"a": 1}) == Response(200, {"Content-Type": "application/json"}, b'{"a": 1}')
    assert Response.from_result(b"\x00").headers["Content-Type"] == "application/octet-stream"
    assert Response.from_result(None) == Response(204)

    proxy = Response.from_result({"statusCode": 201, "body": {"x": 1}})
    assert (proxy.status, proxy.body) == (201, b'{"x": 1}')
    assert proxy.headers["Content-Type"] == "application/json"


@pytest.mark.parametrize("result", [
    {"statusCode": "oops"},
    {"statusCode": 42},
    {"statusCode": 200, "body": 5},
    {"statusCode": 200, "headers": ["x"]},
])
def test_response_rejects_malformed_proxy_results(result):
    with pytest.raises(ValueError):
        Response.from_result(result)


def test_response_from_error_status_codes():
    assert Response.from_error(FunctionNotFound("x")).status == 404
    assert Response.from_error(InvocationTimeout("x")).status == 504
    assert Response.from_error(HandlerError("x")).status == 500
    assert Response.from_error(InvalidConfig("x")).body == b"Error: x"


def test_invoke_function_reference_handler(fn_home):
    spec = write_function("hello", "def handler(event, context, callback):\n    callback(None, 'hello world')\n")
    assert invoke_function(spec, None, {}) == Response(200, {"Content-Type": "text/plain"}, b"hello world")


def test_invoke_function_malformed_result_is_handler_error(fn_home):
    spec = write_function("bad", "def handler(event, context, callback):\n    callback(None, {'statusCode': 'oops'})\n")
    with pytest.raises(HandlerError):
        invoke_function(spec, None, {})


def test_invoke_function_bad_entrypoint(fn_home):
    spec = write_function("x", "def other(event, context, callback):\n    pass\n")
    with pytest.raises(InvalidEntrypoint):
        invoke_function(FunctionSpec(name="x", entrypoint="index.py"), None, {})
    with pytest.raises(InvalidEntrypoint):
        invoke_function(spec, None, {})


def test_invoke_function_broken_module(fn_home):
    spec = write_function("broken", "def handler(:\n")
    with pytest.raises(InvalidEntrypoint):
        invoke_function(spec, None, {})


def test_load_spec_rejects_bad_config(fn_home):
    with pytest.raises(InvalidConfig):
        write_function("slow", "", timeout="soon")
    with pytest.raises(InvalidConfig):
        write_function("neg", "", timeout=-1)
    with pytest.raises(InvalidConfig):
        write_function("odd", "", style="stream")

    write_function("corrupt", "")
    home.config_path("corrupt").write_text("{not json", encoding="utf-8")
    with pytest.raises(InvalidConfig):
        load_spec("corrupt")

    with pytest.raises(FunctionNotFound):
        load_spec("../escape")


def test_invoke_logs_errors_and_survives_unwritable_log(fn_home, capsys):
    spec = write_function("fails", "def handler(event, context, callback):\n    callback('nope')\n")
    response = invoke(spec, {"n": 1})
    assert response.status == 500
    record = json.loads(home.log_path("fails").read_text(encoding="utf-8"))
    assert record["status"] == 500
    assert record["event"] == {"n": 1}

    spec = write_function("hello", "def handler(event, context, callback):\n    callback(None, 'hello world')\n")
    home.log_path("hello").mkdir(parents=True)
    response = invoke(spec, None)
    assert (response.status, response.body) == (200, b"hello world")
    assert "could not write invocation log" in capsys.readouterr().err
