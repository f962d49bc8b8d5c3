import importlib.util
import json
import sys
import threading
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

from . import home


DEFAULT_TIMEOUT = 3.0
STYLES = ("callback", "return")
PREVIEW_BYTES = 256


class HellofnError(Exception):
    status = 500


class FunctionNotFound(HellofnError):
    status = 404


class InvalidConfig(HellofnError):
    pass


class InvalidEntrypoint(HellofnError):
    pass


class HandlerError(HellofnError):
    """The handler raised, completed its callback with an error, or
    completed with a result that cannot be turned into a response."""

    def __init__(self, error: Any):
        super().__init__(str(error))
        self.error = error


class InvocationTimeout(HellofnError):
    status = 504


@dataclass
class FunctionSpec:
    name: str
    entrypoint: str = "index.py:handler"
    style: str = "callback"
    timeout: float = DEFAULT_TIMEOUT
    logging: bool = True

    @classmethod
    def from_config(cls, name: str, cfg: Any) -> "FunctionSpec":
        if not isinstance(cfg, dict):
            raise InvalidConfig(f"Config for '{name}' must be a JSON object")
        style = cfg.get("style", "callback")
        if style not in STYLES:
            raise InvalidConfig(f"Unsupported handler style for '{name}': {style!r}")
        try:
            timeout = float(cfg.get("timeout", DEFAULT_TIMEOUT))
        except (TypeError, ValueError):
            raise InvalidConfig(f"Invalid timeout for '{name}': {cfg.get('timeout')!r}") from None
        if timeout <= 0:
            raise InvalidConfig(f"Timeout for '{name}' must be positive")
        return cls(
            name=name,
            entrypoint=str(cfg.get("entrypoint", "index.py:handler")),
            style=style,
            timeout=timeout,
            logging=bool(cfg.get("logging", True)),
        )

    def to_config(self) -> Dict[str, Any]:
        return {
            "entrypoint": self.entrypoint,
            "style": self.style,
            "timeout": self.timeout,
            "logging": self.logging,
        }


@dataclass
class Response:
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @classmethod
    def text(cls, status: int, message: str) -> "Response":
        return cls(status, {"Content-Type": "text/plain"}, message.encode())

    @classmethod
    def from_error(cls, exc: HellofnError) -> "Response":
        return cls.text(exc.status, f"Error: {exc}")

    @classmethod
    def from_result(cls, result: Any) -> "Response":
        """Build a response from whatever the handler completed with.

        Lambda proxy dicts ({statusCode, headers, body}) are honored; other
        dicts and lists become JSON, bytes pass through, None is 204 and
        anything else is sent as text, so "hello world" is a 200 text/plain.
        """
        if result is None:
            return cls(204)
        if isinstance(result, (bytes, bytearray)):
            return cls(200, {"Content-Type": "application/octet-stream"}, bytes(result))
        if isinstance(result, dict) and "statusCode" in result:
            return cls._from_proxy(result)
        if isinstance(result, (dict, list)):
            return cls(200, {"Content-Type": "application/json"}, json.dumps(result).encode())
        return cls.text(200, str(result))

    @classmethod
    def _from_proxy(cls, result: Dict[str, Any]) -> "Response":
        status = result["statusCode"]
        if isinstance(status, bool) or not isinstance(status, int) or not 100 <= status <= 599:
            raise ValueError(f"statusCode must be an HTTP status, got {status!r}")
        headers = result.get("headers") or {}
        if not isinstance(headers, dict):
            raise ValueError("headers must be an object")
        headers = {str(k): str(v) for k, v in headers.items()}
        body = result.get("body", b"")
        if isinstance(body, (dict, list)):
            headers.setdefault("Content-Type", "application/json")
            body = json.dumps(body).encode()
        elif isinstance(body, str):
            body = body.encode()
        elif isinstance(body, (bytes, bytearray)):
            body = bytes(body)
        else:
            raise ValueError(f"body must be a string, bytes or JSON value, got {type(body).__name__}")
        return cls(status, headers, body)


class Completion:
    """Single-shot channel handed to callback-style handlers as ``callback``.

    The first call settles it; later calls are ignored.
    """

    def __init__(self, name: str = "fn"):
        self.name = name
        self.calls = 0
        self._settled = threading.Event()
        self._lock = threading.Lock()
        self._error: Any = None
        self._result: Any = None

    def __call__(self, error: Any = None, result: Any = None) -> None:
        with self._lock:
            self.calls += 1
            if self._settled.is_set():
                print(f"[{self.name}] callback invoked more than once; ignoring", file=sys.stderr)
                return
            self._error = error
            self._result = result
            self._settled.set()

    def wait(self, timeout: Optional[float] = None) -> Any:
        if not self._settled.wait(timeout):
            raise InvocationTimeout(f"Task timed out after {timeout:.2f} seconds")
        if self._error is not None:
            raise HandlerError(self._error)
        return self._result


_HANDLER_LOCK = threading.Lock()
_HANDLERS: Dict[str, Tuple[Tuple[int, int], Callable]] = {}


def load_spec(name: str) -> FunctionSpec:
    try:
        path = home.config_path(name)
    except ValueError as e:
        raise FunctionNotFound(str(e)) from None
    if not path.exists():
        raise FunctionNotFound(f"Function '{name}' does not exist")
    try:
        cfg = home.load_config(name)
    except ValueError as e:
        raise InvalidConfig(f"Cannot parse {path}: {e}") from e
    return FunctionSpec.from_config(name, cfg)


def _import_handler(base: Path, entrypoint: str) -> Callable:
    module_file, _, attr = entrypoint.partition(":")
    if not module_file or not attr:
        raise InvalidEntrypoint(f"Invalid entrypoint '{entrypoint}'; expected 'module.py:handler'")
    path = base / module_file
    if not path.is_file():
        raise InvalidEntrypoint(f"Handler module not found: {path}")
    st = path.stat()
    stamp = (st.st_mtime_ns, st.st_size)
    key = str(path)
    with _HANDLER_LOCK:
        cached = _HANDLERS.get(key)
        if cached and cached[0] == stamp:
            return cached[1]
        mod_spec = importlib.util.spec_from_file_location(f"hellofn_fn_{abs(hash(key))}", key)
        if mod_spec is None or mod_spec.loader is None:
            raise InvalidEntrypoint(f"Cannot load module from {path}")
        mod = importlib.util.module_from_spec(mod_spec)
        sys.modules[mod_spec.name] = mod
        try:
            mod_spec.loader.exec_module(mod)  # type: ignore
        except Exception as e:
            sys.modules.pop(mod_spec.name, None)
            raise InvalidEntrypoint(f"Cannot import {path}: {e}") from e
        handler = getattr(mod, attr, None)
        if not callable(handler):
            raise InvalidEntrypoint(f"{module_file} has no callable '{attr}'")
        _HANDLERS[key] = (stamp, handler)
        return handler


def build_context(spec: FunctionSpec) -> Dict[str, Any]:
    return {
        "function": spec.name,
        "requestId": str(uuid.uuid4()),
        "timeout": spec.timeout,
    }


def call_handler(handler: Callable, event: Any, context: Any, style: str = "callback",
                 timeout: float = DEFAULT_TIMEOUT, name: str = "fn") -> Any:
    """Run one handler invocation and return its raw result.

    Raises HandlerError for a raised exception or a callback error and
    InvocationTimeout when a callback-style handler never completes.
    """
    if style == "return":
        try:
            return handler(event, context)
        except Exception as e:
            raise HandlerError(e) from e
    completion = Completion(name)
    try:
        handler(event, context, completion)
    except Exception as e:
        # an exception after the callback settled still fails the invocation
        raise HandlerError(e) from e
    return completion.wait(timeout)


def invoke_function(spec: FunctionSpec, event: Any, context: Dict[str, Any]) -> Response:
    handler = _import_handler(home.function_dir(spec.name), spec.entrypoint)
    result = call_handler(handler, event, context, style=spec.style, timeout=spec.timeout, name=spec.name)
    try:
        return Response.from_result(result)
    except (TypeError, ValueError) as e:
        raise HandlerError(f"Invalid result: {e}") from e


def invoke(spec: FunctionSpec, event: Any) -> Response:
    """Invoke once, turning any harness error into an error response and
    recording the outcome in the function's log."""
    context = build_context(spec)
    try:
        response = invoke_function(spec, event, context)
    except HellofnError as e:
        response = Response.from_error(e)
    record_invocation(spec, event, context, response)
    return response


def record_invocation(spec: FunctionSpec, event: Any, context: Dict[str, Any], response: Response) -> None:
    if not spec.logging:
        return
    record = {
        "event": event,
        "context": context,
        "status": response.status,
        "headers": response.headers,
        "bodyPreview": response.body[:PREVIEW_BYTES].decode(errors="ignore"),
    }
    path = home.log_path(spec.name)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(record, sort_keys=True, default=str) + "\n")
    except OSError as e:
        print(f"[{spec.name}] could not write invocation log {path}: {e}", file=sys.stderr)
