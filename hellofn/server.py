import re
import sys
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Dict
from urllib.parse import parse_qs, urlparse

from . import __version__
from .runtime import HellofnError, Response, invoke, load_spec


ROUTE = re.compile(r"^/fn/([^/]+)/?$")


def request_event(method: str, url: str, headers: Dict[str, str], body: bytes) -> Dict[str, Any]:
    parsed = urlparse(url)
    return {
        "method": method,
        "path": parsed.path,
        "query": {k: v[0] if len(v) == 1 else v for k, v in parse_qs(parsed.query).items()},
        "headers": headers,
        "body": body.decode(errors="ignore"),
    }


class InvokeHandler(BaseHTTPRequestHandler):
    """Maps each request on /fn/<name> to one invocation of that function."""

    server_version = f"hellofn/{__version__}"

    def log_message(self, format: str, *args) -> None:
        if not getattr(self.server, "quiet", False):
            super().log_message(format, *args)

    def _respond(self, response: Response) -> None:
        self.send_response(response.status)
        for key, value in response.headers.items():
            self.send_header(key, value)
        self.send_header("Content-Length", str(len(response.body)))
        self.end_headers()
        self.wfile.write(response.body)

    def _dispatch(self) -> None:
        match = ROUTE.match(urlparse(self.path).path)
        if not match:
            self._respond(Response.text(404, "Not Found"))
            return
        try:
            length = int(self.headers.get("Content-Length") or 0)
            event = request_event(self.command, self.path, dict(self.headers.items()),
                                  self.rfile.read(length) if length > 0 else b"")
            response = invoke(load_spec(match.group(1)), event)
        except HellofnError as e:
            response = Response.from_error(e)
        except Exception as e:
            print(f"[hellofn] unexpected error serving {self.path}: {e!r}", file=sys.stderr)
            response = Response.text(500, "Error: internal error")
        self._respond(response)

    do_GET = do_POST = do_PUT = do_DELETE = _dispatch


def make_server(host: str = "127.0.0.1", port: int = 8080, quiet: bool = False) -> ThreadingHTTPServer:
    httpd = ThreadingHTTPServer((host, port), InvokeHandler)
    httpd.daemon_threads = True
    httpd.quiet = quiet  # type: ignore[attr-defined]
    return httpd


def serve(host: str = "127.0.0.1", port: int = 8080, quiet: bool = False) -> None:
    httpd = make_server(host, port, quiet)
    print(f"hellofn serving /fn/<name> on http://{host}:{port}", flush=True)
    try:
        httpd.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        httpd.server_close()
