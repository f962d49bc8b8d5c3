import argparse
import json
import shutil
import sys
from pathlib import Path
from typing import Optional

from . import __version__, home
from .runtime import DEFAULT_TIMEOUT, STYLES, FunctionNotFound, FunctionSpec, HellofnError, invoke, load_spec
from .server import serve


CALLBACK_HANDLER = Path(__file__).parent / "index.py"
RETURN_HANDLER = '''def handler(event, context):
    return "hello world"
'''


def cmd_create(args: argparse.Namespace) -> int:
    if not home.valid_name(args.name):
        print(f"Invalid function name {args.name!r}: use letters, digits, '.', '_' or '-'", file=sys.stderr)
        return 2
    base = home.function_dir(args.name)
    if base.exists():
        print(f"Function '{args.name}' already exists at {base}", file=sys.stderr)
        return 2
    if args.timeout <= 0:
        print("--timeout must be positive", file=sys.stderr)
        return 2
    base.mkdir(parents=True)
    if args.style == "callback":
        shutil.copy2(CALLBACK_HANDLER, base / "index.py")
    else:
        (base / "index.py").write_text(RETURN_HANDLER, encoding="utf-8")

    spec = FunctionSpec(args.name, style=args.style, timeout=args.timeout, logging=not args.no_logs)
    home.save_config(spec.name, spec.to_config())
    print(f"Created {spec.style}-style function '{spec.name}' in {base}")
    print(f"  hellofn invoke {spec.name}")
    return 0


def cmd_invoke(args: argparse.Namespace) -> int:
    try:
        event = json.loads(args.event) if args.event is not None else None
    except ValueError as e:
        print(f"Invalid --event JSON: {e}", file=sys.stderr)
        return 2
    try:
        spec = load_spec(args.name)
    except FunctionNotFound as e:
        print(str(e), file=sys.stderr)
        return 2
    except HellofnError as e:
        print(f"Cannot load '{args.name}': {e}", file=sys.stderr)
        return 1

    response = invoke(spec, event)
    if response.status >= 400:
        print(f"Invocation of '{spec.name}' failed ({response.status}): {response.body.decode(errors='replace')}",
              file=sys.stderr)
        return 1
    if args.verbose:
        print(f"status={response.status} headers={json.dumps(response.headers, sort_keys=True)}")
    print(response.body.decode(errors="replace"))
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    serve(host=args.host, port=args.port, quiet=args.quiet)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hellofn", description="Run callback-style functions locally")
    parser.add_argument("--version", action="version", version=f"hellofn {__version__}")
    sub = parser.add_subparsers(dest="cmd", required=True)

    create = sub.add_parser("create", help="Create a function from the hello world handler")
    create.add_argument("name")
    create.add_argument("--style", choices=STYLES, default="callback",
                        help="callback: handler(event, context, callback); return: handler(event, context)")
    create.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT,
                        help="Seconds to wait for the callback (default: %(default)s)")
    create.add_argument("--no-logs", action="store_true", help="Do not record invocations")
    create.set_defaults(func=cmd_create)

    inv = sub.add_parser("invoke", help="Invoke a function once and print its result")
    inv.add_argument("name")
    inv.add_argument("--event", help="Event as a JSON document (default: null)")
    inv.add_argument("-v", "--verbose", action="store_true", help="Also print status and headers")
    inv.set_defaults(func=cmd_invoke)

    srv = sub.add_parser("serve", help="Serve functions over HTTP at /fn/<name>")
    srv.add_argument("--host", default="127.0.0.1")
    srv.add_argument("--port", type=int, default=8080)
    srv.add_argument("--quiet", action="store_true", help="Suppress HTTP access logs")
    srv.set_defaults(func=cmd_serve)

    return parser


def main(argv: Optional[list] = None) -> int:
    args = build_parser().parse_args(argv)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
