"""
Single entry point: serve, init-db, reload-config, health, get, set, version.
"""

import argparse
import asyncio
import json
import sys
import urllib.error
import urllib.request

from dbconfig import __version__


def cmd_serve(args: argparse.Namespace) -> int:
    """Start the FastAPI server (Uvicorn). Host/port from config/app.yaml or args."""
    from dbconfig.config.loader import get_app_settings
    settings = get_app_settings()
    host = args.host if args.host is not None else settings.host
    port = args.port if args.port is not None else settings.port
    import errno
    import uvicorn
    try:
        uvicorn.run(
            "dbconfig.main:app",
            host=host,
            port=port,
            reload=args.reload,
        )
    except OSError as e:
        if e.errno == errno.EADDRINUSE:
            print(f"Port {port} is already in use. Use another port: dbconfig serve --port {port + 1}", file=sys.stderr)
        raise
    return 0


async def _init_db() -> None:
    from dbconfig.config.loader import get_app_settings
    from dbconfig.storage.db import create_engine, init_db
    engine = create_engine(get_app_settings().database_url)
    try:
        await init_db(engine)
    finally:
        await engine.dispose()


def cmd_init_db(_: argparse.Namespace) -> int:
    """Create the configuration tables."""
    asyncio.run(_init_db())
    print("DB and tables ready.")
    return 0


def _request(url: str, method: str = "GET", body: object | None = None, timeout: float = 10) -> tuple[int, str]:
    data = None
    headers = {}
    if body is not None:
        data = json.dumps(body).encode()
        headers["Content-Type"] = "application/json"
    req = urllib.request.Request(url, data=data, method=method, headers=headers)
    try:
        with urllib.request.urlopen(req, timeout=timeout) as r:
            return r.status, r.read().decode()
    except urllib.error.HTTPError as e:
        return e.code, e.read().decode()


def cmd_reload_config(args: argparse.Namespace) -> int:
    """Trigger configuration reload (POST /admin/reload)."""
    status, text = _request(f"{args.base_url.rstrip('/')}/admin/reload", method="POST")
    print(text)
    return 0 if status == 200 else 1


def cmd_health(args: argparse.Namespace) -> int:
    """Check /health (readiness)."""
    status, text = _request(f"{args.base_url.rstrip('/')}/health", timeout=5)
    print(text)
    return 0 if status == 200 else 1


def cmd_get(args: argparse.Namespace) -> int:
    """Print current configuration (GET /api/config); with KEY, print that value only."""
    status, text = _request(f"{args.base_url.rstrip('/')}/api/config")
    if status != 200:
        print(text, file=sys.stderr)
        return 1
    data = json.loads(text)
    if args.key:
        if args.key not in data:
            print(f"{args.key}: not set", file=sys.stderr)
            return 1
        print(data[args.key])
        return 0
    print(json.dumps(data, indent=2, ensure_ascii=False, sort_keys=True))
    return 0


def parse_assignments(pairs: list[str]) -> dict[str, str]:
    """Parse KEY=VALUE arguments; the value may be empty or contain '='."""
    out: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"expected KEY=VALUE, got {pair!r}")
        out[key] = value
    return out


def cmd_set(args: argparse.Namespace) -> int:
    """Write KEY=VALUE pairs as one batch (POST /api/config)."""
    try:
        batch = parse_assignments(args.pairs)
    except ValueError as e:
        print(str(e), file=sys.stderr)
        return 2
    status, text = _request(f"{args.base_url.rstrip('/')}/api/config", method="POST", body=batch)
    print(text)
    return 0 if status == 200 and json.loads(text) is True else 1


def cmd_version(_: argparse.Namespace) -> int:
    """Print version."""
    print(__version__)
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(
        prog="dbconfig",
        description="Database-backed configuration service: serve, init-db, reload-config, health, get, set, version.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p_serve = sub.add_parser("serve", help="Start the API server (Uvicorn)")
    p_serve.add_argument("--host", default=None, help="Bind host (default: from config/app.yaml)")
    p_serve.add_argument("--port", type=int, default=None, help="Bind port (default: from config/app.yaml)")
    p_serve.add_argument("--reload", action="store_true", help="Enable auto-reload (dev)")
    p_serve.set_defaults(func=cmd_serve)

    p_init = sub.add_parser("init-db", help="Create configuration tables")
    p_init.set_defaults(func=cmd_init_db)

    p_reload = sub.add_parser("reload-config", help="POST /admin/reload (reload configuration now)")
    p_reload.add_argument("--base-url", default="http://localhost:8000", help="API base URL")
    p_reload.set_defaults(func=cmd_reload_config)

    p_health = sub.add_parser("health", help="GET /health (readiness check)")
    p_health.add_argument("--base-url", default="http://localhost:8000", help="API base URL")
    p_health.set_defaults(func=cmd_health)

    p_get = sub.add_parser("get", help="GET /api/config (current configuration)")
    p_get.add_argument("key", nargs="?", default=None, help="Print only this key")
    p_get.add_argument("--base-url", default="http://localhost:8000", help="API base URL")
    p_get.set_defaults(func=cmd_get)

    p_set = sub.add_parser("set", help="POST /api/config with KEY=VALUE pairs")
    p_set.add_argument("pairs", nargs="+", metavar="KEY=VALUE", help="Entries to write in one batch")
    p_set.add_argument("--base-url", default="http://localhost:8000", help="API base URL")
    p_set.set_defaults(func=cmd_set)

    p_version = sub.add_parser("version", help="Print version")
    p_version.set_defaults(func=cmd_version)

    args = parser.parse_args()
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
