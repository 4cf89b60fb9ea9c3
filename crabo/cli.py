"""Minimal CLI entrypoint for crabo."""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Any, Sequence
from uuid import uuid4

import jsonschema
import requests

from connectors import BiliBiliApiClient, YouTubeApiClient
from core.config import LEGACY_USER_AGENT, CraboConfig
from core.pipeline import SnapshotPipeline, SnapshotService
from core.structured_logging import emit_json_event
from crabo import __version__
from fetcher import HttpFetchStage, RobotsPolicyResolver, SiteHealthTracker


PROJECT_ROOT = Path(__file__).resolve().parent.parent
SCHEMAS_DIR = PROJECT_ROOT / "schemas"
SCHEMA_FILES = ("snapshot_response.schema.json", "error_response.schema.json")


def _emit_cli_event(
    event_type: str,
    *,
    request_id: str,
    command: str,
    **payload: Any,
) -> str:
    """Emit one structured CLI event line with standard fields."""
    return emit_json_event(
        event_type=event_type,
        request_id=request_id,
        command=command,
        **payload,
    )


def build_service(
    config: CraboConfig,
    session: requests.Session | None = None,
) -> SnapshotService:
    """Wire default collaborators around one shared HTTP session."""
    http_session = session or requests.Session()
    health = SiteHealthTracker(config)
    robots = RobotsPolicyResolver(config, session=http_session, health=health)
    pipeline = SnapshotPipeline(
        fetcher=HttpFetchStage(config, session=http_session),
        robots=robots,
        health=health,
        video_clients=[
            YouTubeApiClient(config.youtube_api_key, session=http_session, config=config),
            BiliBiliApiClient(session=http_session, config=config),
        ],
        config=config,
    )
    return SnapshotService(pipeline, config=config)


def _config_from_args(args: argparse.Namespace) -> CraboConfig:
    """Environment config with CLI flags layered on top."""
    user_agent = LEGACY_USER_AGENT if args.legacy_user_agent else args.user_agent
    return CraboConfig.from_env(
        agent_token=args.agent_token,
        user_agent_string=user_agent,
        robots_cache_ttl=args.robots_cache_ttl,
        fetch_timeout=args.fetch_timeout,
        max_document_size=args.max_document_size,
        max_concurrency=args.max_concurrency,
        youtube_api_key=args.youtube_api_key,
    )


def _validate_schema_file(path: Path) -> None:
    """Validate that a JSON schema file is well-formed draft-07 with required top-level keys."""
    data = json.loads(path.read_text(encoding="utf-8"))
    required_keys = {"$schema", "type", "properties", "required"}
    missing = required_keys.difference(data)
    if missing:
        missing_str = ", ".join(sorted(missing))
        raise ValueError(f"{path.name} missing required schema keys: {missing_str}")
    try:
        jsonschema.Draft7Validator.check_schema(data)
    except jsonschema.SchemaError as exc:
        raise ValueError(f"{path.name} is not a valid draft-07 schema: {exc.message}") from exc


def _cmd_validate_schemas(_: argparse.Namespace) -> int:
    """Validate schema files for basic structural correctness."""
    paths = [SCHEMAS_DIR / name for name in SCHEMA_FILES]
    for path in paths:
        if not path.exists():
            raise FileNotFoundError(f"Schema file not found: {path}")
        _validate_schema_file(path)
    _emit_cli_event(
        "cli_validate_schemas_completed",
        request_id=str(uuid4()),
        command="validate-schemas",
        schema_files=[str(path) for path in paths],
    )
    return 0


def _cmd_snap(args: argparse.Namespace) -> int:
    """Snapshot each URL and print one JSON response line per unique URL."""
    request_id = str(uuid4())
    service = build_service(_config_from_args(args))
    results = service.snap_many(args.urls, bypass_cache=args.bypass_cache)

    for result in results:
        print(json.dumps(result.to_response(), ensure_ascii=False, sort_keys=True))

    failed = sum(1 for result in results if not result.ok)
    _emit_cli_event(
        "cli_snap_completed",
        request_id=request_id,
        command="snap",
        requested=len(args.urls),
        unique=len(results),
        succeeded=len(results) - failed,
        failed=failed,
    )
    return 0 if failed == 0 else 1


def _cmd_robots(args: argparse.Namespace) -> int:
    """Print the robots decision for one URL and the configured agent token."""
    request_id = str(uuid4())
    config = _config_from_args(args)
    resolver = RobotsPolicyResolver(config)
    decision = resolver.evaluate(args.url)
    _emit_cli_event(
        "cli_robots_completed",
        request_id=request_id,
        command="robots",
        url=args.url,
        verdict=decision.verdict.value,
        host=decision.host,
        path=decision.path,
        agent_token=decision.agent_token,
        robots_url=decision.robots_url,
        fallback=decision.fallback,
        matched_pattern=decision.matched_pattern,
    )
    return 0 if decision.allowed else 1


def _add_config_arguments(parser: argparse.ArgumentParser) -> None:
    """Flags overriding CRABO_* environment settings."""
    parser.add_argument("--agent-token", help="Token matched in robots.txt and robots meta tags")
    identity = parser.add_mutually_exclusive_group()
    identity.add_argument("--user-agent", help="Outbound User-Agent header")
    identity.add_argument(
        "--legacy-user-agent",
        action="store_true",
        help=f"Send the legacy '{LEGACY_USER_AGENT}' User-Agent",
    )
    parser.add_argument("--robots-cache-ttl", type=float, help="Seconds a robots.txt policy is cached")
    parser.add_argument("--fetch-timeout", type=float, help="Per-request timeout in seconds")
    parser.add_argument("--max-document-size", type=int, help="Page body cap in bytes")
    parser.add_argument("--max-concurrency", type=int, help="Concurrent snapshot workers")
    parser.add_argument("--youtube-api-key", help="YouTube Data API v3 key")


def build_parser() -> argparse.ArgumentParser:
    """Create argument parser for the crabo CLI."""
    parser = argparse.ArgumentParser(
        prog="crabo",
        description="Link snapshot service with robots.txt, meta directive, and site health checks",
    )
    parser.add_argument("--version", action="version", version=f"crabo {__version__}")

    subparsers = parser.add_subparsers(dest="command")

    snap_parser = subparsers.add_parser(
        "snap",
        help="Produce snapshots for one or more URLs",
    )
    snap_parser.add_argument("urls", nargs="+", help="URLs to snapshot")
    snap_parser.add_argument(
        "--bypass-cache",
        action="store_true",
        help="Ignore cached snapshots (results still refresh the cache)",
    )
    _add_config_arguments(snap_parser)
    snap_parser.set_defaults(func=_cmd_snap)

    robots_parser = subparsers.add_parser(
        "robots",
        help="Show the robots.txt decision for a URL",
    )
    robots_parser.add_argument("url", help="URL to check")
    _add_config_arguments(robots_parser)
    robots_parser.set_defaults(func=_cmd_robots)

    validate_parser = subparsers.add_parser(
        "validate-schemas",
        help="Validate JSON schemas used by contract tests",
    )
    validate_parser.set_defaults(func=_cmd_validate_schemas)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Execute CLI and return process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 0

    try:
        return int(args.func(args))
    except Exception as exc:
        _emit_cli_event(
            "cli_error",
            request_id=str(uuid4()),
            command=str(getattr(args, "command", "unknown")),
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return 1


def cli() -> None:
    """Console-script entrypoint."""
    raise SystemExit(main())


if __name__ == "__main__":
    raise SystemExit(main())
