from __future__ import annotations

import argparse
import json
import sys

import structlog
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

from upmon.heartbeat import HeartbeatOutcome
from upmon.logging_setup import configure_logging
from upmon.probes import record_cron_start
from upmon.services import UpmonServices, build_services
from upmon.settings import load_settings


logger = structlog.get_logger(__name__)


def run_heartbeat_loop(services: UpmonServices, *, interval_seconds: int) -> None:
    scheduler = BlockingScheduler()
    # max_instances=1: a slow tick is skipped rather than overlapped.
    scheduler.add_job(
        services.heartbeat.tick,
        trigger=IntervalTrigger(seconds=max(1, int(interval_seconds))),
        id="upmon-heartbeat",
        name="Send UptimeRobot heartbeat",
        max_instances=1,
        coalesce=True,
    )
    logger.info("Heartbeat scheduler started", interval_seconds=interval_seconds)
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Heartbeat scheduler stopped")


def _cmd_heartbeat(services: UpmonServices, args: argparse.Namespace) -> int:
    if args.loop:
        services.heartbeat.tick()
        run_heartbeat_loop(services, interval_seconds=args.interval or services.settings.heartbeat_interval_seconds)
        return 0
    outcome = services.heartbeat.tick()
    return 0 if outcome not in {HeartbeatOutcome.PING_FAILED, HeartbeatOutcome.UNEXPECTED_STATUS} else 1


def _cmd_check(services: UpmonServices, args: argparse.Namespace) -> int:
    errors = services.aggregator.run_enabled_checks()
    print(json.dumps({"ok": not errors, "errors": errors}, ensure_ascii=False, indent=2))
    return 0 if not errors else 1


def _cmd_cron_start(services: UpmonServices, args: argparse.Namespace) -> int:
    ts = record_cron_start(services.store)
    logger.info("Recorded cron start", ts=ts)
    return 0


def _cmd_serve(services: UpmonServices, args: argparse.Namespace) -> int:
    import uvicorn

    from upmon.app import create_app

    uvicorn.run(create_app(services=services), host=args.host, port=args.port, log_level="info")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="upmon", description="UptimeRobot monitor sync and site health checks")
    parser.add_argument("--config", default=None, help="Path to upmon YAML settings")
    sub = parser.add_subparsers(dest="command", required=True)

    hb = sub.add_parser("heartbeat", help="Run health checks and ping the heartbeat URL if healthy")
    hb.add_argument("--loop", action="store_true", help="Keep running on an interval")
    hb.add_argument("--interval", type=int, default=None, help="Seconds between ticks (with --loop)")
    hb.set_defaults(func=_cmd_heartbeat)

    chk = sub.add_parser("check", help="Run the enabled health checks and print the result")
    chk.set_defaults(func=_cmd_check)

    cron = sub.add_parser("cron-start", help="Record that the site's scheduled jobs just started")
    cron.set_defaults(func=_cmd_cron_start)

    srv = sub.add_parser("serve", help="Serve the check endpoint and admin API")
    srv.add_argument("--host", default="0.0.0.0")
    srv.add_argument("--port", type=int, default=8112)
    srv.set_defaults(func=_cmd_serve)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings(args.config)
    configure_logging(settings.log_level)
    services = build_services(settings)
    return int(args.func(services, args))


if __name__ == "__main__":
    sys.exit(main())
