import argparse
import asyncio
import json
import logging
import sys
import time
from datetime import timedelta
from typing import Any, List, Optional

from core.entities import Keyword, to_dict
from core.errors import MonitoringError
from core.schemas import TrendAnalysisOptions
from core.timeutils import parse_timestamp
from ingestion.source_factory import create_adapters_from_config
from processing.trends import TrendAnalysisService
from services.config import Config, load_config
from services.database import Database
from services.logging import setup_logging
from services.monitoring import MonitoringService
from services.rate_limiter import RateLimitConfig, RateLimiter

logger = logging.getLogger(__name__)


def _print(value: Any) -> None:
    print(json.dumps(to_dict(value), indent=2, default=str))


def build_rate_limiter(config: Config) -> RateLimiter:
    limits = {
        p.name: RateLimitConfig(requests_per_hour=p.requests_per_hour, burst_limit=p.burst_limit)
        for p in config.platforms
        if p.requests_per_hour
    }
    return RateLimiter(limits)


def build_monitoring_service(config: Config, db: Database) -> MonitoringService:
    return MonitoringService(
        db=db,
        adapters=create_adapters_from_config(config),
        rate_limiter=build_rate_limiter(config),
        max_concurrency=config.monitoring.max_concurrency,
        search_limit=config.monitoring.search_limit,
        lookback_hours=config.monitoring.lookback_hours,
    )


def build_trend_service(config: Config, db: Database) -> TrendAnalysisService:
    return TrendAnalysisService(
        db,
        weights=config.trends.weights,
        default_window=timedelta(days=config.trends.window_days),
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="conversation-monitor", description="Multi-platform conversation monitoring")
    parser.add_argument("--config", help="Path to config.yml (default: resources/config.yml)")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create database tables")

    keyword = sub.add_parser("keyword", help="Create or update a tracked keyword")
    keyword.add_argument("keyword_id")
    keyword.add_argument("term")
    keyword.add_argument("--tenant", required=True)
    keyword.add_argument("--platforms", nargs="+", default=[])
    keyword.add_argument("--frequency", choices=["realtime", "hourly", "daily"], default="hourly")

    for name, help_text in (("start", "Start monitoring a keyword"), ("stop", "Stop monitoring a keyword")):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("keyword_id")
        cmd.add_argument("--tenant", required=True)

    scan = sub.add_parser("scan", help="Scan a keyword now")
    scan.add_argument("keyword_id")
    scan.add_argument("--tenant", required=True)
    scan.add_argument("--platforms", nargs="+")

    run_due = sub.add_parser("run-due", help="Scan every monitoring job that is due")
    run_due.add_argument("--limit", type=int)

    status = sub.add_parser("status", help="Show monitoring status for a tenant")
    status.add_argument("--tenant", required=True)

    trends = sub.add_parser("trends", help="Analyze trends for a tenant")
    trends.add_argument("--tenant", required=True)
    trends.add_argument("--start", help="ISO-8601 start of the window")
    trends.add_argument("--end", help="ISO-8601 end of the window")
    trends.add_argument("--platforms", nargs="+")
    trends.add_argument("--keywords", nargs="+")
    trends.add_argument("--min-conversations", type=int)
    trends.add_argument("--min-relevance", type=float)
    trends.add_argument("--max-results", type=int)

    validate = sub.add_parser("validate", help="Check every configured adapter")
    validate.add_argument("--platforms", nargs="+")

    return parser


async def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    start_time = time.perf_counter()

    config = load_config(args.config)
    setup_logging(config.LOG_LEVEL, json_format=config.LOG_JSON)

    db = Database(config.DATABASE_PATH)

    try:
        if args.command == "init-db":
            await db.init_tables()
            _print({"database": config.DATABASE_PATH, "initialized": True})

        elif args.command == "keyword":
            keyword = Keyword(
                id=args.keyword_id,
                tenant_id=args.tenant,
                term=args.term,
                platforms=args.platforms,
                monitoring_frequency=args.frequency,
            )
            await db.upsert_keyword(keyword)
            _print(keyword)

        elif args.command == "start":
            _print(await build_monitoring_service(config, db).start_monitoring(args.keyword_id, args.tenant))

        elif args.command == "stop":
            await build_monitoring_service(config, db).stop_monitoring(args.keyword_id, args.tenant)
            _print({"keyword_id": args.keyword_id, "is_active": False})

        elif args.command == "scan":
            service = build_monitoring_service(config, db)
            _print(await service.scan_keyword(args.keyword_id, args.tenant, args.platforms))

        elif args.command == "run-due":
            service = build_monitoring_service(config, db)
            _print(await service.run_due_jobs(args.limit or config.monitoring.due_jobs_limit))

        elif args.command == "status":
            _print(await build_monitoring_service(config, db).get_monitoring_status(args.tenant))

        elif args.command == "trends":
            options = TrendAnalysisOptions(
                start=parse_timestamp(args.start) if args.start else None,
                end=parse_timestamp(args.end) if args.end else None,
                platforms=args.platforms,
                keywords=args.keywords,
                min_conversation_count=args.min_conversations or config.trends.min_conversation_count,
                min_relevance_score=(
                    args.min_relevance if args.min_relevance is not None else config.trends.min_relevance_score
                ),
                max_results=args.max_results or config.trends.max_results,
            )
            _print(await build_trend_service(config, db).analyze_trends(args.tenant, options))

        elif args.command == "validate":
            adapters = create_adapters_from_config(config)
            names = args.platforms or list(adapters)
            results = {}
            for name in names:
                adapter = adapters.get(name)
                results[name] = bool(adapter) and await adapter.validate_configuration()
            _print(results)

    except MonitoringError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1

    logger.info(f"Total time: {time.perf_counter() - start_time:.2f}s")
    return 0


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
