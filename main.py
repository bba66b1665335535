"""
Entrypoint: load .env, init logging, dispatch product page fetches and print
one JSON result per URL
"""

import argparse
import json
import threading
from pathlib import Path

import structlog
from dotenv import load_dotenv

from shieldfetch.config import config
from shieldfetch.dispatcher import WorkerDispatcher
from shieldfetch.log import setup_logging
from shieldfetch.models import FetchTask, Platform
from shieldfetch.pool import get_pool, shutdown_pool


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Fetch product pages and report anti-bot blocking")
    parser.add_argument("urls", nargs="+", help="product page URLs")
    parser.add_argument("--platform", choices=[p.value for p in Platform], required=True)
    parser.add_argument("--workers", type=int, default=None, help="worker threads (default: from config/CPU count)")
    parser.add_argument("--max-retries", type=int, default=config.get('retry', 'max_retries', default=3))
    parser.add_argument("--body-file", default=None, help="classify this saved HTML instead of fetching")
    return parser.parse_args(argv)


def main(argv=None):
    """Run every URL through the dispatcher and wait for all results"""
    load_dotenv()
    setup_logging()
    logger = structlog.get_logger(__name__)

    args = parse_args(argv)
    body = Path(args.body_file).read_text(encoding="utf-8") if args.body_file else None

    remaining = len(args.urls)
    lock = threading.Lock()
    done = threading.Event()

    def on_result(result):
        nonlocal remaining
        print(json.dumps(result.as_dict(), ensure_ascii=False, indent=2))
        with lock:
            remaining -= 1
            if remaining == 0:
                done.set()

    pool = get_pool()
    dispatcher = WorkerDispatcher(on_result, pool_size=args.workers, connection_pool=pool)

    try:
        for index, url in enumerate(args.urls):
            dispatcher.submit(FetchTask(
                target_id=f"cli-{index + 1}",
                url=url,
                platform=Platform(args.platform),
                max_retries=args.max_retries,
                response_body=body,
            ))
        while not done.wait(1.0):
            pass
    except KeyboardInterrupt:
        logger.info("interrupted_by_user")
    finally:
        dispatcher.shutdown()
        dispatcher.stats_tracker.log_summary()
        print(json.dumps({"pool": dispatcher.pool_stats(), "requests": dispatcher.request_stats()}, indent=2))
        shutdown_pool()


if __name__ == "__main__":
    main()
