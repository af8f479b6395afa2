#!/usr/bin/env python
import sys
import asyncio
import logging
import argparse
from datetime import datetime
from typing import Dict, Any, List, Optional

from config import get_config
from db import SentinelDatabase
from scripts.keyword_scanner.config_resolver import resolve_config
from scripts.keyword_scanner.errors import MisconfiguredCredential, SentinelError
from scripts.keyword_scanner.models import RunStatus
from scripts.keyword_scanner.scanner import build_scanner

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CREDENTIALS = 2


def configure_logging(log_file: str, debug: bool = False):
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )


class SentinelPipelineRunner:
    """Single trigger for the Sentinel pipeline: one tick of the schedule, one keyword, or one event"""

    def __init__(self, args: argparse.Namespace, gateway=None):
        self.args = args
        self.start_time = datetime.now()
        self.app_config = get_config()
        self.config = resolve_config(args, base_config=self.app_config.raw)
        self.gateway = gateway or SentinelDatabase(self.app_config)
        self.stats: Dict[str, Any] = {
            'keywords': 0,
            'new_records': 0,
            'errors': []
        }

    def log_effective_params(self):
        """Log the effective parameters after CLI + config merge"""
        scanner = self.config['keyword_scanner']
        logger.info("🔧 EFFECTIVE PARAMETERS:")
        logger.info(f"   Mode: {self.args.mode}")
        logger.info(f"   Keyword id: {self.args.keyword_id or '-'}")
        logger.info(f"   Max results/source: {scanner['max_results']}")
        logger.info(f"   Deadline: {scanner['run_deadline_s']}s")
        logger.info(f"   Dry run: {self.args.dry_run}")
        if self.args.dry_run:
            logger.info("🔥 DRY-RUN: no database writes")

    def _record(self, results: List) -> bool:
        for result in results:
            self.stats['keywords'] += 1
            self.stats['new_records'] += result.new_records
            if result.status == RunStatus.ERROR:
                self.stats['errors'].append(f"{result.keyword}: {result.error}")
        return not any(r.status == RunStatus.ERROR for r in results)

    async def run(self) -> bool:
        scanner = build_scanner(self.gateway, self.config, self.app_config.twitter_bearer_token,
                                dry_run=self.args.dry_run, jsonl_out=self.args.jsonl_out)
        try:
            mode = self.args.mode
            if mode in ('keyword', 'created'):
                if mode == 'created':
                    result = await scanner.on_keyword_created(self.args.keyword_id)
                else:
                    result = await scanner.process_keyword_id(self.args.keyword_id)
                if result is None:
                    self.stats['errors'].append(f"keyword {self.args.keyword_id} not found")
                    return False
                return self._record([result])

            if mode == 'critical':
                batch = await scanner.run_critical()
            else:
                batch = await scanner.run_batch()
            if batch.stopped_reason:
                self.stats['errors'].append(f"stopped early: {batch.stopped_reason}")
            batch.summary.print_summary()
            return self._record(batch.results)
        finally:
            await scanner.aclose()

    def print_final_summary(self):
        """Print final execution summary"""
        duration = datetime.now() - self.start_time

        print("\n" + "="*60)
        print("📊 SENTINEL PIPELINE EXECUTION SUMMARY")
        print("="*60)
        print(f"⏱️  Duration: {duration}")
        print(f"🔑 Keywords processed: {self.stats['keywords']}")
        print(f"📰 New records: {self.stats['new_records']}")
        print(f"❌ Errors: {len(self.stats['errors'])}")

        if self.stats['errors']:
            print("\n🚨 ERRORS ENCOUNTERED:")
            for error in self.stats['errors'][:5]:
                print(f"  • {error}")
            if len(self.stats['errors']) > 5:
                print(f"  ... and {len(self.stats['errors']) - 5} more errors")

        print("="*60)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Sentinel - keyword monitoring pipeline',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # One scheduled tick over all active keywords
  python3 run_pipeline.py --mode batch

  # Critical-priority fast lane
  python3 run_pipeline.py --mode critical

  # Single keyword, manual or on creation
  python3 run_pipeline.py --mode keyword --keyword-id 42 --dry-run
  python3 run_pipeline.py --mode created --keyword-id 42
        """
    )
    parser.add_argument('--mode', choices=['batch', 'keyword', 'critical', 'created'], default='batch',
                        help='Pipeline execution mode')
    parser.add_argument('--keyword-id', help='Keyword id (required for keyword and created modes)')
    parser.add_argument('--max-results', type=int, help='Max results per source (overrides config.json)')
    parser.add_argument('--deadline', type=float, help='Wall-clock budget for batch modes, in seconds')
    parser.add_argument('--analytics-mode', choices=['batch', 'cumulative'], help='Snapshot computation mode')
    parser.add_argument('--jsonl-out', help='Append an audit line per enriched record to this file')
    parser.add_argument('--dry-run', action='store_true', help='Fetch and score without database writes')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.mode in ('keyword', 'created') and not args.keyword_id:
        parser.error(f"--keyword-id is required with --mode {args.mode}")

    try:
        runner = SentinelPipelineRunner(args)
    except MisconfiguredCredential as e:
        logging.basicConfig(level=logging.INFO)
        logger.error(f"❌ CREDENTIAL ERROR: {e}")
        return EXIT_CREDENTIALS
    except ValueError as e:
        logging.basicConfig(level=logging.INFO)
        logger.error(f"❌ Configuration error: {e}")
        return EXIT_FAILED

    configure_logging(runner.app_config.pipeline_config.log_file, args.debug)

    try:
        runner.log_effective_params()
        logger.info("🚀 STARTING SENTINEL PIPELINE EXECUTION")
        success = asyncio.run(runner.run())
        runner.print_final_summary()

        if success:
            logger.info("✅ PIPELINE COMPLETED SUCCESSFULLY")
            return EXIT_OK
        logger.error("❌ PIPELINE FAILED - CHECK ERRORS ABOVE")
        return EXIT_FAILED

    except MisconfiguredCredential as e:
        logger.error(f"❌ CREDENTIAL ERROR: {e}")
        return EXIT_CREDENTIALS
    except KeyboardInterrupt:
        logger.info("\n⚠️  Pipeline interrupted by user")
        return 130
    except SentinelError as e:
        logger.error(f"❌ CRITICAL ERROR: {e}")
        if args.debug:
            import traceback
            logger.error(traceback.format_exc())
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
