#!/usr/bin/env python3
"""
Maintenance Engine launcher
Runs the REST API with the periodic scheduler, or a single sweep
"""

import argparse
import json
import logging
import sys

from config.settings import settings
from src.engine import build_engine
from src.utils.logger import set_level, setup_logging

logger = logging.getLogger(__name__)

SWEEPS = {
    'time': 'run_time_sweep',
    'meter': 'run_meter_sweep',
    'condition': 'run_condition_sweep',
    'overdue': 'run_overdue_sweep',
    'analytics': 'run_analytics',
}


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description='Maintenance Trigger & Predictive Analytics Engine',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  maintenance-engine serve                  # API plus periodic sweeps
  maintenance-engine serve --no-scheduler   # API only
  maintenance-engine sweep overdue          # One overdue sweep, then exit
  maintenance-engine scheduler              # Periodic sweeps without the API
        """
    )
    parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Override the configured logging level')

    commands = parser.add_subparsers(dest='command', required=True)

    serve = commands.add_parser('serve', help='Run the REST API')
    serve.add_argument('--host', default=settings.get('api.host', '127.0.0.1'))
    serve.add_argument('--port', type=int, default=settings.get('api.port', 5000))
    serve.add_argument('--no-scheduler', action='store_true', help='Do not start periodic sweeps')

    sweep = commands.add_parser('sweep', help='Run one sweep and print its result')
    sweep.add_argument('name', choices=sorted(SWEEPS))

    commands.add_parser('scheduler', help='Run periodic sweeps in the foreground')

    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging()
    if args.log_level:
        set_level(args.log_level)

    engine = build_engine()
    try:
        if args.command == 'sweep':
            result = getattr(engine.driver, SWEEPS[args.name])()
            print(json.dumps(result.to_dict(), indent=2))
            return 1 if result.errors else 0

        if args.command == 'scheduler':
            logger.info("Running periodic sweeps; Ctrl+C to stop")
            engine.driver.run_forever()
            return 0

        from src.api.endpoints import create_app
        if not args.no_scheduler and settings.get('scheduler.enabled', True):
            engine.driver.start()
        app = create_app(engine)
        app.run(host=args.host, port=args.port, debug=settings.debug, use_reloader=False)
        return 0
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 0
    finally:
        engine.shutdown()


if __name__ == '__main__':
    sys.exit(main())
