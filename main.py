"""
Experiment Runtime - Main Entry Point
=====================================

Runs one participant session from the experiment units under a web root.

Usage:
    python main.py                                  # Built-in profile + sample
    python main.py --www-root app/www               # Units from another app
    python main.py --experiments profile stroop     # Choose experiments
    python main.py --export-dir data/export         # Also write the CSV
"""

import argparse
import asyncio
import logging

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def run_session(args: argparse.Namespace) -> int:
    """Run a session and print its summary."""
    from experiment_runtime.app import AppConfig, ExperimentApp, DEFAULT_WWW_ROOT

    config = AppConfig(
        www_root=args.www_root or DEFAULT_WWW_ROOT,
        db_path=args.db,
        export_dir=args.export_dir,
        reminder_hour=args.reminder_hour,
        notifications_enabled=not args.no_notifications,
    )
    if args.experiments:
        config.experiments = list(args.experiments)

    print("=" * 70)
    print("EXPERIMENT SESSION")
    print("=" * 70)
    print()

    app = ExperimentApp(config)
    try:
        result = asyncio.run(app.initialize())
    finally:
        app.close()

    rt = result.data.summarize("rt")

    print(f"User ID:              {result.user_id or 'unknown'}")
    print(f"Experiments loaded:   {', '.join(result.experiments) or '-'}")
    print(f"Experiments failed:   {', '.join(result.failed) or '-'}")
    print(f"Trials recorded:      {result.trial_count}")
    print(f"Responses with RT:    {rt['count']}")
    print(f"Session ID:           {result.session_id}")
    if result.export_path:
        print(f"Data exported to:     {result.export_path}")
    print()

    print("=" * 70)
    print("SESSION COMPLETED")
    print("=" * 70)

    return 1 if result.failed else 0


def build_parser() -> argparse.ArgumentParser:
    """Command line options."""
    parser = argparse.ArgumentParser(description="Experiment Runtime")
    parser.add_argument("--www-root", help="Web root holding js/experiments/<name>/index.js")
    parser.add_argument("--experiments", nargs="+", help="Experiments to load, in order")
    parser.add_argument("--db", default="data/sessions.db", help="Session database path")
    parser.add_argument("--export-dir", help="Directory to write the session CSV to")
    parser.add_argument("--reminder-hour", type=int, default=12, choices=range(24),
                        metavar="HOUR", help="Hour of the daily reminder (0-23)")
    parser.add_argument("--no-notifications", action="store_true", help="Disable reminders")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    return parser


def main():
    """Main entry point."""
    args = build_parser().parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    raise SystemExit(run_session(args))


if __name__ == "__main__":
    main()
