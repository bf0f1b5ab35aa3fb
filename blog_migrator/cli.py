"""
Command-line interface for the WordPress blog migration tool.
"""

import argparse
import json

from blog_migrator.migration_tool import BlogMigrationTool
from blog_migrator.utils.errors import PreFlightCheckError, SourcePageError
from blog_migrator.utils.pre_flight_checks import run_pre_flight_checks

CONFIG_FILE = "config/migration_config.json"


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Migrate WordPress posts and images to the new blog.")
    parser.add_argument("--config", default=CONFIG_FILE, help="Path to the JSON configuration file.")
    parser.add_argument("--xml", help="Read posts from a WXR export file instead of the REST API.")
    parser.add_argument("--page-size", type=int, help="Posts per source page.")
    parser.add_argument("--max-concurrency", type=int, help="Posts migrated in parallel.")
    parser.add_argument("--start-page", type=int, help="Zero-based page to start from (resume).")
    parser.add_argument("--max-duration", type=float, help="Stop dispatching new posts after this many seconds.")
    parser.add_argument("--dry-run", action="store_true", help="Normalize posts without uploading or writing.")
    parser.add_argument("--preview", action="store_true", help="List posts of the first page and exit.")
    return parser.parse_args(argv)


def main(argv=None):
    """
    Main function to run the WordPress blog migration tool.
    """
    args = parse_args(argv)
    tool = BlogMigrationTool(config_file=args.config)
    migration = tool.config["migration"]
    if args.xml:
        tool.config["wordpress"]["xml_path"] = args.xml
    if args.dry_run:
        migration["dry_run"] = True

    if args.preview:
        rows = tool.preview(page_size=args.page_size or migration["page_size"], start_page=args.start_page or 0)
        print(json.dumps(rows, indent=2, ensure_ascii=False))
        return 0

    tool.log_message("Starting WordPress blog migration.")

    if not tool.dry_run:
        try:
            run_pre_flight_checks(tool.config)
        except PreFlightCheckError as e:
            tool.log_message(f"Pre-flight checks failed: {e}", level="ERROR")
            return 2

    try:
        summary = tool.run(
            page_size=args.page_size,
            max_concurrency=args.max_concurrency,
            start_page=args.start_page,
            max_duration=args.max_duration,
        )
    except SourcePageError as e:
        tool.log_message(
            f"{e} after {e.pages_completed} page(s). Re-run with --start-page {e.next_page} to resume.",
            level="ERROR",
        )
        if e.summary is not None:
            print(e.summary.model_dump_json(indent=2))
        return 1

    print(summary.model_dump_json(indent=2))
    tool.log_message("Migration process finished.")
    return 0 if summary.failed == 0 else 1
