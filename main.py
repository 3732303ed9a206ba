"""
Entry point for the BMS renderer.
Commands:
  import <file> [-f]     queue package URLs from <eventId>.urls.json (dry-run unless -f)
  work [--local]         run one dispatch cycle over every pending job
  render <url> [-o out]  run one render locally and print its diagnostics
  server                 host the render service
"""

import argparse
import json
import os
import sys

# Inject the bms-renderer directory into sys.path so `python main.py` works without installation.
sys.path.append(os.path.join(os.path.dirname(__file__), "bms-renderer"))

import pymysql

from renderer.core import DISPATCH_CONCURRENCY, ConfigurationError, logger, require_env
from renderer.pipeline import RenderPipeline
from renderer.server import create_app
from renderer.uploads import GCSObjectStore
from jobs.client import LocalRenderClient, RenderServiceClient
from jobs.dispatcher import JobDispatcher
from jobs.importer import apply_import, plan_import
from jobs.mysql_storage import MySQLJobStore, open_connection


def cmd_import(args) -> int:
    plan = plan_import(args.file)
    for operation in plan.operations():
        logger.info(json.dumps(operation), extra={'context': 'import'})
    if not args.f:
        logger.info("Dry run: pass -f to apply the changes", extra={'context': 'import'})
        return 0
    with open_connection() as connection:
        store = MySQLJobStore(connection)
        store.ensure_schema()
        result = apply_import(store, plan)
    print(json.dumps(result))
    return 0


def cmd_work(args) -> int:
    if args.local:
        client = LocalRenderClient(RenderPipeline())
    else:
        client = RenderServiceClient(require_env("WORKER_URL"), pool_size=args.concurrency)
    try:
        with open_connection() as connection:
            store = MySQLJobStore(connection)
            store.ensure_schema()
            dispatcher = JobDispatcher(store, client, concurrency=args.concurrency)
            summary = dispatcher.run_cycle()
    finally:
        client.close()
    print(json.dumps(summary))
    return 0


def cmd_render(args) -> int:
    diagnostics = RenderPipeline().render(args.url, output_path=args.output)
    print(json.dumps(diagnostics.to_dict(), indent=2))
    return 0 if diagnostics.error is None else 1


def cmd_server(args) -> int:
    bucket_name = require_env("RENDER_OUTPUT_BUCKET")
    port = int(require_env("PORT"))
    app = create_app(RenderPipeline(), GCSObjectStore(bucket_name))
    logger.info(f"App is listening on port {port}", extra={'context': 'server'})
    app.run(host="0.0.0.0", port=port, threaded=True)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="BMS package renderer")
    commands = parser.add_subparsers(dest="command", required=True)

    p_import = commands.add_parser("import", help="Adds files to be processed")
    p_import.add_argument("file", help="JSON file of URLs, filename should be *.urls.json")
    p_import.add_argument("-f", action="store_true", help="Apply the changes")
    p_import.set_defaults(handler=cmd_import)

    p_work = commands.add_parser("work", help="Invokes the worker to process BMS archives")
    p_work.add_argument("--local", action="store_true", help="Render in-process instead of calling WORKER_URL")
    p_work.add_argument("--concurrency", type=int, default=DISPATCH_CONCURRENCY,
                        help="Maximum renders in flight")
    p_work.set_defaults(handler=cmd_work)

    p_render = commands.add_parser("render", help="Render BMS from the BMS URL")
    p_render.add_argument("url", help="URL of the package to extract")
    p_render.add_argument("-o", "--output", help="Output MP3 file")
    p_render.set_defaults(handler=cmd_render)

    p_server = commands.add_parser("server", help="Starts a rendering server")
    p_server.set_defaults(handler=cmd_server)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return args.handler(args)
    except ConfigurationError as e:
        print(f"CONFIGURATION_ERROR: {e}")
        return 1
    except pymysql.err.MySQLError as e:
        print(f"DATABASE_ERROR: Failed to talk to MySQL: {e}")
        return 1
    except (ValueError, OSError) as e:
        print(f"INPUT_ERROR: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
