import asyncio
import anyio
import argparse
from pathlib import Path
from src.assistant_router.app import AssistantRouter, DEFAULT_CONFIG_PATH
from src.assistant_router.cli import cmd_ask, cmd_catalog, cmd_import_openapi, cmd_status


def parse_args():
    parser = argparse.ArgumentParser(description="Assistant router: natural language to internal API calls")
    parser.add_argument("--config", type=str, default=None, help="Path to YAML config")
    parser.add_argument("--catalog", type=str, default=None, help="Path to YAML catalog of endpoint descriptors")
    sub = parser.add_subparsers(dest="command", required=True)

    # serve
    serve = sub.add_parser("serve", help="Start the HTTP server")
    serve.add_argument("--host", type=str, default="127.0.0.1")
    serve.add_argument("--port", type=int, default=6969)
    serve.add_argument("--api-key", type=str, default=None)
    serve.add_argument("--audit-log-dir", type=str, default=None)
    serve.add_argument("--log-file", type=str, default=None, help="Also write logs to this rotating file")
    serve.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], default="INFO"
    )

    # ask
    ask = sub.add_parser("ask", help="Run a single turn and print the answer")
    ask.add_argument("message", type=str)
    ask.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], default="WARNING"
    )

    # catalog
    sub.add_parser("catalog", help="List catalog descriptors")

    # import-openapi
    imp = sub.add_parser("import-openapi", help="Import operations from an OpenAPI document")
    imp.add_argument("document", type=str, help="OpenAPI 3 document (JSON or YAML)")

    # status
    sub.add_parser("status", help="Show effective configuration")

    return parser.parse_args()


if __name__ == "__main__":
    args = parse_args()
    config_path = Path(args.config) if args.config else DEFAULT_CONFIG_PATH
    catalog_path = Path(args.catalog) if args.catalog else None

    if args.command == "serve":
        server = AssistantRouter(
            config=args.config,
            catalog=args.catalog,
            host=args.host,
            port=args.port,
            log_level=args.log_level,
            api_key=args.api_key,
            audit_log_dir=args.audit_log_dir,
            log_file=args.log_file,
        )
        asyncio.run(server.run())

    elif args.command == "ask":
        async def _ask():
            await cmd_ask(
                args.message,
                config=args.config,
                catalog=args.catalog,
                log_level=args.log_level,
            )
        try:
            anyio.run(_ask)
        except KeyboardInterrupt:
            print()

    elif args.command == "catalog":
        print(cmd_catalog(config_path, catalog_path))

    elif args.command == "import-openapi":
        print(cmd_import_openapi(Path(args.document), config_path, catalog_path))

    elif args.command == "status":
        print(cmd_status(config_path, catalog_path))
