# deploy_engine/run_deploy.py
"""Command line entry point: deploy-engine deploy ..."""

import argparse
import logging
import sys
from typing import List, Optional

from deploy_engine.core.errors import UnsupportedDatabaseKind
from deploy_engine.core.models import DatabaseKind, DeploymentRequest, RuntimePlatform

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="deploy-engine", description="Deploy an application build")
    commands = parser.add_subparsers(dest="command", required=True)

    deploy = commands.add_parser("deploy", help="Deploy a build archive or the latest build of a product")
    source = deploy.add_mutually_exclusive_group()
    source.add_argument("--zip-file", "-z", help="Build archive or extracted directory")
    source.add_argument("--product", "-p", help="Product name or alias (s, se, semse, bcj)")

    deploy.add_argument("--db-type", default="pg", help="mssql or pg (default: pg)")
    deploy.add_argument("--platform", default="NETFramework", help="NETFramework or NET6")
    deploy.add_argument("--site-name", "-n", default="", help="Application name")
    deploy.add_argument("--site-port", "-sp", type=int, default=0, help="Port the site listens on")
    deploy.add_argument("--db-server-name", help="Named local database server from settings")
    deploy.add_argument("--drop-if-exists", action="store_true", help="Drop an existing target database")
    deploy.add_argument("--deployment", default="auto", help="auto, iis or dotnet")
    deploy.add_argument("--no-iis", action="store_true", help="Never use IIS")
    deploy.add_argument("--app-path", help="Target folder for self-hosted deployments")
    deploy.add_argument("--redis-db", type=int, help="Redis database index to use")
    deploy.add_argument("--auto-run", action="store_true", help="Open the application in a browser")
    deploy.add_argument("--debug", action="store_true", help="Verbose logging")
    return parser


def request_from_args(args: argparse.Namespace) -> DeploymentRequest:
    return DeploymentRequest(
        site_name=args.site_name,
        site_port=args.site_port,
        zip_file=args.zip_file,
        product=args.product,
        database_kind=DatabaseKind.parse(args.db_type),
        runtime_platform=RuntimePlatform.parse(args.platform),
        db_server_name=args.db_server_name,
        drop_if_exists=args.drop_if_exists,
        deployment_method=args.deployment,
        no_managed_host=args.no_iis,
        app_path=args.app_path,
        auto_run=args.auto_run,
        redis_db=args.redis_db,
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    from deploy_engine.config import settings

    logging.basicConfig(
        level=logging.DEBUG if args.debug else settings.log_level.upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        request = request_from_args(args)
    except UnsupportedDatabaseKind as e:
        logger.error(str(e))
        return 1

    if not request.zip_file and not request.product:
        logger.error("Either --zip-file or --product is required")
        return 1

    from deploy_engine.container import deployment_orchestrator

    logger.info("=" * 80)
    logger.info("🚀 DEPLOY")
    logger.info("=" * 80)
    return deployment_orchestrator.deploy(request)


if __name__ == "__main__":
    sys.exit(main())
