# deploy_engine/strategies/managed_host.py
"""Managed web-server host (IIS) strategy."""

import logging
import os
import socket
import sys
from pathlib import Path
from typing import List, Optional

from deploy_engine.artifacts.inspection import detect_framework
from deploy_engine.core.models import DeploymentRequest, FrameworkType
from deploy_engine.process.executor import ProcessExecutor
from deploy_engine.process.models import ProcessExecutionOptions
from deploy_engine.strategies.base import DeploymentStrategy, StrategyKind

logger = logging.getLogger(__name__)

# Legacy web application folder served under /0 on .NET Framework builds
NET_FRAMEWORK_APP_FOLDER = "Terrasoft.WebApp"


def default_appcmd_path() -> str:
    windir = os.environ.get("windir", r"C:\Windows")
    return os.path.join(windir, "system32", "inetsrv", "appcmd.exe")


class ManagedHostStrategy(DeploymentStrategy):
    """Registers the deployment folder as an IIS site with its own app pool."""

    kind = StrategyKind.MANAGED_HOST

    def __init__(self, process_executor: ProcessExecutor, appcmd_path: Optional[str] = None):
        self.process_executor = process_executor
        self.appcmd_path = appcmd_path or default_appcmd_path()

    def is_available(self) -> bool:
        return sys.platform == "win32" and os.path.isfile(self.appcmd_path)

    def deploy(self, source_path: str, request: DeploymentRequest) -> int:
        site = request.site_name
        framework = detect_framework(source_path)
        runtime_version = "v4.0" if framework is FrameworkType.NET_FRAMEWORK else ""

        commands: List[List[str]] = [
            ["add", "apppool", f"/name:{site}", f"/managedRuntimeVersion:{runtime_version}"],
            [
                "add", "site",
                f"/name:{site}",
                f"/bindings:http/*:{request.site_port}:",
                f"/physicalPath:{source_path}",
            ],
            ["set", "app", f"{site}/", f"/applicationPool:{site}"],
        ]

        legacy_app = Path(source_path) / NET_FRAMEWORK_APP_FOLDER
        if framework is FrameworkType.NET_FRAMEWORK and legacy_app.is_dir():
            commands.append([
                "add", "app",
                f"/site.name:{site}",
                "/path:/0",
                f"/physicalPath:{legacy_app}",
                f"/applicationPool:{site}",
            ])

        commands.append(["start", "site", f"/site.name:{site}"])

        for arguments in commands:
            result = self.process_executor.execute_and_capture(
                ProcessExecutionOptions(program=self.appcmd_path, arguments=arguments)
            )
            if not result.started or result.exit_code != 0:
                detail = result.standard_error or result.standard_output
                logger.error(f"[IIS] - appcmd {' '.join(arguments[:2])} failed: {detail}")
                return 1
            logger.info(f"[IIS] - appcmd {' '.join(arguments[:2])} ✅")

        logger.info(f"[IIS] - Site {site} created on port {request.site_port}")
        return 0

    def get_application_url(self, request: DeploymentRequest) -> str:
        return f"http://{socket.getfqdn()}:{request.site_port}"
