# deploy_engine/strategies/self_hosted.py
"""Self-hosted strategy: runs the web host with the dotnet CLI."""

import logging
from pathlib import Path
from typing import Optional

from deploy_engine.core.models import DeploymentRequest
from deploy_engine.filesystem import FileSystem
from deploy_engine.process.executor import ProcessExecutor
from deploy_engine.process.models import ProcessExecutionOptions
from deploy_engine.strategies.base import DeploymentStrategy, StrategyKind

logger = logging.getLogger(__name__)

WEB_HOST_PATTERN = "*.WebHost.dll"


class SelfHostedStrategy(DeploymentStrategy):
    """Starts ``dotnet <name>.WebHost.dll`` in the deployment folder and returns."""

    kind = StrategyKind.SELF_HOSTED

    def __init__(
        self,
        process_executor: ProcessExecutor,
        file_system: Optional[FileSystem] = None,
        dotnet_path: str = "dotnet",
    ):
        self.process_executor = process_executor
        self.fs = file_system or FileSystem()
        self.dotnet_path = dotnet_path

    def deploy(self, source_path: str, request: DeploymentRequest) -> int:
        hosts = self.fs.list_files(source_path, WEB_HOST_PATTERN)
        if not hosts:
            logger.error(f"[DotNet] - No {WEB_HOST_PATTERN} found in {source_path}")
            return 1

        web_host = hosts[0]
        launch = self.process_executor.fire_and_forget(ProcessExecutionOptions(
            program=self.dotnet_path,
            arguments=[web_host.name],
            working_directory=str(Path(source_path)),
            environment={"ASPNETCORE_URLS": f"http://0.0.0.0:{request.site_port}"},
        ))

        if not launch.started:
            logger.error(f"[DotNet] - Failed to start {web_host.name}: {launch.error_message}")
            return 1

        logger.info(f"[DotNet] - Started {web_host.name} (pid={launch.process_id}) on port {request.site_port}")
        return 0

    def get_application_url(self, request: DeploymentRequest) -> str:
        return f"http://localhost:{request.site_port}"
