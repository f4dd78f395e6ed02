# deploy_engine/orchestrator/browser.py
"""Open the deployed application in the default browser."""

import logging
import sys
from typing import List, Tuple

from deploy_engine.process.executor import ProcessExecutor
from deploy_engine.process.models import ProcessExecutionOptions

logger = logging.getLogger(__name__)


def browser_command(url: str, platform: str = sys.platform) -> Tuple[str, List[str]]:
    if platform == "win32":
        return "cmd", ["/c", "start", url]
    if platform == "darwin":
        return "open", [url]
    return "xdg-open", [url]


class BrowserLauncher:
    def __init__(self, process_executor: ProcessExecutor, platform: str = sys.platform):
        self.process_executor = process_executor
        self.platform = platform

    def launch(self, url: str) -> int:
        program, arguments = browser_command(url, self.platform)
        result = self.process_executor.fire_and_forget(
            ProcessExecutionOptions(program=program, arguments=arguments)
        )
        if not result.started:
            logger.error(f"Failed to launch web browser: {result.error_message}")
            return 1
        logger.info(f"[Auto-launching application] - {url}")
        return 0
