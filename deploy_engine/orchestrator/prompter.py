# deploy_engine/orchestrator/prompter.py
"""Interactive site name and port selection."""

import logging
import socket
from pathlib import Path
from typing import Callable

from deploy_engine.core.errors import PortUnavailable

logger = logging.getLogger(__name__)

MAX_PORT = 65535


def is_port_available(port: int, host: str = "0.0.0.0") -> bool:
    """True when nothing is listening on ``port``. Check failures count as available."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as probe:
        try:
            probe.bind((host, port))
        except PermissionError as e:
            logger.warning(f"Could not check port availability: {e}. Assuming port is available.")
            return True
        except OSError:
            logger.warning(f"Port {port} is in use")
            return False
    return True


def is_valid_port(port: int) -> bool:
    return 0 < port <= MAX_PORT


class SitePrompter:
    """Asks the operator for anything the command line left out."""

    def __init__(
        self,
        read_line: Callable[[], str] = input,
        write_line: Callable[[str], None] = print,
        port_checker: Callable[[int], bool] = is_port_available,
    ):
        self._read = read_line
        self._write = write_line
        self._port_available = port_checker

    def ask_site_name(self, root_path: str) -> str:
        """Repeat until the name is non-empty and ``root_path/name`` does not exist."""
        while True:
            self._write("Please enter site name:")
            name = (self._read() or "").strip()
            if not name:
                self._write("Site name cannot be empty")
                continue

            target = Path(root_path) / name
            if target.exists():
                self._write(f"Site with name {name} already exists in {target}")
                continue
            return name

    def ask_managed_host_port(self) -> int:
        while True:
            self._write(
                f"Please enter site port, Max value - {MAX_PORT}:\n"
                f"(recommended range between 40000 and 40100)"
            )
            text = (self._read() or "").strip()
            if not text.isdigit():
                self._write("Site port must be an int value")
                continue
            port = int(text)
            if is_valid_port(port):
                return port
            self._write(f"Port must be between 1 and {MAX_PORT}")

    def ask_self_hosted_port(self, default_port: int = 8080) -> int:
        """Enter keeps ``default_port``; ports in use are rejected."""
        while True:
            self._write(f"Press Enter to use default port {default_port}, or enter a custom port number:")
            text = (self._read() or "").strip()

            if not text:
                port = default_port
            elif text.isdigit() and is_valid_port(int(text)):
                port = int(text)
            else:
                self._write(f"Invalid port input. Please enter a number between 1 and {MAX_PORT}.")
                continue

            if not self._port_available(port):
                self._write(f"⚠ WARNING: {PortUnavailable(port)}. Choose another port.")
                continue
            return port
