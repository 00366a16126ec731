"""
Application restart through systemd.

Activation services delegate their restart primitive to a restarter: an
async callable taking no arguments. SystemdRestarter restarts a systemd unit
with `systemctl restart`, which is how a host application picks up a newly
activated bundle.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from ota_hotupdate.logging import get_logger

if TYPE_CHECKING:
    from ota_hotupdate.config import RestartConfig

logger = get_logger(__name__)


class ServiceRestartError(Exception):
    """Error during service restart."""


async def _run_systemctl(
    *args: str,
    timeout: float = 30.0,
) -> tuple[int, str, str]:
    """
    Run a systemctl command.

    Returns:
        Tuple of (return_code, stdout, stderr).

    Raises:
        ServiceRestartError: If systemctl is missing or times out.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            "systemctl",
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as exc:
        raise ServiceRestartError("systemctl not available") from exc

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except TimeoutError as exc:
        proc.kill()
        await proc.wait()
        raise ServiceRestartError(
            f"systemctl {' '.join(args)} timed out after {timeout}s"
        ) from exc

    return (
        proc.returncode or 0,
        stdout.decode() if stdout else "",
        stderr.decode() if stderr else "",
    )


async def restart_service(service_name: str, timeout: float = 60.0) -> None:
    """
    Restart a systemd service.

    The command is not followed by an is-active check because the calling
    process is usually the unit being restarted.

    Args:
        service_name: Name of the service to restart.
        timeout: Timeout for the restart command.

    Raises:
        ServiceRestartError: If systemctl fails.
    """
    logger.info(f"Restarting service: {service_name}")

    returncode, stdout, stderr = await _run_systemctl(
        "restart", service_name, timeout=timeout
    )

    if returncode != 0:
        logger.error(
            f"Service restart failed: {stderr or stdout}",
            extra={"service": service_name, "returncode": returncode},
        )
        raise ServiceRestartError(
            f"Failed to restart {service_name}: {stderr or stdout}"
        )

    logger.info(f"Service {service_name} restart command sent")


class SystemdRestarter:
    """
    Restarter that restarts the host application's systemd unit.

    Instances are async callables so they can be handed to an activation
    service as its restart primitive.
    """

    def __init__(self, service_name: str, timeout: float = 60.0) -> None:
        self.service_name = service_name
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: RestartConfig) -> SystemdRestarter | None:
        """Create a restarter, or None when no service is configured."""
        if not config.service_name:
            return None
        return cls(config.service_name, timeout=config.timeout_seconds)

    async def __call__(self) -> None:
        await restart_service(self.service_name, timeout=self.timeout)
