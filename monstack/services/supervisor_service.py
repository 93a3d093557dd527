"""Service supervisor: docker compose against a release directory."""

import json
import time
from typing import Callable, Dict, List, Optional

from monstack.constants import COMPOSE_FILE, RENDERED_ENV_FILE
from monstack.core.config_loader import StackConfig
from monstack.exceptions import HealthCheckTimeout, RemoteCommandError, ServiceStartError
from monstack.logger import DeployLogger
from monstack.models import ServiceStatus
from monstack.services.ssh_service import Session
from monstack.utils import quote


def parse_compose_ps(output: str) -> List[ServiceStatus]:
    """
    Parse `docker compose ps --format json`.

    Older compose releases print one JSON array, newer ones one object per line.
    """
    text = output.strip()
    if not text:
        return []

    if text.startswith("["):
        entries = json.loads(text)
    else:
        entries = [json.loads(line) for line in text.splitlines() if line.strip()]

    statuses = []
    for entry in entries:
        name = entry.get("Service") or entry.get("Name") or ""
        state = (entry.get("State") or "").lower()
        health = (entry.get("Health") or "").lower()
        statuses.append(ServiceStatus(name=name, state=state, health=health))
    return statuses


class ServiceSupervisor:
    """
    Drives compose for one release directory.

    All compose commands run as the non-root service account, never as the
    login account of the session.
    """

    def __init__(
        self,
        config: StackConfig,
        session: Session,
        service_user: str,
        project: Optional[str] = None,
        logger: Optional[DeployLogger] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.session = session
        self.service_user = service_user
        self.project = project or config.compose_project
        self.logger = logger
        self._sleep = sleep
        self._clock = clock

    def _compose(self, release_path: str, args: str) -> str:
        return (
            f"cd {quote(release_path)} && {self.config.compose_command} "
            f"-p {quote(self.project)} --env-file {RENDERED_ENV_FILE} -f {COMPOSE_FILE} {args}"
        )

    def _run(self, release_path: str, args: str, timeout: Optional[float] = None):
        return self.session.run(
            self._compose(release_path, args), become_user=self.service_user, timeout=timeout
        )

    def up(
        self,
        release_path: str,
        services: Optional[List[str]] = None,
        verify: bool = True,
    ) -> List[ServiceStatus]:
        """
        Bring services up and (by default) wait until they are healthy.

        Args:
            release_path: Release directory (usually <base>/current)
            services: Services expected to run; all reported ones when None
            verify: Poll health after starting

        Raises:
            ServiceStartError: If compose exits non-zero
            HealthCheckTimeout: If services are not healthy in time
        """
        if self.logger:
            self.logger.log(f"Starting services from {release_path}")

        result = self._run(release_path, "up -d --remove-orphans")
        if result.is_failure:
            raise ServiceStartError(
                f"docker compose up failed in {release_path}",
                context=result.stderr.strip() or result.stdout.strip() or None,
            )
        if not verify:
            return self.status(release_path)
        return self.wait_healthy(release_path, services)

    def status(self, release_path: str) -> List[ServiceStatus]:
        """
        Current state of every service of the project.

        Raises:
            RemoteCommandError: If compose cannot report status
        """
        result = self._run(release_path, "ps --all --format json")
        if result.is_failure:
            raise RemoteCommandError(self._compose(release_path, "ps"), result.returncode, result.stderr)
        try:
            return parse_compose_ps(result.stdout)
        except (ValueError, AttributeError) as e:
            raise RemoteCommandError(
                self._compose(release_path, "ps"), result.returncode, f"Unparseable compose output: {e}"
            )

    def restart(self, release_path: str, service: str) -> List[ServiceStatus]:
        """Restart one service and wait for it to be healthy again."""
        if self.logger:
            self.logger.log(f"Restarting {service}")
        result = self._run(release_path, f"restart {quote(service)}")
        if result.is_failure:
            raise ServiceStartError(
                f"docker compose restart {service} failed",
                context=result.stderr.strip() or None,
            )
        return self.wait_healthy(release_path, [service])

    def down(self, release_path: str) -> None:
        result = self._run(release_path, "down")
        if result.is_failure:
            raise ServiceStartError(
                f"docker compose down failed in {release_path}",
                context=result.stderr.strip() or None,
            )

    def wait_healthy(
        self, release_path: str, services: Optional[List[str]] = None
    ) -> List[ServiceStatus]:
        """
        Poll until every expected service runs (and is healthy if it has a check).

        Raises:
            HealthCheckTimeout: When health_timeout elapses first
        """
        deadline = self._clock() + self.config.health_timeout
        while True:
            statuses = self.status(release_path)
            failing = self._failing(statuses, services)
            if not failing:
                if self.logger:
                    self.logger.log(f"All services healthy: {', '.join(s.name for s in statuses)}")
                return statuses

            if self.logger:
                pending = ", ".join(f"{name}={state}" for name, state in sorted(failing.items()))
                self.logger.log(f"Waiting for services: {pending}", "DEBUG")

            if self._clock() >= deadline:
                raise HealthCheckTimeout(failing, self.config.health_timeout)
            self._sleep(self.config.health_poll_interval)

    def _failing(
        self, statuses: List[ServiceStatus], services: Optional[List[str]]
    ) -> Dict[str, str]:
        by_name = {status.name: status for status in statuses}
        expected = services if services is not None else list(by_name)

        failing = {}
        if not expected:
            failing["*"] = "no services running"
        for name in expected:
            status = by_name.get(name)
            if status is None:
                failing[name] = "missing"
            elif not status.is_ready:
                failing[name] = status.display_state or "unknown"
        return failing
