"""
Release manager

Materializes versioned releases on the target and moves the current-release
pointer between them:

    PREFLIGHT -> STAGING -> RENDERED -> SWAPPED -> PRUNED
              \\-> FAILED (from any state) -> ROLLED_BACK

Layout on the target:

    <base>/releases/<id>/   immutable release directories
    <base>/current          symlink to releases/<id>
    <base>/.deploy.lock     exclusive deploy lock
    <base>/<service>/data/  persistent volumes, outside the release tree
"""

import json
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from monstack.constants import (
    CURRENT_LINK,
    MANIFEST_FILE,
    MAX_STAGING_ATTEMPTS,
    RELEASE_TIMESTAMP_FORMAT,
    RELEASES_DIR,
)
from monstack.core.config_loader import StackConfig
from monstack.core.renderer import ReleaseRenderer, RenderedRelease, diff_checksums
from monstack.exceptions import DeploymentError, MonstackError, LockHeldError, SwapError
from monstack.logger import DeployLogger
from monstack.models import DeployReport, DeployState, Release
from monstack.models.releases import format_release_id, parse_release_id, release_sort_key
from monstack.services.ssh_service import Session
from monstack.services.supervisor_service import ServiceSupervisor
from monstack.utils import get_operator, quote


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ReleaseManager:
    """
    Release lifecycle on one target.

    Provides:
    - deploy (stage, render, swap, verify, prune) with rollback on failure
    - dry-run diff against the active release
    - release listing and manual rollback
    - target layout preparation
    """

    def __init__(
        self,
        config: StackConfig,
        session: Session,
        supervisor: ServiceSupervisor,
        renderer: ReleaseRenderer,
        service_user: str,
        service_group: Optional[str] = None,
        logger: Optional[DeployLogger] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config
        self.session = session
        self.supervisor = supervisor
        self.renderer = renderer
        self.service_user = service_user
        self.service_group = service_group or service_user
        self.logger = logger
        self._clock = clock

    # -- Helpers ----------------------------------------------------------

    def _log(self, message: str, level: str = "INFO") -> None:
        if self.logger:
            self.logger.log(message, level)

    def _sh(self, command: str, check: bool = True):
        """Run a filesystem command on the target as the service account."""
        return self.session.run(command, become_user=self.service_user, check=check)

    def release_path(self, release_id: str) -> str:
        return f"{self.config.releases_dir}/{release_id}"

    def ensure_base(self) -> None:
        """
        Raises:
            DeploymentError: If the target layout has not been prepared
        """
        base = quote(self.config.base_dir)
        result = self._sh(f"test -d {base} && test -w {base}", check=False)
        if result.is_failure:
            raise DeploymentError(
                f"{self.config.base_dir} is missing or not writable by {self.service_user}",
                context="Prepare the target first: monstack install",
            )

    # -- Lock -------------------------------------------------------------

    def acquire_lock(self) -> None:
        """
        Create the lock file with an exclusive create (noclobber).

        Raises:
            LockHeldError: If another deploy holds it
        """
        lock = quote(self.config.lock_path)
        holder = f"{get_operator()} {self._clock().isoformat()}"
        result = self._sh(
            f"( set -C; printf '%s\\n' {quote(holder)} > {lock} ) 2>/dev/null", check=False
        )
        if result.is_failure:
            current = self._sh(f"cat {lock} 2>/dev/null", check=False).stdout.strip()
            raise LockHeldError(self.config.lock_path, current)
        self._log(f"Acquired lock {self.config.lock_path}")

    def release_lock(self) -> None:
        self._sh(f"rm -f {quote(self.config.lock_path)}")
        self._log(f"Released lock {self.config.lock_path}")

    @contextmanager
    def locked(self):
        """Hold the deploy lock for the duration of the block, on every exit path."""
        self.acquire_lock()
        try:
            yield
        except BaseException:
            try:
                self.release_lock()
            except MonstackError as e:
                self._log(f"Could not release lock: {e}", "ERROR")
            raise
        self.release_lock()

    # -- Pointer ----------------------------------------------------------

    def active_release_id(self) -> Optional[str]:
        """Release the current pointer resolves to, None without one."""
        result = self._sh(f"readlink {quote(self.config.current_link)}", check=False)
        target = result.stdout.strip()
        if result.is_failure or not target:
            return None
        return target.rstrip("/").rsplit("/", 1)[-1]

    def _switch(self, release_id: str) -> None:
        """
        Atomically repoint current at a release.

        A fresh temporary symlink is renamed over the old pointer, so the
        pointer always resolves to either the old or the new release.

        Raises:
            SwapError: If the rename fails or the pointer does not verify
        """
        link = self.config.current_link
        tmp_link = f"{self.config.base_dir}/.{CURRENT_LINK}.{release_id}"
        relative = f"{RELEASES_DIR}/{release_id}"

        result = self._sh(
            f"test -d {quote(self.release_path(release_id))} && "
            f"ln -sfn {quote(relative)} {quote(tmp_link)} && "
            f"mv -T {quote(tmp_link)} {quote(link)}",
            check=False,
        )
        if result.is_failure:
            self._sh(f"rm -f {quote(tmp_link)}", check=False)
            raise SwapError(
                f"Could not point {link} at {relative}",
                context=result.stderr.strip() or None,
            )

        active = self.active_release_id()
        if active != release_id:
            raise SwapError(f"{link} resolves to {active!r} after switching to {release_id!r}")
        self._log(f"Current release -> {release_id}")

    def _clear_pointer(self) -> None:
        self._sh(f"rm -f {quote(self.config.current_link)}")
        self._log("Current release pointer removed")

    # -- Releases ---------------------------------------------------------

    def release_ids(self) -> List[str]:
        """Release ids on the target, newest first."""
        result = self._sh(f"ls -1 {quote(self.config.releases_dir)} 2>/dev/null", check=False)
        ids = [name for name in result.stdout.split() if parse_release_id(name)]
        return sorted(ids, key=release_sort_key, reverse=True)

    def read_manifest(self, release_id: str) -> Dict[str, Any]:
        result = self._sh(
            f"cat {quote(self.release_path(release_id) + '/' + MANIFEST_FILE)}", check=False
        )
        if result.is_failure:
            return {}
        try:
            manifest = json.loads(result.stdout)
        except ValueError:
            return {}
        return manifest if isinstance(manifest, dict) else {}

    def list_releases(self) -> List[Release]:
        """Releases newest first, active one flagged, with manifest metadata."""
        active = self.active_release_id()
        releases = []
        for release_id in self.release_ids():
            manifest = self.read_manifest(release_id)
            releases.append(
                Release(
                    id=release_id,
                    path=self.release_path(release_id),
                    active=release_id == active,
                    created_at=manifest.get("created_at"),
                    operator=manifest.get("operator"),
                    files=manifest.get("files") or {},
                )
            )
        return releases

    def next_release_id(self, existing: List[str]) -> str:
        """
        Id for a new release, strictly greater than every existing one.

        Same-second deploys and a clock behind the newest release bump the
        sequence suffix of the newest id instead.
        """
        timestamp = self._clock().strftime(RELEASE_TIMESTAMP_FORMAT)
        sequence = 0
        if existing:
            newest = max(existing, key=release_sort_key)
            newest_timestamp, newest_sequence = release_sort_key(newest)
            if (timestamp, sequence) <= (newest_timestamp, newest_sequence):
                timestamp, sequence = newest_timestamp, newest_sequence + 1
        return format_release_id(timestamp, sequence)

    def _stage(self) -> str:
        """
        Create a new, empty release directory.

        mkdir without -p fails on an existing directory, so a concurrent or
        same-second release is never overwritten; the sequence advances instead.
        """
        self._sh(f"mkdir -p {quote(self.config.releases_dir)}")
        release_id = self.next_release_id(self.release_ids())

        for _ in range(MAX_STAGING_ATTEMPTS):
            result = self._sh(f"mkdir {quote(self.release_path(release_id))}", check=False)
            if result.is_success:
                self._log(f"Staged release {release_id}")
                return release_id
            timestamp, sequence = release_sort_key(release_id)
            release_id = format_release_id(timestamp, sequence + 1)

        raise DeploymentError(
            f"Could not create a release directory in {self.config.releases_dir}",
            context=f"Gave up after {MAX_STAGING_ATTEMPTS} attempts",
        )

    def _upload(self, release_id: str, rendered: RenderedRelease) -> None:
        """Place rendered files, write the manifest, and seal the release read-only."""
        path = self.release_path(release_id)

        parents = sorted({p.rsplit("/", 1)[0] for p in rendered.files if "/" in p})
        if parents:
            self._sh("mkdir -p " + " ".join(quote(f"{path}/{parent}") for parent in parents))

        for relative, rendered_file in sorted(rendered.files.items()):
            self.session.put(
                rendered_file.content,
                f"{path}/{relative}",
                mode=rendered_file.mode,
                become_user=self.service_user,
            )

        manifest = {
            "id": release_id,
            "created_at": self._clock().isoformat(),
            "operator": get_operator(),
            "services": rendered.services,
            "files": rendered.checksums,
        }
        self.session.put(
            (json.dumps(manifest, indent=2, sort_keys=True) + "\n").encode("utf-8"),
            f"{path}/{MANIFEST_FILE}",
            mode=0o640,
            become_user=self.service_user,
        )
        self._sh(f"chmod -R a-w {quote(path)}")
        self._log(f"Uploaded {len(rendered.files)} files to {path}")

    def _remove_release(self, release_id: str) -> None:
        path = quote(self.release_path(release_id))
        self._sh(f"chmod -R u+w {path} 2>/dev/null; rm -rf {path}")
        self._log(f"Removed release {release_id}")

    def prune(self) -> List[str]:
        """
        Delete releases beyond keep_releases, never the active one.

        Returns:
            Ids of deleted releases
        """
        active = self.active_release_id()
        ids = self.release_ids()
        removed = []
        for release_id in ids[self.config.keep_releases:]:
            if release_id == active:
                continue
            self._remove_release(release_id)
            removed.append(release_id)
        return removed

    # -- Deploy -----------------------------------------------------------

    def _fail(self, report: DeployReport, error: BaseException) -> None:
        report.error = str(error) or type(error).__name__
        if report.state != DeployState.FAILED:
            report.transition(DeployState.FAILED)
        if isinstance(error, MonstackError):
            error.report = report
        self._log(f"Deploy failed in {report.history[-2].value}: {report.error}", "ERROR")

    def _restore(self, report: DeployReport, failed_release: Optional[str]) -> None:
        """
        Return the target to the release that was active before the deploy.

        The failed release directory is kept for inspection.
        """
        previous = report.previous_release_id
        try:
            if previous:
                self._switch(previous)
                self.supervisor.up(self.config.current_link)
            else:
                self._clear_pointer()
                if failed_release:
                    self.supervisor.down(self.release_path(failed_release))
        except MonstackError as e:
            report.rollback_error = str(e)
            self._log(f"Rollback failed: {e}", "ERROR")
            return
        report.transition(DeployState.ROLLED_BACK)
        self._log(f"Rolled back to {previous or 'no active release'}")

    def deploy(self, context: Dict[str, Any], check: bool = False) -> DeployReport:
        """
        Run one deploy.

        Args:
            context: Render context (public vars merged with secrets)
            check: Dry run; render and diff against the active release only

        Returns:
            DeployReport in state PRUNED (or PREFLIGHT for a dry run)

        Raises:
            MonstackError: Carrying the report in error.report
        """
        report = DeployReport(check_mode=check)
        if check:
            return self._dry_run(context, report)

        self.ensure_base()
        with self.locked():
            report.previous_release_id = self.active_release_id()

            release_id = None
            try:
                report.transition(DeployState.STAGING)
                release_id = self._stage()
                report.release_id = release_id

                rendered = self.renderer.render(context)
                self._upload(release_id, rendered)
                report.transition(DeployState.RENDERED)
            except BaseException as e:
                # Pointer untouched; the half-built release is discarded
                self._fail(report, e)
                if release_id:
                    self._remove_release(release_id)
                raise

            try:
                self._switch(release_id)
                report.transition(DeployState.SWAPPED)
                report.services = self.supervisor.up(self.config.current_link, rendered.services)
            except BaseException as e:
                self._fail(report, e)
                self._restore(report, release_id)
                raise

            try:
                report.pruned = self.prune()
            except MonstackError as e:
                e.report = report
                raise
            report.transition(DeployState.PRUNED)

        self._log(f"Release {release_id} is live")
        return report

    def _dry_run(self, context: Dict[str, Any], report: DeployReport) -> DeployReport:
        """Render locally and compare with the active release's manifest."""
        rendered = self.renderer.render(context)
        active = self.active_release_id()
        report.previous_release_id = active
        old = self.read_manifest(active).get("files", {}) if active else {}
        report.changes = diff_checksums(old, rendered.checksums)
        return report

    def rollback(self, release_id: Optional[str] = None) -> Release:
        """
        Point current at an older release and bring its services up.

        If the older release fails its health check, the release that was
        active before is restored and the error re-raised.

        Args:
            release_id: Release to activate (defaults to the one before the active release)

        Raises:
            DeploymentError: If there is nothing to roll back to
        """
        self.ensure_base()
        with self.locked():
            active = self.active_release_id()
            ids = self.release_ids()

            if release_id is None:
                older = [
                    rid for rid in ids
                    if active is None or release_sort_key(rid) < release_sort_key(active)
                ]
                if not older:
                    raise DeploymentError(
                        "No earlier release to roll back to",
                        context=f"Releases on target: {', '.join(ids) or 'none'}",
                    )
                release_id = older[0]
            elif release_id not in ids:
                raise DeploymentError(
                    f"Release '{release_id}' not found",
                    context=f"Releases on target: {', '.join(ids) or 'none'}",
                )

            if release_id == active:
                raise DeploymentError(f"Release '{release_id}' is already active")

            self._switch(release_id)
            try:
                self.supervisor.up(self.config.current_link)
            except BaseException:
                if active:
                    # The original failure is the one reported
                    try:
                        self._switch(active)
                        self.supervisor.up(self.config.current_link)
                    except MonstackError as restore_error:
                        self._log(f"Could not restore {active}: {restore_error}", "ERROR")
                raise

        manifest = self.read_manifest(release_id)
        return Release(
            id=release_id,
            path=self.release_path(release_id),
            active=True,
            created_at=manifest.get("created_at"),
            operator=manifest.get("operator"),
            files=manifest.get("files") or {},
        )

    # -- Target preparation ----------------------------------------------

    def prepare_target(self, groups: List[str], services: List[str]) -> List[str]:
        """
        Create the service account layout on a fresh target (as root).

        Returns:
            Directories ensured
        """
        user = quote(self.service_user)
        group = quote(self.service_group)

        def as_root(command: str):
            return self.session.run(command, become_user="root", check=True)

        as_root(f"getent group {group} >/dev/null || groupadd --system {group}")
        as_root(
            f"id -u {user} >/dev/null 2>&1 || "
            f"useradd --system --create-home --gid {group} --shell /bin/bash {user}"
        )
        for extra in groups:
            result = self.session.run(f"getent group {quote(extra)} >/dev/null", check=False)
            if result.is_failure:
                self._log(f"Group {extra} does not exist on target, skipping", "WARNING")
                continue
            as_root(f"id -nG {user} | tr ' ' '\\n' | grep -qx {quote(extra)} || usermod -aG {quote(extra)} {user}")

        directories = [self.config.base_dir, self.config.releases_dir]
        for service in services:
            directories += [f"{self.config.base_dir}/{service}", f"{self.config.base_dir}/{service}/data"]

        as_root(
            f"install -d -o {user} -g {group} -m 0750 "
            + " ".join(quote(d) for d in directories)
        )
        self._log(f"Prepared {len(directories)} directories under {self.config.base_dir}")
        return directories
