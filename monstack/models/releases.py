"""
Release Models

Release identity, deploy state machine and the report a deploy produces.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from monstack.models.results import ServiceStatus

RELEASE_ID_PATTERN = re.compile(r"^(\d{14})(?:-(\d+))?$")


class DeployState(Enum):
    """States of one deploy."""

    PREFLIGHT = "preflight"
    STAGING = "staging"
    RENDERED = "rendered"
    SWAPPED = "swapped"
    PRUNED = "pruned"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


ALLOWED_TRANSITIONS = {
    DeployState.PREFLIGHT: {DeployState.STAGING, DeployState.FAILED},
    DeployState.STAGING: {DeployState.RENDERED, DeployState.FAILED},
    DeployState.RENDERED: {DeployState.SWAPPED, DeployState.FAILED},
    DeployState.SWAPPED: {DeployState.PRUNED, DeployState.FAILED},
    DeployState.PRUNED: set(),
    DeployState.FAILED: {DeployState.ROLLED_BACK},
    DeployState.ROLLED_BACK: set(),
}


def parse_release_id(release_id: str) -> Optional[Tuple[str, int]]:
    """Split '20261017120000-2' into ('20261017120000', 2). None if malformed."""
    match = RELEASE_ID_PATTERN.match(release_id)
    if not match:
        return None
    return match.group(1), int(match.group(2) or 0)


def format_release_id(timestamp: str, sequence: int) -> str:
    if sequence:
        return f"{timestamp}-{sequence}"
    return timestamp


def release_sort_key(release_id: str) -> Tuple[str, int]:
    """Sort key ordering ids by timestamp, then sequence."""
    parsed = parse_release_id(release_id)
    if parsed is None:
        return ("", -1)
    return parsed


@dataclass
class Release:
    """A release directory on the target."""

    id: str
    path: str
    active: bool = False
    created_at: Optional[str] = None
    operator: Optional[str] = None
    files: Dict[str, str] = field(default_factory=dict)

    @property
    def sort_key(self) -> Tuple[str, int]:
        return release_sort_key(self.id)


@dataclass
class DeployReport:
    """Outcome of a deploy, rollback, or dry run."""

    state: DeployState = DeployState.PREFLIGHT
    release_id: Optional[str] = None
    previous_release_id: Optional[str] = None
    history: List[DeployState] = field(default_factory=lambda: [DeployState.PREFLIGHT])
    pruned: List[str] = field(default_factory=list)
    services: List[ServiceStatus] = field(default_factory=list)
    changes: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None
    rollback_error: Optional[str] = None
    check_mode: bool = False

    def transition(self, state: DeployState) -> None:
        """Move to the next state, refusing transitions the lifecycle forbids."""
        if state not in ALLOWED_TRANSITIONS[self.state]:
            raise ValueError(
                f"Invalid deploy transition {self.state.value} -> {state.value}"
            )
        self.state = state
        self.history.append(state)

    @property
    def succeeded(self) -> bool:
        return self.state == DeployState.PRUNED

    @property
    def rolled_back(self) -> bool:
        return self.state == DeployState.ROLLED_BACK
