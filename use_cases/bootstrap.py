"""Startup orchestration for application bootstrap and session restore."""

from dataclasses import dataclass
from typing import Literal, Optional, Tuple

import auth
from infrastructure.observability import setup_observability
from use_cases.auth_flow import AuthSessionController

StartupStatus = Literal["CONTINUE", "STOP"]


@dataclass(frozen=True)
class StartupResult:
    """Result contract for startup/bootstrap orchestration."""

    status: StartupStatus
    planned_steps: Tuple[str, ...]


async def run_startup(
    controller: Optional[AuthSessionController] = None,
    configure_observability: bool = False,
) -> StartupResult:
    """Run startup bootstrap side-effects and reconcile the cached session."""
    executed_steps = []

    if configure_observability:
        setup_observability()
        executed_steps.append("setup_observability")

    # Schema must exist before the controller touches profiles or the audit trail.
    auth.get_profile_repo()
    executed_steps.append("init_profile_db")

    if controller is None:
        controller = auth.get_controller()
        executed_steps.append("build_controller")

    await controller.restore_session()
    executed_steps.append("restore_session")

    return StartupResult(status="CONTINUE", planned_steps=tuple(executed_steps))
