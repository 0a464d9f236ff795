"""Bundled processors and the default phase pipeline."""

from typing import List, Optional, Sequence

from dirmigrator.core.orchestrator import MigrationOrchestrator
from dirmigrator.processors.groups import GroupProcessor
from dirmigrator.processors.policies import PolicyPhases, PolicyProcessor
from dirmigrator.processors.users import UserProcessor

__all__ = ["GroupProcessor", "PolicyProcessor", "UserProcessor", "default_pipeline"]

# (phase, dependencies) in declaration order
DEFAULT_PHASES = [
    ("users", []),
    ("groups", ["users"]),
    ("named_locations", []),
    ("access_policies", ["users", "groups", "named_locations"]),
    ("role_assignments", ["users", "groups"]),
]


def default_pipeline(
    orchestrator: MigrationOrchestrator,
    only: Optional[Sequence[str]] = None,
) -> List[str]:
    """Register the bundled phases on ``orchestrator``.

    Args:
        orchestrator: Orchestrator to register on
        only: Restrict to these phase names; their dependencies must be included too

    Returns:
        Names of the registered phases
    """
    phases = PolicyPhases()
    processors = {
        "users": UserProcessor(),
        "groups": GroupProcessor(),
        "named_locations": PolicyProcessor("named_location", phases, claim_unknown=True),
        "access_policies": PolicyProcessor("access_policy", phases),
        "role_assignments": PolicyProcessor("role_assignment", phases),
    }

    registered = []
    for name, depends_on in DEFAULT_PHASES:
        if only is not None and name not in only:
            continue
        orchestrator.register(name, depends_on, processors[name])
        registered.append(name)
    return registered
