"""Policy-bearing configuration categories.

Each category is one member of a closed tagged union keyed on ``kind``.
Adding a category means adding a payload model, a destination object type
and a branch in :func:`build_payload`.
"""

from typing import Annotated, Any, AsyncIterator, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from dirmigrator.core.processor import Processor, ProcessorContext
from dirmigrator.processors.base import quote_filter
from dirmigrator.utils.errors import PayloadRejectedError

ALL_PRINCIPALS = "All"


class NamedLocationPayload(BaseModel):
    """A named network location."""

    kind: Literal["named_location"]
    id: str
    display_name: str
    ip_ranges: List[str] = Field(default_factory=list)
    countries: List[str] = Field(default_factory=list)
    trusted: bool = False


class AccessPolicyPayload(BaseModel):
    """A conditional access policy."""

    kind: Literal["access_policy"]
    id: str
    display_name: str
    state: Literal["enabled", "disabled", "report_only"] = "disabled"
    include_users: List[str] = Field(default_factory=list)
    exclude_users: List[str] = Field(default_factory=list)
    include_groups: List[str] = Field(default_factory=list)
    include_locations: List[str] = Field(default_factory=list)
    grant_controls: List[str] = Field(default_factory=list)


class RoleAssignmentPayload(BaseModel):
    """A directory role granted to a user or group."""

    kind: Literal["role_assignment"]
    id: str
    role: str
    principal_type: Literal["user", "group"]
    principal_id: str
    principal_name: str
    scope: str = "/"


PolicyPayload = Annotated[
    Union[NamedLocationPayload, AccessPolicyPayload, RoleAssignmentPayload],
    Field(discriminator="kind"),
]

_policy_adapter: TypeAdapter = TypeAdapter(PolicyPayload)

OBJECT_TYPES = {
    "named_location": "namedLocations",
    "access_policy": "accessPolicies",
    "role_assignment": "roleAssignments",
}


def parse_policy(raw: Dict[str, Any]) -> PolicyPayload:
    try:
        return _policy_adapter.validate_python(raw)
    except ValidationError as e:
        raise PayloadRejectedError(
            f"invalid {raw.get('kind', 'unknown')} policy {raw.get('id')}: {e.errors()[0]['msg']}",
            {"kind": raw.get("kind")},
        ) from e


class PolicyPhases:
    """Phase names the policy categories resolve references against."""

    def __init__(
        self,
        users: str = "users",
        groups: str = "groups",
        named_locations: str = "named_locations",
    ) -> None:
        self.users = users
        self.groups = groups
        self.named_locations = named_locations


def _principals(ids: List[str], phase: str, ctx: ProcessorContext) -> List[str]:
    return [
        source_id if source_id == ALL_PRINCIPALS else ctx.require(phase, source_id)
        for source_id in ids
    ]


def build_payload(
    policy: PolicyPayload,
    ctx: ProcessorContext,
    phases: PolicyPhases,
) -> Dict[str, Any]:
    """Translate a source policy into a destination payload."""
    if isinstance(policy, NamedLocationPayload):
        return {
            "displayName": policy.display_name,
            "ipRanges": policy.ip_ranges,
            "countries": policy.countries,
            "isTrusted": policy.trusted,
        }

    if isinstance(policy, AccessPolicyPayload):
        return {
            "displayName": policy.display_name,
            "state": policy.state,
            "conditions": {
                "users": {
                    "include": _principals(policy.include_users, phases.users, ctx),
                    "exclude": _principals(policy.exclude_users, phases.users, ctx),
                    "includeGroups": _principals(policy.include_groups, phases.groups, ctx),
                },
                "locations": {
                    "include": [
                        ctx.require(phases.named_locations, location_id)
                        for location_id in policy.include_locations
                    ],
                },
            },
            "grantControls": policy.grant_controls,
        }

    if isinstance(policy, RoleAssignmentPayload):
        phase = phases.users if policy.principal_type == "user" else phases.groups
        return {
            "roleDefinition": policy.role,
            "principalId": ctx.require(phase, policy.principal_id),
            "principalName": ctx.rewrite(policy.principal_name),
            "scope": policy.scope,
        }

    raise PayloadRejectedError(f"unsupported policy kind: {type(policy).__name__}")


class PolicyProcessor(Processor):
    """Migrates one policy category from the source ``policies`` listing.

    With ``claim_unknown`` the processor also takes entries whose ``kind``
    is not a known category and records them as Skipped, so they show up in
    the ledger instead of vanishing.
    """

    source_type = "policies"

    def __init__(
        self,
        kind: str,
        phases: Optional[PolicyPhases] = None,
        claim_unknown: bool = False,
    ) -> None:
        if kind not in OBJECT_TYPES:
            raise ValueError(f"unknown policy kind: {kind}")
        self.kind = kind
        self.object_type = OBJECT_TYPES[kind]
        self.phases = phases or PolicyPhases()
        self.claim_unknown = claim_unknown
        # Policies act on sign-in as soon as they exist; deleting them does not undo that
        self.rollback_safe = kind == "named_location"

    def _claims(self, raw: Dict[str, Any]) -> bool:
        kind = raw.get("kind")
        return kind == self.kind or (self.claim_unknown and kind not in OBJECT_TYPES)

    async def enumerate(self, ctx: ProcessorContext) -> AsyncIterator[Dict[str, Any]]:
        async for raw in ctx.source.list_objects(self.source_type):
            if self._claims(raw):
                yield raw

    def object_key(self, obj: Dict[str, Any]) -> str:
        return f"{obj.get('kind')}:{obj['id']}"

    def source_id(self, obj: Dict[str, Any]) -> Optional[str]:
        return str(obj["id"])

    def skip_reason(self, obj: Dict[str, Any], ctx: ProcessorContext) -> Optional[str]:
        if obj.get("kind") not in OBJECT_TYPES:
            return f"unknown policy kind: {obj.get('kind')}"
        return None

    async def create(self, obj: Dict[str, Any], ctx: ProcessorContext) -> str:
        policy = parse_policy(obj)
        payload = build_payload(policy, ctx, self.phases)
        return await ctx.destination.create_object(self.object_type, payload)

    async def find_existing(self, obj: Dict[str, Any], ctx: ProcessorContext) -> Optional[str]:
        policy = parse_policy(obj)
        if isinstance(policy, RoleAssignmentPayload):
            phase = self.phases.users if policy.principal_type == "user" else self.phases.groups
            expression = (
                f"roleDefinition eq {quote_filter(policy.role)} and "
                f"principalId eq {quote_filter(ctx.require(phase, policy.principal_id))}"
            )
        else:
            expression = f"displayName eq {quote_filter(policy.display_name)}"

        found = await ctx.destination.find_object(self.object_type, expression)
        return str(found["id"]) if found else None
