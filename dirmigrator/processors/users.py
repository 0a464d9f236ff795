"""User accounts, created managers-first."""

from typing import Any, AsyncIterator, Dict, List, Optional, Set

from dirmigrator.core.processor import Processor, ProcessorContext
from dirmigrator.logging import get_logger
from dirmigrator.processors.base import quote_filter
from dirmigrator.utils.errors import PayloadRejectedError


def collect_reports(
    user_id: str,
    users_by_id: Dict[str, Dict[str, Any]],
    reports_by_manager: Dict[str, List[str]],
    visited: Optional[Set[str]] = None,
) -> List[Dict[str, Any]]:
    """Return ``user_id`` followed by everyone below them in the org tree.

    Each call returns only the records it collected; callers concatenate.
    ``visited`` guards against manager cycles and is never shared across
    sibling subtrees' results.
    """
    visited = (visited or set()) | {user_id}
    collected = [users_by_id[user_id]]
    for report_id in reports_by_manager.get(user_id, []):
        if report_id in visited:
            continue
        collected.extend(collect_reports(report_id, users_by_id, reports_by_manager, visited))
    return collected


def order_by_manager(users: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Order users so every manager precedes their reports.

    Users with no manager, or a manager outside ``users``, are roots and
    keep their source order. Users only reachable through a manager cycle
    are appended at the end in source order.
    """
    users_by_id = {user["id"]: user for user in users}
    reports_by_manager: Dict[str, List[str]] = {}
    roots: List[str] = []

    for user in users:
        manager_id = user.get("managerId")
        if manager_id and manager_id in users_by_id and manager_id != user["id"]:
            reports_by_manager.setdefault(manager_id, []).append(user["id"])
        else:
            roots.append(user["id"])

    ordered: List[Dict[str, Any]] = []
    for root_id in roots:
        ordered.extend(collect_reports(root_id, users_by_id, reports_by_manager))

    placed = {user["id"] for user in ordered}
    ordered.extend(user for user in users if user["id"] not in placed)
    return ordered


class UserProcessor(Processor):
    """Migrates user accounts, rewriting principal names to the destination domain."""

    object_type = "users"

    def __init__(self, phase: str = "users") -> None:
        self.phase = phase
        self.logger = get_logger("users_processor")

    async def enumerate(self, ctx: ProcessorContext) -> AsyncIterator[Dict[str, Any]]:
        users = [user async for user in ctx.source.list_objects(self.object_type)]
        for user in order_by_manager(users):
            yield user

    def object_key(self, obj: Dict[str, Any]) -> str:
        return str(obj["id"])

    def source_id(self, obj: Dict[str, Any]) -> Optional[str]:
        return str(obj["id"])

    def skip_reason(self, obj: Dict[str, Any], ctx: ProcessorContext) -> Optional[str]:
        if obj.get("builtIn"):
            return "built-in account"
        if obj.get("userType") == "Guest":
            return "guest accounts are re-invited, not migrated"
        return None

    def build_payload(self, obj: Dict[str, Any], ctx: ProcessorContext) -> Dict[str, Any]:
        upn = obj.get("userPrincipalName")
        if not upn:
            raise PayloadRejectedError(f"user {obj.get('id')} has no userPrincipalName")

        payload: Dict[str, Any] = {
            "userPrincipalName": ctx.rewrite(upn),
            "displayName": obj.get("displayName") or upn,
            "accountEnabled": obj.get("accountEnabled", True),
        }
        if obj.get("mail"):
            payload["mail"] = ctx.rewrite(obj["mail"])
        for field in ("givenName", "surname", "jobTitle", "department"):
            if obj.get(field):
                payload[field] = obj[field]

        manager_id = obj.get("managerId")
        if manager_id:
            destination_manager = ctx.resolve(self.phase, manager_id)
            if destination_manager:
                payload["managerId"] = destination_manager
            else:
                self.logger.warning("manager_unresolved", user=obj["id"], manager=manager_id)
        return payload

    async def create(self, obj: Dict[str, Any], ctx: ProcessorContext) -> str:
        return await ctx.destination.create_object(self.object_type, self.build_payload(obj, ctx))

    async def find_existing(self, obj: Dict[str, Any], ctx: ProcessorContext) -> Optional[str]:
        upn = ctx.rewrite(obj["userPrincipalName"])
        found = await ctx.destination.find_object(
            self.object_type, f"userPrincipalName eq {quote_filter(upn)}"
        )
        return str(found["id"]) if found else None
