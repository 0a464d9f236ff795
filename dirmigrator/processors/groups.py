"""Security and distribution groups, with membership rewritten through IdMapping."""

from typing import Any, AsyncIterator, Dict, List, Optional

from dirmigrator.core.processor import Processor, ProcessorContext
from dirmigrator.logging import get_logger
from dirmigrator.processors.base import quote_filter


class GroupProcessor(Processor):
    """Migrates groups; members and owners must already exist at the destination."""

    object_type = "groups"

    def __init__(self, users_phase: str = "users") -> None:
        self.users_phase = users_phase
        self.logger = get_logger("groups_processor")

    async def enumerate(self, ctx: ProcessorContext) -> AsyncIterator[Dict[str, Any]]:
        async for group in ctx.source.list_objects(self.object_type):
            yield group

    def object_key(self, obj: Dict[str, Any]) -> str:
        return str(obj["id"])

    def source_id(self, obj: Dict[str, Any]) -> Optional[str]:
        return str(obj["id"])

    def skip_reason(self, obj: Dict[str, Any], ctx: ProcessorContext) -> Optional[str]:
        if obj.get("builtIn"):
            return "built-in group"
        return None

    def _principals(
        self, group: Dict[str, Any], role: str, ctx: ProcessorContext
    ) -> List[str]:
        principals: List[str] = []
        for source_id in map(str, group.get(role, [])):
            # Guests and built-in accounts are never migrated
            if ctx.resolve(self.users_phase, source_id) is None and ctx.was_skipped(
                self.users_phase, source_id
            ):
                self.logger.warning(
                    "group_principal_skipped", group=group["id"], role=role, user=source_id
                )
                continue
            principals.append(ctx.require(self.users_phase, source_id))
        return principals

    def build_payload(self, obj: Dict[str, Any], ctx: ProcessorContext) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "displayName": obj["displayName"],
            "mailEnabled": obj.get("mailEnabled", False),
            "securityEnabled": obj.get("securityEnabled", True),
            "members": self._principals(obj, "members", ctx),
            "owners": self._principals(obj, "owners", ctx),
        }
        if obj.get("mailNickname"):
            payload["mailNickname"] = obj["mailNickname"]
        if obj.get("mail"):
            payload["mail"] = ctx.rewrite(obj["mail"])
        if obj.get("description"):
            payload["description"] = obj["description"]
        return payload

    async def create(self, obj: Dict[str, Any], ctx: ProcessorContext) -> str:
        return await ctx.destination.create_object(self.object_type, self.build_payload(obj, ctx))

    async def find_existing(self, obj: Dict[str, Any], ctx: ProcessorContext) -> Optional[str]:
        found = await ctx.destination.find_object(
            self.object_type, f"displayName eq {quote_filter(obj['displayName'])}"
        )
        return str(found["id"]) if found else None
