"""Principal name rewriting between source and destination domains."""

from typing import Iterable, List, Sequence

from pydantic import BaseModel, ConfigDict, Field

_BOUNDARIES = ("@", ".")


class RewriteRule(BaseModel):
    """Rewrite principals ending in ``source`` to end in ``destination``."""

    model_config = ConfigDict(frozen=True)

    source: str = Field(min_length=1)
    destination: str

    def matches(self, principal: str) -> bool:
        """Whether the rule applies to ``principal``.

        The suffix must match case-insensitively and either be the whole
        string or start right after an ``@`` or ``.``, so that
        ``contoso.com`` matches ``bob@contoso.com`` and ``eu.contoso.com``
        but not ``bob@notcontoso.com``.
        """
        suffix = self.source.lower()
        lowered = principal.lower()
        if not lowered.endswith(suffix):
            return False
        if len(lowered) == len(suffix) or suffix.startswith(_BOUNDARIES):
            return True
        return lowered[-len(suffix) - 1] in _BOUNDARIES

    def apply(self, principal: str) -> str:
        return principal[: len(principal) - len(self.source)] + self.destination


def rewrite_principal(principal: str, rules: Sequence[RewriteRule]) -> str:
    """Rewrite ``principal`` with the first matching rule.

    Rules are tried in the order given; ordering them most-specific-first is
    up to the caller. Principals no rule matches are returned unchanged.
    """
    for rule in rules:
        if rule.matches(principal):
            return rule.apply(principal)
    return principal


class RewriteTable:
    """An ordered, reusable set of rewrite rules."""

    def __init__(self, rules: Iterable[RewriteRule] = ()) -> None:
        self.rules: List[RewriteRule] = list(rules)

    def __call__(self, principal: str) -> str:
        return rewrite_principal(principal, self.rules)

    def __len__(self) -> int:
        return len(self.rules)

    def rewrite_all(self, principals: Iterable[str]) -> List[str]:
        return [self(principal) for principal in principals]
