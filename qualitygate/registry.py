from __future__ import annotations

from typing import Iterable

from qualitygate.errors import UnknownDomainError
from qualitygate.models import ExecutionKind, RuleDomain
from qualitygate.schemas import RuleDefinition
from qualitygate.store import SqlStore


class RuleRegistry:
    """Resolves the active rules that apply to a validation request."""

    def __init__(self, store: SqlStore, extra_domains: Iterable[str] = ()) -> None:
        self.store = store
        self._domains = frozenset(domain.value for domain in RuleDomain) | frozenset(extra_domains)

    @property
    def domains(self) -> frozenset[str]:
        return self._domains

    def check_domain(self, domain: str) -> None:
        if domain not in self._domains:
            raise UnknownDomainError(
                f"Unknown validation domain: {domain}",
                domain=domain,
                known=sorted(self._domains),
            )

    def resolve(
        self,
        domain: str,
        execution_kind: ExecutionKind | str,
        names: Iterable[str] | None = None,
    ) -> list[RuleDefinition]:
        """Return active rules for ``domain`` and ``execution_kind``, ordered by
        name. An empty list means there is nothing to check."""
        self.check_domain(domain)
        kind = ExecutionKind(execution_kind)
        rows = self.store.active_rules(domain, kind.value, names)
        return [RuleDefinition(**row) for row in rows]
