"""
Static fallback policy used while the authorization service is unreachable.

The table fails closed: only explicitly enumerated (resource, relation)
pairs are allowed, everything else is denied. An outage is never read as
permission.
"""

import logging
import re
from typing import FrozenSet, Iterable, Set, Tuple

from .models import parse_resource

logger = logging.getLogger(__name__)

Rule = Tuple[str, str]

_ID_SEPARATORS = re.compile(r"[:|@._-]")


def parse_rule(rule: str) -> Rule:
    """Parse ``"document:plan#viewer"`` into ``("document:plan", "viewer")``."""
    resource, sep, relation = rule.rpartition("#")
    if not sep or not relation:
        raise ValueError(f"fallback rule {rule!r} must look like 'type:id#relation'")
    parse_resource(resource)
    return resource, relation


class FallbackPolicyTable:
    """
    Deterministic allow/deny decisions for a bounded set of resource patterns.

    A rule's resource may be ``type:*`` to cover every instance of a type.

    ``admin_rules`` are a development-only convenience: they apply to
    principals whose id contains ``admin_marker``, and only when
    ``allow_admin_marker`` is set. Production wiring never sets it.
    """

    def __init__(
        self,
        rules: Iterable[str] = (),
        admin_rules: Iterable[str] = (),
        allow_admin_marker: bool = False,
        admin_marker: str = "admin",
    ):
        self.rules: FrozenSet[Rule] = frozenset(parse_rule(r) for r in rules)
        self.admin_rules: FrozenSet[Rule] = frozenset(parse_rule(r) for r in admin_rules)
        self.allow_admin_marker = allow_admin_marker
        self.admin_marker = admin_marker
        if allow_admin_marker:
            logger.warning(
                "Fallback admin marker heuristic is enabled; this is a development-only setting"
            )

    @classmethod
    def from_settings(cls, settings) -> "FallbackPolicyTable":
        if settings.dev_admin_marker_enabled and settings.is_production:
            logger.warning("Ignoring dev_admin_marker_enabled in production environment")
        return cls(
            rules=settings.fallback_rules,
            admin_rules=settings.admin_fallback_rules,
            allow_admin_marker=settings.admin_marker_heuristic_active,
            admin_marker=settings.admin_marker,
        )

    def decide(self, principal: str, relation: str, resource: str) -> bool:
        """Return True only for explicitly listed pairs; deny by default."""
        if self._matches(self.rules, relation, resource):
            return True
        if self._has_admin_marker(principal):
            return self._matches(self.admin_rules, relation, resource)
        return False

    def allowed_objects(self, principal: str, relation: str, object_type: str) -> Set[str]:
        """Explicitly listed instances of ``object_type`` the principal may hold ``relation`` on."""
        rules = set(self.rules)
        if self._has_admin_marker(principal):
            rules |= self.admin_rules
        return {
            resource
            for resource, rule_relation in rules
            if rule_relation == relation
            and resource.startswith(f"{object_type}:")
            and not resource.endswith(":*")
        }

    def _has_admin_marker(self, principal: str) -> bool:
        """The marker must be a whole segment: ``admin:1`` or ``user:admin-7``, not ``user:badminton``."""
        if not (self.allow_admin_marker and self.admin_marker):
            return False
        return self.admin_marker in _ID_SEPARATORS.split(principal)

    @staticmethod
    def _matches(rules: FrozenSet[Rule], relation: str, resource: str) -> bool:
        if (resource, relation) in rules:
            return True
        resource_type, _, _ = resource.partition(":")
        return (f"{resource_type}:*", relation) in rules
