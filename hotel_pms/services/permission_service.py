"""Role forest and effective-permission resolution.

Roles are loaded into an arena keyed by role id. Loading validates the
forest once (every parent exists, no cycles, levels consistent), so
resolution at request time is a pure walk up parent links.

Resolution for a role walks from the role to its root. At each step the
role's restrictions are applied before its grants, and the first decision
reached for a token wins: a nearer role beats a farther one, and on the
same role a restriction beats a grant. Restrictions flagged ``override``
are then removed unconditionally, wherever they sit in the chain.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional, Set, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from hotel_pms.core.exceptions import InvalidHierarchy, NotFound
from hotel_pms.core.permissions import Capability, expand_token
from hotel_pms.models.role import Role, RoleType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Restriction:
    capabilities: FrozenSet[Capability]
    override: bool = False


@dataclass(frozen=True)
class RoleNode:
    id: int
    name: str
    parent_id: Optional[int]
    hierarchy_level: int
    role_type: RoleType = RoleType.HOTEL_STAFF
    grants: FrozenSet[Capability] = frozenset()
    restrictions: Tuple[Restriction, ...] = ()
    can_create_sub_roles: bool = False
    account_role_code: Optional[str] = None

    @property
    def is_root(self) -> bool:
        return self.parent_id is None


def _expand(token: str, role_name: str) -> Set[Capability]:
    try:
        return expand_token(token)
    except ValueError as exc:
        raise InvalidHierarchy(
            f"Role '{role_name}' references unknown capability token '{token}'",
            {"role": role_name, "token": token},
        ) from exc


def node_from_row(row: Role) -> RoleNode:
    """Parse a stored role into a typed node."""
    grants: Set[Capability] = set()
    for token in row.permissions or []:
        grants |= _expand(token, row.name)

    restrictions: List[Restriction] = []
    for entry in row.restrictions or []:
        if isinstance(entry, str):
            token, override = entry, False
        else:
            token, override = entry.get("token", ""), bool(entry.get("override", False))
        restrictions.append(Restriction(frozenset(_expand(token, row.name)), override))

    return RoleNode(
        id=row.id,
        name=row.name,
        parent_id=row.parent_role_id,
        hierarchy_level=row.hierarchy_level,
        role_type=row.role_type,
        grants=frozenset(grants),
        restrictions=tuple(restrictions),
        can_create_sub_roles=row.can_create_sub_roles,
        account_role_code=row.account_role_code,
    )


class RoleGraph:
    """Validated, immutable arena of role nodes."""

    def __init__(self, nodes: Dict[int, RoleNode]):
        self._nodes = nodes

    @classmethod
    def load(cls, nodes: Iterable[RoleNode]) -> "RoleGraph":
        arena: Dict[int, RoleNode] = {}
        for node in nodes:
            if node.id in arena:
                raise InvalidHierarchy(f"Duplicate role id {node.id}", {"role_id": node.id})
            arena[node.id] = node
        cls._validate(arena)
        return cls(arena)

    @classmethod
    def from_db(cls, db: Session) -> "RoleGraph":
        rows = db.execute(select(Role)).scalars().all()
        try:
            return cls.load(node_from_row(row) for row in rows)
        except InvalidHierarchy as exc:
            logger.error("Role graph failed validation: %s", exc.message)
            raise

    @staticmethod
    def _validate(arena: Dict[int, RoleNode]) -> None:
        for node in arena.values():
            if node.parent_id is not None and node.parent_id not in arena:
                raise InvalidHierarchy(
                    f"Role '{node.name}' references missing parent {node.parent_id}",
                    {"role_id": node.id, "parent_role_id": node.parent_id},
                )

        # 0 = unvisited, 1 = on current path, 2 = known acyclic
        state: Dict[int, int] = {}
        for start in arena:
            path: List[int] = []
            current: Optional[int] = start
            while current is not None and state.get(current, 0) == 0:
                state[current] = 1
                path.append(current)
                current = arena[current].parent_id
            if current is not None and state.get(current) == 1:
                cycle = path[path.index(current):]
                raise InvalidHierarchy(
                    f"Role hierarchy contains a cycle through roles {cycle}",
                    {"cycle": cycle},
                )
            for role_id in path:
                state[role_id] = 2

        for node in arena.values():
            expected = 0 if node.parent_id is None else arena[node.parent_id].hierarchy_level + 1
            if node.hierarchy_level != expected:
                raise InvalidHierarchy(
                    f"Role '{node.name}' has hierarchy_level {node.hierarchy_level}, expected {expected}",
                    {"role_id": node.id, "hierarchy_level": node.hierarchy_level, "expected": expected},
                )

    def __contains__(self, role_id: int) -> bool:
        return role_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def get(self, role_id: int) -> RoleNode:
        try:
            return self._nodes[role_id]
        except KeyError:
            raise NotFound("Role", role_id) from None

    def nodes(self) -> List[RoleNode]:
        return list(self._nodes.values())

    def with_node(self, node: RoleNode) -> "RoleGraph":
        """A new graph with ``node`` added or replaced, validated as a whole."""
        arena = dict(self._nodes)
        arena[node.id] = node
        return RoleGraph.load(arena.values())

    def ancestry(self, role_id: int) -> Iterator[Tuple[int, RoleNode]]:
        """Yield (distance, node) from the role itself up to its root."""
        distance = 0
        node: Optional[RoleNode] = self.get(role_id)
        while node is not None:
            yield distance, node
            distance += 1
            node = self._nodes[node.parent_id] if node.parent_id is not None else None

    def is_ancestor(self, ancestor_id: int, role_id: int) -> bool:
        """True when ``ancestor_id`` is strictly above ``role_id``."""
        return any(
            node.id == ancestor_id for distance, node in self.ancestry(role_id) if distance > 0
        )

    def children(self, role_id: int) -> List[RoleNode]:
        return [n for n in self._nodes.values() if n.parent_id == role_id]

    def by_account_role_code(self, role_code: str) -> Optional[RoleNode]:
        for node in self._nodes.values():
            if node.account_role_code == role_code:
                return node
        return None


@dataclass
class PermissionResolver:
    """Effective permission sets over a loaded role graph."""

    graph: RoleGraph
    _cache: Dict[int, FrozenSet[Capability]] = field(default_factory=dict, repr=False)

    def resolve(self, role_id: int) -> FrozenSet[Capability]:
        cached = self._cache.get(role_id)
        if cached is not None:
            return cached

        decided: Dict[Capability, bool] = {}
        overridden: Set[Capability] = set()
        for _distance, node in self.graph.ancestry(role_id):
            for restriction in node.restrictions:
                if restriction.override:
                    overridden |= restriction.capabilities
                for capability in restriction.capabilities:
                    decided.setdefault(capability, False)
            for capability in node.grants:
                decided.setdefault(capability, True)

        effective = frozenset(
            capability for capability, granted in decided.items()
            if granted and capability not in overridden
        )
        self._cache[role_id] = effective
        return effective

    def resolve_tokens(self, role_id: int) -> List[str]:
        """Sorted token strings, the form cached on accounts."""
        return sorted(c.value for c in self.resolve(role_id))

    def has_capability(self, role_id: int, capability: Capability) -> bool:
        return capability in self.resolve(role_id)

    def has_all(self, role_id: int, capabilities: Iterable[Capability]) -> bool:
        effective = self.resolve(role_id)
        return all(c in effective for c in capabilities)

    def can_originate(self, role_id: int) -> bool:
        """Whether new roles may be created directly beneath this role."""
        return self.graph.get(role_id).can_create_sub_roles

    def can_manage(self, actor_role_id: int, target_role_id: int) -> bool:
        """An actor manages only roles strictly below its own."""
        return self.graph.is_ancestor(actor_role_id, target_role_id)


def load_resolver(db: Session) -> PermissionResolver:
    return PermissionResolver(RoleGraph.from_db(db))
