"""Tests for role graph validation and effective permission resolution."""

import random

import pytest

from hotel_pms.core.exceptions import InvalidHierarchy, NotFound
from hotel_pms.core.permissions import ALL_CAPABILITIES, Capability, expand_token
from hotel_pms.models.role import Role
from hotel_pms.services.permission_service import (
    PermissionResolver,
    Restriction,
    RoleGraph,
    RoleNode,
    load_resolver,
    node_from_row,
)

C = Capability


def node(id, parent=None, level=0, grants=(), restrict=(), override=(), sub_roles=False, code=None):
    restrictions = []
    if restrict:
        restrictions.append(Restriction(frozenset(restrict), override=False))
    if override:
        restrictions.append(Restriction(frozenset(override), override=True))
    return RoleNode(
        id=id,
        name=f"role-{id}",
        parent_id=parent,
        hierarchy_level=level,
        grants=frozenset(grants),
        restrictions=tuple(restrictions),
        can_create_sub_roles=sub_roles,
        account_role_code=code,
    )


def resolver_for(*nodes):
    return PermissionResolver(RoleGraph.load(nodes))


# ============== Graph validation ==============

class TestRoleGraphValidation:
    def test_missing_parent(self):
        with pytest.raises(InvalidHierarchy, match="missing parent"):
            RoleGraph.load([node(1), node(2, parent=99, level=1)])

    def test_cycle(self):
        with pytest.raises(InvalidHierarchy, match="cycle"):
            RoleGraph.load([node(1, parent=2, level=1), node(2, parent=1, level=1)])

    def test_self_parent_is_a_cycle(self):
        with pytest.raises(InvalidHierarchy):
            RoleGraph.load([node(1, parent=1, level=1)])

    def test_level_must_be_parent_plus_one(self):
        with pytest.raises(InvalidHierarchy, match="hierarchy_level"):
            RoleGraph.load([node(1), node(2, parent=1, level=2)])

    def test_root_must_be_level_zero(self):
        with pytest.raises(InvalidHierarchy):
            RoleGraph.load([node(1, level=1)])

    def test_duplicate_id(self):
        with pytest.raises(InvalidHierarchy, match="Duplicate"):
            RoleGraph.load([node(1), node(1)])

    def test_forest_with_several_roots(self):
        graph = RoleGraph.load([node(1), node(2), node(3, parent=1, level=1), node(4, parent=3, level=2)])
        assert len(graph) == 4
        assert [n.id for _, n in graph.ancestry(4)] == [4, 3, 1]
        assert graph.is_ancestor(1, 4)
        assert not graph.is_ancestor(2, 4)
        assert not graph.is_ancestor(4, 4)
        assert [n.id for n in graph.children(1)] == [3]

    def test_with_node_revalidates(self):
        graph = RoleGraph.load([node(1), node(2, parent=1, level=1)])
        with pytest.raises(InvalidHierarchy):
            graph.with_node(node(1, parent=2, level=2))
        assert 3 in graph.with_node(node(3, parent=2, level=2))

    def test_unknown_role(self):
        graph = RoleGraph.load([node(1)])
        with pytest.raises(NotFound):
            graph.get(2)


class TestNodeFromRow:
    def test_parses_tokens_and_restrictions(self):
        row = Role(
            id=5, name="Desk", parent_role_id=1, hierarchy_level=1,
            permissions=["rates.*", "calendar.view"],
            restrictions=["rates.manage", {"token": "system.*", "override": True}],
            can_create_sub_roles=False,
        )
        parsed = node_from_row(row)
        assert parsed.grants == {C.RATES_VIEW, C.RATES_MANAGE, C.CALENDAR_VIEW}
        assert parsed.restrictions[0] == Restriction(frozenset({C.RATES_MANAGE}), False)
        assert parsed.restrictions[1].override is True
        assert C.SYSTEM_CONFIG in parsed.restrictions[1].capabilities

    @pytest.mark.parametrize("token", ["bookings.teleport", "nosuch.*", "bookings", ""])
    def test_unknown_token_is_a_hierarchy_error(self, token):
        row = Role(id=1, name="Broken", hierarchy_level=0, permissions=[token], restrictions=[])
        with pytest.raises(InvalidHierarchy, match="unknown capability"):
            node_from_row(row)


# ============== Resolution ==============

class TestResolution:
    def test_wildcard_root(self):
        resolver = resolver_for(node(1, grants=ALL_CAPABILITIES))
        assert resolver.resolve(1) == ALL_CAPABILITIES

    def test_child_inherits_ancestor_grants(self):
        resolver = resolver_for(
            node(1, grants=expand_token("bookings.*")),
            node(2, parent=1, level=1, grants={C.CALENDAR_VIEW}),
        )
        effective = resolver.resolve(2)
        assert C.BOOKINGS_CANCEL in effective
        assert C.CALENDAR_VIEW in effective
        assert C.CALENDAR_VIEW not in resolver.resolve(1)

    def test_nearer_restriction_beats_farther_grant(self):
        resolver = resolver_for(
            node(1, grants=expand_token("bookings.*")),
            node(2, parent=1, level=1, restrict={C.BOOKINGS_CANCEL}),
        )
        assert C.BOOKINGS_CANCEL not in resolver.resolve(2)
        assert C.BOOKINGS_CREATE in resolver.resolve(2)

    def test_nearer_grant_beats_farther_restriction(self):
        resolver = resolver_for(
            node(1, grants=expand_token("bookings.*")),
            node(2, parent=1, level=1, restrict={C.BOOKINGS_CANCEL}),
            node(3, parent=2, level=2, grants={C.BOOKINGS_CANCEL}),
        )
        assert C.BOOKINGS_CANCEL in resolver.resolve(3)

    def test_restriction_beats_grant_on_same_role(self):
        resolver = resolver_for(node(1, grants={C.BOOKINGS_CREATE}, restrict={C.BOOKINGS_CREATE}))
        assert resolver.resolve(1) == frozenset()

    def test_override_restriction_wins_from_any_distance(self):
        resolver = resolver_for(
            node(1, grants=ALL_CAPABILITIES, override=expand_token("system.*")),
            node(2, parent=1, level=1),
            node(3, parent=2, level=2, grants={C.SYSTEM_CONFIG}),
        )
        effective = resolver.resolve(3)
        assert C.SYSTEM_CONFIG not in effective
        assert C.SYSTEM_LOGS not in effective
        assert C.HOTEL_MANAGE in effective

    def test_override_on_descendant_does_not_affect_ancestor(self):
        resolver = resolver_for(
            node(1, grants={C.REVENUE_VIEW}),
            node(2, parent=1, level=1, override={C.REVENUE_VIEW}),
        )
        assert C.REVENUE_VIEW in resolver.resolve(1)
        assert C.REVENUE_VIEW not in resolver.resolve(2)

    def test_helpers(self):
        resolver = resolver_for(node(1, grants={C.RATES_VIEW, C.RATES_MANAGE}))
        assert resolver.has_capability(1, C.RATES_VIEW)
        assert resolver.has_all(1, [C.RATES_VIEW, C.RATES_MANAGE])
        assert not resolver.has_all(1, [C.RATES_VIEW, C.REVENUE_VIEW])
        assert resolver.resolve_tokens(1) == ["rates.manage", "rates.view"]

    def test_can_originate_and_can_manage(self):
        resolver = resolver_for(
            node(1, sub_roles=True),
            node(2, parent=1, level=1),
            node(3, parent=2, level=2),
            node(4),
        )
        assert resolver.can_originate(1)
        assert not resolver.can_originate(2)
        assert resolver.can_manage(1, 3)
        assert resolver.can_manage(2, 3)
        assert not resolver.can_manage(3, 3)
        assert not resolver.can_manage(3, 2)
        assert not resolver.can_manage(4, 3)


# ============== Properties over random forests ==============

def random_forest(rng, size=12):
    capabilities = sorted(Capability, key=lambda c: c.value)
    nodes = []
    for role_id in range(1, size + 1):
        parent = None
        if nodes and rng.random() < 0.8:
            parent = rng.choice(nodes)
        nodes.append(
            node(
                role_id,
                parent=parent.id if parent else None,
                level=parent.hierarchy_level + 1 if parent else 0,
                grants=rng.sample(capabilities, rng.randint(0, 8)),
                restrict=rng.sample(capabilities, rng.randint(0, 4)),
                override=rng.sample(capabilities, rng.randint(0, 1)),
            )
        )
    return nodes


class TestPermissionProperties:
    @pytest.mark.parametrize("seed", range(25))
    def test_own_grants_survive_unless_restricted_in_chain(self, seed):
        nodes = random_forest(random.Random(seed))
        graph = RoleGraph.load(nodes)
        resolver = PermissionResolver(graph)

        for role in nodes:
            restricted = set()
            for _, ancestor in graph.ancestry(role.id):
                for restriction in ancestor.restrictions:
                    restricted |= restriction.capabilities
            assert set(role.grants) - restricted <= resolver.resolve(role.id)

    @pytest.mark.parametrize("seed", range(25))
    def test_adding_ancestor_grant_never_removes_descendant_capability(self, seed):
        rng = random.Random(seed)
        nodes = random_forest(rng)
        graph = RoleGraph.load(nodes)
        before = PermissionResolver(graph)

        ancestor = rng.choice(nodes)
        extra = rng.choice(list(Capability))
        widened = RoleNode(
            id=ancestor.id,
            name=ancestor.name,
            parent_id=ancestor.parent_id,
            hierarchy_level=ancestor.hierarchy_level,
            grants=ancestor.grants | {extra},
            restrictions=ancestor.restrictions,
        )
        after = PermissionResolver(graph.with_node(widened))

        for role in nodes:
            assert before.resolve(role.id) <= after.resolve(role.id)


class TestLoadResolver:
    def test_default_catalogue_loads(self, db_session, roles):
        resolver = load_resolver(db_session)
        assert len(resolver.graph) == len(roles)
        assert {n.name for n in resolver.graph.nodes()} == set(roles)
        system = roles["System Administrator"]
        assert resolver.resolve(system.id) == ALL_CAPABILITIES
