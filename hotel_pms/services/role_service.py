"""Role catalogue and role creation."""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from hotel_pms.core.exceptions import InvalidHierarchy, InvalidInput, NotFound, PermissionDenied
from hotel_pms.core.permissions import Capability, validate_token
from hotel_pms.models.role import Role, RoleType
from hotel_pms.services.identity_service import AccountRole
from hotel_pms.services.permission_service import PermissionResolver, RoleGraph, node_from_row

logger = logging.getLogger(__name__)


def _only(*keep: Capability) -> List[Dict[str, Any]]:
    """Restrict every capability except ``keep`` (nearest-wins, not override)."""
    kept = set(keep)
    return [{"token": c.value, "override": False} for c in Capability if c not in kept]


def _never(*tokens: str) -> List[Dict[str, Any]]:
    return [{"token": t, "override": True} for t in tokens]


C = Capability

# name -> definition; parents are referenced by name and listed first
DEFAULT_ROLES: List[Dict[str, Any]] = [
    {
        "name": "System Administrator",
        "role_type": RoleType.SYSTEM,
        "permissions": ["*"],
        "can_create_sub_roles": True,
        "description": "Platform administrator with full access",
    },
    {
        "name": "Vendor",
        "role_type": RoleType.VENDOR,
        "permissions": ["*"],
        "restrictions": _never("system.*"),
        "can_create_sub_roles": True,
        "description": "Operator of one or more hotels",
    },
    {
        "name": "Hotel Admin",
        "role_type": RoleType.HOTEL_ADMIN,
        "account_role_code": AccountRole.HOTEL_ADMIN.value,
        "permissions": ["*"],
        "restrictions": _never("system.*", "vendor.*", "hotel.create"),
        "can_create_sub_roles": True,
        "description": "Hotel administrator; creates and manages all hotel staff",
    },
    {
        "name": "Manager",
        "parent": "Hotel Admin",
        "account_role_code": AccountRole.MANAGER.value,
        "permissions": ["bookings.*", "rooms.*", "rates.*", "reports.view", "revenue.view", "staff.supervise"],
        "restrictions": _only(
            C.BOOKINGS_CREATE, C.BOOKINGS_VIEW_ALL, C.BOOKINGS_VIEW_OWN, C.BOOKINGS_VIEW_FINANCIAL,
            C.BOOKINGS_MANAGE, C.BOOKINGS_CONFIRM, C.BOOKINGS_CHECKIN, C.BOOKINGS_CHECKOUT,
            C.BOOKINGS_CANCEL, C.ROOMS_VIEW_AVAILABILITY, C.ROOMS_MANAGE, C.RATES_VIEW, C.RATES_MANAGE,
            C.CALENDAR_VIEW, C.GUESTS_MANAGE, C.PAYMENTS_VIEW, C.PAYMENTS_PROCESS, C.PAYMENTS_REFUND,
            C.REPORTS_VIEW, C.REVENUE_VIEW, C.STAFF_SUPERVISE, C.STAFF_CREATE,
        ),
        "description": "Full operational access except admin functions",
    },
    {
        "name": "Finance Department",
        "parent": "Hotel Admin",
        "account_role_code": AccountRole.FINANCE.value,
        "permissions": ["bookings.view_financial", "revenue.*", "rates.view", "payments.view", "payments.refund"],
        "restrictions": _only(
            C.BOOKINGS_VIEW_FINANCIAL, C.REVENUE_VIEW, C.REVENUE_REPORTS, C.RATES_VIEW,
            C.PAYMENTS_VIEW, C.PAYMENTS_REFUND,
        ),
        "description": "Booking revenue and financial KPIs only",
    },
    {
        "name": "Front Desk",
        "parent": "Hotel Admin",
        "account_role_code": AccountRole.FRONT_DESK.value,
        "permissions": [
            "bookings.create", "bookings.view_all", "bookings.confirm", "bookings.manage_checkin",
            "bookings.manage_checkout", "bookings.cancel", "calendar.view", "rooms.view_availability",
            "guests.manage", "payments.process", "cash_ledger.manage",
        ],
        "restrictions": _only(
            C.BOOKINGS_CREATE, C.BOOKINGS_VIEW_ALL, C.BOOKINGS_CONFIRM, C.BOOKINGS_CHECKIN,
            C.BOOKINGS_CHECKOUT, C.BOOKINGS_CANCEL, C.CALENDAR_VIEW, C.ROOMS_VIEW_AVAILABILITY,
            C.GUESTS_MANAGE, C.PAYMENTS_PROCESS, C.CASH_LEDGER_MANAGE,
        ),
        "description": "Booking management, check-in/out, cash transactions",
    },
    {
        "name": "Booking Agent",
        "parent": "Front Desk",
        "account_role_code": AccountRole.BOOKING_AGENT.value,
        "permissions": ["rooms.view_availability", "bookings.create", "bookings.view_own", "vouchers.apply"],
        "restrictions": _only(
            C.ROOMS_VIEW_AVAILABILITY, C.BOOKINGS_CREATE, C.BOOKINGS_VIEW_OWN, C.VOUCHERS_APPLY,
        ),
        "description": "Limited booking access with special rates via vouchers",
    },
    {
        "name": "Gatekeeper",
        "parent": "Hotel Admin",
        "account_role_code": AccountRole.GATEKEEPER.value,
        "permissions": ["access.control"],
        "restrictions": _only(C.ACCESS_CONTROL),
    },
    {
        "name": "Support",
        "parent": "Hotel Admin",
        "account_role_code": AccountRole.SUPPORT.value,
        "permissions": ["support.guest"],
        "restrictions": _only(C.GUEST_SUPPORT),
    },
    {
        "name": "Tech Support",
        "parent": "Hotel Admin",
        "account_role_code": AccountRole.TECH_SUPPORT.value,
        "permissions": ["support.technical"],
        "restrictions": _only(C.TECHNICAL_SUPPORT),
    },
    {
        "name": "Service Staff",
        "parent": "Hotel Admin",
        "account_role_code": AccountRole.SERVICE_STAFF.value,
        "permissions": ["support.guest"],
        "restrictions": _only(C.GUEST_SUPPORT),
    },
    {
        "name": "Maintenance",
        "parent": "Hotel Admin",
        "account_role_code": AccountRole.MAINTENANCE.value,
        "permissions": ["maintenance.requests"],
        "restrictions": _only(C.MAINTENANCE_REQUESTS),
    },
    {
        "name": "Kitchen",
        "parent": "Hotel Admin",
        "account_role_code": AccountRole.KITCHEN.value,
        "permissions": ["kitchen.operations"],
        "restrictions": _only(C.KITCHEN_OPERATIONS),
    },
]


class RoleService:
    """Creates roles while keeping the stored forest valid."""

    def __init__(self, db: Session):
        self.db = db

    def install_default_roles(self) -> Dict[str, Role]:
        """Insert the default role forest if the roles table is empty."""
        existing = self.db.execute(select(func.count(Role.id))).scalar_one()
        if existing:
            rows = self.db.execute(select(Role)).scalars().all()
            return {row.name: row for row in rows}

        by_name: Dict[str, Role] = {}
        for definition in DEFAULT_ROLES:
            parent = by_name.get(definition.get("parent", ""))
            role = Role(
                name=definition["name"],
                parent_role_id=parent.id if parent else None,
                hierarchy_level=parent.hierarchy_level + 1 if parent else 0,
                role_type=definition.get("role_type", RoleType.HOTEL_STAFF),
                permissions=list(definition["permissions"]),
                restrictions=list(definition.get("restrictions", [])),
                can_create_sub_roles=definition.get("can_create_sub_roles", False),
                account_role_code=definition.get("account_role_code"),
                description=definition.get("description"),
            )
            self.db.add(role)
            self.db.flush()
            by_name[role.name] = role

        # Fail here rather than at first request if the catalogue is broken
        RoleGraph.from_db(self.db)
        self.db.commit()
        logger.info("Installed %d default roles", len(by_name))
        return by_name

    def create_role(
        self,
        actor_role_id: int,
        parent_role_id: int,
        name: str,
        permissions: List[str],
        restrictions: Optional[List[Dict[str, Any]]] = None,
        can_create_sub_roles: bool = False,
        account_role_code: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Role:
        """Create a role beneath ``parent_role_id`` on behalf of ``actor_role_id``.

        The parent must allow sub-roles, and the actor must hold
        ``roles.create`` and be the parent or one of its ancestors.
        """
        graph = RoleGraph.from_db(self.db)
        resolver = PermissionResolver(graph)
        parent = graph.get(parent_role_id)

        if not resolver.can_originate(parent.id):
            raise PermissionDenied(
                f"Role '{parent.name}' does not allow sub-roles",
                {"parent_role_id": parent.id},
            )
        if not resolver.has_capability(actor_role_id, Capability.ROLES_CREATE):
            raise PermissionDenied("Actor may not create roles", {"actor_role_id": actor_role_id})
        if actor_role_id != parent.id and not graph.is_ancestor(actor_role_id, parent.id):
            raise PermissionDenied(
                "Actor may only create roles within its own subtree",
                {"actor_role_id": actor_role_id, "parent_role_id": parent.id},
            )

        try:
            tokens = [validate_token(t) for t in permissions]
            for entry in restrictions or []:
                validate_token(entry["token"] if isinstance(entry, dict) else entry)
        except (ValueError, KeyError) as exc:
            raise InvalidInput(f"Invalid capability token: {exc}") from exc
        if account_role_code is not None and account_role_code not in AccountRole._value2member_map_:
            raise InvalidInput(f"Unknown role code: {account_role_code}", {"role_code": account_role_code})
        if self.db.execute(select(Role.id).where(Role.name == name)).first():
            raise InvalidInput(f"Role '{name}' already exists", {"name": name})

        role = Role(
            name=name,
            parent_role_id=parent.id,
            hierarchy_level=parent.hierarchy_level + 1,
            role_type=RoleType.HOTEL_STAFF,
            permissions=tokens,
            restrictions=list(restrictions or []),
            can_create_sub_roles=can_create_sub_roles,
            account_role_code=account_role_code,
            description=description,
        )
        self.db.add(role)
        self.db.flush()
        # Re-validate before commit; a broken graph never reaches readers
        try:
            graph.with_node(node_from_row(role))
        except InvalidHierarchy:
            self.db.rollback()
            raise
        self.db.commit()
        self.db.refresh(role)
        logger.info("Role '%s' (id=%s) created under '%s'", role.name, role.id, parent.name)
        return role

    def get_role(self, role_id: int) -> Role:
        role = self.db.get(Role, role_id)
        if role is None:
            raise NotFound("Role", role_id)
        return role
