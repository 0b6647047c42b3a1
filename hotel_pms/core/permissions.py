"""Capability tokens.

The token set is closed: role grants and restrictions are parsed into
``Capability`` members at load time, so an unknown token is a configuration
error rather than a silently ignored string. Two wildcard forms are accepted
in role definitions: ``*`` (every capability) and ``<namespace>.*`` (every
capability in that namespace).
"""

from enum import Enum
from typing import FrozenSet, Set

WILDCARD = "*"


class Capability(str, Enum):
    # Platform
    SYSTEM_CONFIG = "system.config"
    SYSTEM_LOGS = "system.logs"

    # Vendors
    VENDOR_VIEW = "vendor.view"
    VENDOR_MANAGE = "vendor.manage"

    # Hotels
    HOTEL_CREATE = "hotel.create"
    HOTEL_MANAGE = "hotel.manage"
    HOTEL_DEACTIVATE = "hotel.deactivate"

    # Staff and roles
    STAFF_CREATE = "staff.create"
    STAFF_MANAGE = "staff.manage"
    STAFF_SUPERVISE = "staff.supervise"
    ROLES_ASSIGN = "roles.assign"
    ROLES_CREATE = "roles.create"

    # Bookings
    BOOKINGS_CREATE = "bookings.create"
    BOOKINGS_VIEW_ALL = "bookings.view_all"
    BOOKINGS_VIEW_OWN = "bookings.view_own"
    BOOKINGS_VIEW_FINANCIAL = "bookings.view_financial"
    BOOKINGS_MANAGE = "bookings.manage"
    BOOKINGS_CONFIRM = "bookings.confirm"
    BOOKINGS_CHECKIN = "bookings.manage_checkin"
    BOOKINGS_CHECKOUT = "bookings.manage_checkout"
    BOOKINGS_CANCEL = "bookings.cancel"

    # Inventory
    ROOMS_VIEW_AVAILABILITY = "rooms.view_availability"
    ROOMS_MANAGE = "rooms.manage"
    RATES_VIEW = "rates.view"
    RATES_MANAGE = "rates.manage"
    CALENDAR_VIEW = "calendar.view"

    # Guests and money
    GUESTS_MANAGE = "guests.manage"
    PAYMENTS_VIEW = "payments.view"
    PAYMENTS_PROCESS = "payments.process"
    PAYMENTS_REFUND = "payments.refund"
    CASH_LEDGER_MANAGE = "cash_ledger.manage"
    VOUCHERS_CREATE = "vouchers.create"
    VOUCHERS_APPLY = "vouchers.apply"

    # Reports
    REPORTS_VIEW = "reports.view"
    REPORTS_FULL = "reports.full_access"
    REVENUE_VIEW = "revenue.view"
    REVENUE_REPORTS = "revenue.reports"

    # Operations
    MAINTENANCE_REQUESTS = "maintenance.requests"
    KITCHEN_OPERATIONS = "kitchen.operations"
    ACCESS_CONTROL = "access.control"
    GUEST_SUPPORT = "support.guest"
    TECHNICAL_SUPPORT = "support.technical"

    @property
    def namespace(self) -> str:
        return self.value.split(".", 1)[0]


ALL_CAPABILITIES: FrozenSet[Capability] = frozenset(Capability)


def expand_token(token: str) -> Set[Capability]:
    """Expand one role-definition token into concrete capabilities.

    Raises ValueError for tokens outside the closed set.
    """
    if token == WILDCARD:
        return set(ALL_CAPABILITIES)
    if token.endswith(".*"):
        namespace = token[:-2]
        matched = {c for c in Capability if c.namespace == namespace}
        if not matched:
            raise ValueError(f"Unknown capability namespace: {token}")
        return matched
    return {Capability(token)}


def validate_token(token: str) -> str:
    """Return ``token`` unchanged if it is a known capability or wildcard."""
    expand_token(token)
    return token
