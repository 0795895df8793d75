# Overview: Baseline role templates seeded into every company.

from .definitions import RESOURCES, ACTIONS


# (name, description)
ROLE_DEFINITIONS = [
    ("admin", "Full system access"),
    ("manager", "Department or team manager"),
    ("maintenance", "Maintenance staff"),
    ("viewer", "Read-only access"),
    ("member", "Linked automatically by email domain"),
    ("user", "Unaffiliated account"),
]

ADMIN_ROLE = "admin"
MEMBER_ROLE = "member"
UNAFFILIATED_ROLE = "user"


# Role -> actions granted on every resource
DEFAULT_ROLE_ACTIONS = {
    "admin": ACTIONS,
    "manager": ACTIONS,
    "maintenance": ["view", "create"],
    "viewer": ["view"],
    "member": ["view"],
    "user": ["view"],
}


# Role -> list of (resource, action) tuples
DEFAULT_ROLE_PERMISSIONS = {
    role: [(resource, action) for resource in RESOURCES for action in actions]
    for role, actions in DEFAULT_ROLE_ACTIONS.items()
}
