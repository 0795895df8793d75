# Overview: Permission catalog package.
# Re-exports all public APIs for short imports.

from .definitions import (
    RESOURCE_DEFINITIONS,
    ACTION_DEFINITIONS,
    RESOURCES,
    ACTIONS,
)
from .roles import (
    ROLE_DEFINITIONS,
    DEFAULT_ROLE_ACTIONS,
    DEFAULT_ROLE_PERMISSIONS,
    ADMIN_ROLE,
    MEMBER_ROLE,
    UNAFFILIATED_ROLE,
)
from .helpers import (
    get_all_role_names,
    validate_resource,
    validate_action,
    validate_role,
    iter_default_grants,
)

__all__ = [
    "RESOURCE_DEFINITIONS",
    "ACTION_DEFINITIONS",
    "RESOURCES",
    "ACTIONS",
    "ROLE_DEFINITIONS",
    "DEFAULT_ROLE_ACTIONS",
    "DEFAULT_ROLE_PERMISSIONS",
    "ADMIN_ROLE",
    "MEMBER_ROLE",
    "UNAFFILIATED_ROLE",
    "get_all_role_names",
    "validate_resource",
    "validate_action",
    "validate_role",
    "iter_default_grants",
]
