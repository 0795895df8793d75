# Overview: Utility functions for catalog lookups and validation.

from .definitions import RESOURCES, ACTIONS
from .roles import ROLE_DEFINITIONS, DEFAULT_ROLE_PERMISSIONS


def get_all_role_names():
    """Get list of all baseline role names."""
    return [role[0] for role in ROLE_DEFINITIONS]


def validate_resource(resource):
    """Check if a resource code is known."""
    return resource in RESOURCES


def validate_action(action):
    """Check if an action code is known."""
    return action in ACTIONS


def validate_role(role):
    """Check if a role name is known."""
    return role in get_all_role_names()


def iter_default_grants():
    """Yield every (role, resource, action) of the default templates."""
    for role, pairs in DEFAULT_ROLE_PERMISSIONS.items():
        for resource, action in pairs:
            yield role, resource, action
