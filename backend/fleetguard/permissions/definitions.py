# Overview: Resource and action catalog for per-company permission grants.
# Each resource is defined as: (code, name, description)

# -- RESOURCES --

RESOURCE_DEFINITIONS = [
    ("users", "Users", "Company members, invitations and the audit trail"),
    ("vehicles", "Vehicles", "Fleet vehicles and their records"),
    ("equipment", "Equipment", "Equipment assets and usage"),
    ("maintenance", "Maintenance", "Maintenance records and schedules"),
    ("work_orders", "Work Orders", "Work orders, labor and parts usage"),
    ("parts_inventory", "Parts Inventory", "Parts stock and purchases"),
    ("reports", "Reports", "Reports and exports"),
    ("settings", "Settings", "Company settings and the permission matrix"),
]


# -- ACTIONS --

ACTION_DEFINITIONS = [
    ("view", "View", "Read records"),
    ("create", "Create", "Create new records"),
    ("edit", "Edit", "Modify existing records"),
    ("delete", "Delete", "Remove records"),
]


RESOURCES = [resource[0] for resource in RESOURCE_DEFINITIONS]
ACTIONS = [action[0] for action in ACTION_DEFINITIONS]
