"""
Roles and Permissions Configuration
Defines the staff role hierarchy and the permission matrix for every module.
A role is granted a permission when its level is at least the level the action requires.
"""

# Staff roles stored in profiles.role, highest first
ROLE_HIERARCHY = {
    "PLATFORM_ADMIN": 100,
    "INSTITUTION_ADMIN": 80,
    "ADMIN": 80,
    "INSTITUTION_TREASURER": 60,
    "INSTITUTION_STAFF": 40,
    "STAFF": 40,
    "INSTITUTION_AUDITOR": 20,
}

PLATFORM_ADMIN = "PLATFORM_ADMIN"
ADMIN_LEVEL = ROLE_HIERARCHY["ADMIN"]
TREASURER_LEVEL = ROLE_HIERARCHY["INSTITUTION_TREASURER"]
STAFF_LEVEL = ROLE_HIERARCHY["STAFF"]
AUDITOR_LEVEL = ROLE_HIERARCHY["INSTITUTION_AUDITOR"]

# Define modules and their actions
MODULES = {
    "members": {
        "resource": "members",
        "actions": ["create", "read", "update", "delete", "import"],
        "description": "Savings group member directory"
    },
    "groups": {
        "resource": "groups",
        "actions": ["create", "read", "update", "delete", "manage_members", "import"],
        "description": "Ibimina (savings group) management"
    },
    "transactions": {
        "resource": "transactions",
        "actions": ["create", "read", "update", "allocate", "export"],
        "description": "Mobile money transactions and allocation"
    },
    "loans": {
        "resource": "loans",
        "actions": ["read"],
        "description": "Loan portfolio"
    },
    "reconciliation": {
        "resource": "reconciliation",
        "actions": ["create", "read", "resolve"],
        "description": "Reconciliation issues"
    },
    "messaging": {
        "resource": "messaging",
        "actions": ["read", "send"],
        "description": "WhatsApp messaging and member statements"
    },
    "reports": {
        "resource": "reports",
        "actions": ["create", "read"],
        "description": "Group contribution reports"
    },
    "sms": {
        "resource": "sms",
        "actions": ["read", "update"],
        "description": "Inbound mobile money SMS records"
    },
    "staff": {
        "resource": "staff",
        "actions": ["create", "read", "update", "suspend"],
        "description": "Staff profiles and invitations"
    },
    "audit": {
        "resource": "audit",
        "actions": ["read"],
        "description": "Audit log"
    },
    "dashboard": {
        "resource": "dashboard",
        "actions": ["read"],
        "description": "Dashboard KPIs"
    },
}

# Minimum role level per action
ACTION_LEVELS = {
    "read": AUDITOR_LEVEL,
    "create": STAFF_LEVEL,
    "update": STAFF_LEVEL,
    "allocate": STAFF_LEVEL,
    "send": STAFF_LEVEL,
    "export": STAFF_LEVEL,
    "import": TREASURER_LEVEL,
    "manage_members": STAFF_LEVEL,
    "resolve": TREASURER_LEVEL,
    "delete": ADMIN_LEVEL,
    "suspend": ADMIN_LEVEL,
}

# Overrides for specific permissions
MODULE_SPECIFIC_LEVELS = {
    "staff:create": ADMIN_LEVEL,
    "staff:update": ADMIN_LEVEL,
    "staff:read": ADMIN_LEVEL,
    "audit:read": AUDITOR_LEVEL,
}

MODULE_SPECIFIC_PERMISSIONS = {
    "members": {
        "import": "Bulk import members from CSV"
    },
    "groups": {
        "manage_members": "Add or remove group members",
        "import": "Bulk import groups from CSV"
    },
    "transactions": {
        "allocate": "Allocate transactions to members",
        "export": "Export transactions to CSV"
    },
    "reconciliation": {
        "resolve": "Resolve or ignore reconciliation issues"
    },
    "messaging": {
        "send": "Send WhatsApp messages and statements"
    },
    "staff": {
        "suspend": "Suspend or reactivate staff accounts"
    },
}


def get_role_level(role: str) -> int:
    return ROLE_HIERARCHY.get((role or "").upper(), 0)


def get_required_level(permission_name: str) -> int:
    """Minimum role level for a permission such as "members:create"."""
    if permission_name in MODULE_SPECIFIC_LEVELS:
        return MODULE_SPECIFIC_LEVELS[permission_name]
    _, _, action = permission_name.partition(":")
    return ACTION_LEVELS.get(action, ADMIN_LEVEL)


# Generate permission matrix
def get_permission_matrix():
    """
    Returns a dictionary with all permissions and the roles granted them
    Format: {
        "permissions": [
            {"name": "members:create", "resource": "members", "action": "create",
             "description": "...", "min_level": 40},
            ...
        ],
        "roles": [
            {"name": "INSTITUTION_STAFF", "level": 40, "permissions": ["members:create", ...]},
            ...
        ]
    }
    """
    permissions = []

    for module_name, module_config in MODULES.items():
        resource = module_config["resource"]

        for action in module_config["actions"]:
            permission_name = f"{resource}:{action}"
            description = f"{action.capitalize()} {resource}"

            if module_name in MODULE_SPECIFIC_PERMISSIONS and action in MODULE_SPECIFIC_PERMISSIONS[module_name]:
                description = MODULE_SPECIFIC_PERMISSIONS[module_name][action]

            permissions.append({
                "name": permission_name,
                "resource": resource,
                "action": action,
                "description": description,
                "min_level": get_required_level(permission_name)
            })

    roles = []
    for role_name, level in ROLE_HIERARCHY.items():
        roles.append({
            "name": role_name,
            "level": level,
            "permissions": sorted(p["name"] for p in permissions if level >= p["min_level"])
        })

    return {
        "permissions": permissions,
        "roles": roles
    }


def permissions_for_role(role: str):
    level = get_role_level(role)
    return sorted(p["name"] for p in PERMISSION_MATRIX["permissions"] if level >= p["min_level"])


PERMISSION_MATRIX = get_permission_matrix()
