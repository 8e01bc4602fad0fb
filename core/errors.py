"""
core/errors.py -- User-facing error messages and storage error sanitizing.

Every message a service can put in a result's .error lives here, so callers
and tests compare against one set of constants.

sanitize_error() is the only path by which an unexpected exception turns
into a result: the detail goes to the log with the operation name and IDs,
the caller gets GENERIC_ERROR. Raw driver messages can contain SQL, hostnames
or row data and must not leak into responses.
"""

import logging

GENERIC_ERROR = "We are facing some issues in our system, please try again later."

# NotFound
SCOPE_NOT_FOUND = "Scope not found"
PARENT_NOT_FOUND = "Parent scope not found"
ROOT_NOT_FOUND = "Root scope not found"

# Invariant violations
SYSTEM_SCOPE_IMMUTABLE = "Cannot modify system scopes"
SYSTEM_SCOPE_BRANDING = "Cannot modify branding for system scopes"
SELF_PARENT = "Cannot set scope as its own parent"
DESCENDANT_PARENT = "Cannot set a descendant as parent (would create cycle)"

# Validation
FIRM_NAME_REQUIRED = "Firm name is required"
ORG_STRUCTURE_REQUIRED = "Organization structure is required"

# Storage outcomes that are not exceptions
ALREADY_ASSIGNED = "Scope already assigned to user"
CREATE_SCOPE_FAILED = "Failed to create scope"
UPDATE_SCOPE_FAILED = "Failed to update scope"
ASSIGN_FAILED = "Failed to assign scope to user"
OWNER_ROLE_FAILED = "Failed to create owner role"


def unknown_fields(fields) -> str:
    return f"Unknown fields: {', '.join(sorted(fields))}"


def role_not_found(role_name: str) -> str:
    return f'Role "{role_name}" not found'


def sanitize_error(logger: logging.Logger, exc: BaseException, operation: str, **context) -> str:
    """Log exc with its operation context and return the generic message.

    context is rendered as sorted key=value pairs so log lines for the same
    operation line up (e.g. "create_scope failed [name='Acme' parent_id=None]").
    """
    details = " ".join(f"{key}={value!r}" for key, value in sorted(context.items()))
    logger.error("%s failed [%s]: %s", operation, details, exc, exc_info=exc)
    return GENERIC_ERROR
