"""
Service-layer exception hierarchy.

Admin services (policy, escalation chain and breach action authoring) raise
these types; ``sla_bp`` registers one handler per type so every route maps
them to the same HTTP status. Engine entry points (detect, escalate,
acknowledge, resolve) do not raise for missing rows: they return
None / False / an empty result, and the blueprint decides the status code.

Usage:
    from sla_engine.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="SlaPolicy", resource_id=42, tenant_id=7)
    raise ValidationError("level must be 3", details={"level": "next level is 3"})
"""


class NotFoundError(Exception):
    """Raised when a requested row does not exist within the caller's tenant.

    Used for BOTH genuinely missing rows AND rows owned by another tenant,
    so a 404 never confirms that a foreign policy or breach exists.

    Maps to HTTP 404.

    Args:
        resource: Model name (e.g. "SlaPolicy", "Profile").
        resource_id: The PK that was looked up. Logged, not returned to the client.
        tenant_id: The scope that was enforced. For debug logging only.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        tenant_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.tenant_id = tenant_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if tenant_id is not None:
            msg += f" (tenant={tenant_id})"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when well-formed input violates a business rule.

    Examples: resolution target shorter than response target, an empty
    business-day calendar, a non-dense escalation level.

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown, keyed by field name.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation conflicts with existing state.

    Covers duplicate unique values and edits to a policy that breaches
    already reference.

    Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The field in conflict.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} conflict on {field}={value!r}"
        super().__init__(msg)
