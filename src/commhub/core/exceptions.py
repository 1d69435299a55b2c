"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries.
"""

from typing import Optional, Any


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class ValidationException(ApplicationException):
    """Exception for validation errors."""


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""


class ExternalServiceException(ApplicationException):
    """Base exception for external service failures."""

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


# ========== Workflow Engine ==========

class DefinitionNotFound(ResourceNotFoundException):
    """No ACTIVE workflow definition matches the requested id."""

    def __init__(self, definition_id: str, details: Optional[dict] = None):
        super().__init__("Active workflow definition", definition_id, details)


class InstanceNotFound(ResourceNotFoundException):
    """Workflow instance does not exist."""

    def __init__(self, instance_id: str, details: Optional[dict] = None):
        super().__init__("Workflow instance", instance_id, details)


class MissingStartNode(ConfigurationException):
    """Workflow definition has no START node."""

    def __init__(self, definition_id: str):
        self.definition_id = definition_id
        super().__init__(
            f"Workflow definition '{definition_id}' must have a START node",
            {"definition_id": definition_id}
        )


class WorkflowCycleDetected(ConfigurationException):
    """Execution revisited a node or exceeded the step limit in a single run."""

    def __init__(self, node_id: str, steps: int):
        self.node_id = node_id
        self.steps = steps
        super().__init__(
            f"Step limit exceeded at node '{node_id}' after {steps} steps; "
            "the workflow graph contains a cycle without a pause",
            {"node_id": node_id, "steps": steps}
        )


class DefinitionImmutable(DomainException):
    """A published workflow definition version cannot be changed in place."""

    def __init__(self, definition_id: str, version: int):
        self.definition_id = definition_id
        self.version = version
        super().__init__(
            f"Workflow definition '{definition_id}' version {version} is published; "
            "save the change as a new version",
            {"definition_id": definition_id, "version": version}
        )


class InvalidStatusTransition(DomainException):
    """Workflow instance status change not allowed by the state machine."""

    def __init__(self, current: Any, target: Any):
        self.current = current
        self.target = target
        super().__init__(
            f"Cannot transition workflow instance from {current} to {target}",
            {"current": str(current), "target": str(target)}
        )


class NodeExecutionError(DomainException):
    """A node executor could not complete its side effect."""

    def __init__(self, node_id: str, message: str, details: Optional[dict] = None):
        self.node_id = node_id
        super().__init__(message, details or {"node_id": node_id})


# ========== TAT Monitoring ==========

class InvalidSlaConfig(ConfigurationException):
    """SLA configuration cannot produce a deadline."""

    def __init__(self, message: str = "Invalid SLA configuration: resolutionTimeMinutes is required"):
        super().__init__(message)


class InvalidExtension(ValidationException):
    """TAT extension request rejected."""


class TrackedEntityNotFound(ResourceNotFoundException):
    """No TAT-tracked record exists for an entity."""

    def __init__(self, entity_type: str, entity_id: str):
        super().__init__("Tracked entity", f"{entity_type}:{entity_id}")


class ChannelSendError(ExternalServiceException):
    """Notification channel failed to deliver a message."""

    def __init__(self, channel: str, message: str, details: Optional[dict] = None):
        self.channel = channel
        super().__init__(f"{channel} channel", message, details)
