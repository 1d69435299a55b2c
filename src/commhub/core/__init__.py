"""
Core Module
============

Shared core utilities and abstractions used across the application.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from commhub.core.exceptions import (
    ApplicationException,
    DomainException,
    RepositoryException,
    ValidationException,
    ResourceNotFoundException,
    ConfigurationException,
    ExternalServiceException,
    DefinitionNotFound,
    InstanceNotFound,
    MissingStartNode,
    WorkflowCycleDetected,
    DefinitionImmutable,
    InvalidStatusTransition,
    NodeExecutionError,
    InvalidSlaConfig,
    InvalidExtension,
    TrackedEntityNotFound,
    ChannelSendError,
)

__all__ = [
    "ApplicationException",
    "DomainException",
    "RepositoryException",
    "ValidationException",
    "ResourceNotFoundException",
    "ConfigurationException",
    "ExternalServiceException",
    "DefinitionNotFound",
    "InstanceNotFound",
    "MissingStartNode",
    "WorkflowCycleDetected",
    "DefinitionImmutable",
    "InvalidStatusTransition",
    "NodeExecutionError",
    "InvalidSlaConfig",
    "InvalidExtension",
    "TrackedEntityNotFound",
    "ChannelSendError",
]
