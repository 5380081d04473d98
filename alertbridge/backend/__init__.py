"""Monitoring backend collaborators."""

from .base import BackendContact, Entity, MonitoringBackend, StatusReport
from .nagios import NagiosBackend

__all__ = ["BackendContact", "Entity", "MonitoringBackend", "NagiosBackend", "StatusReport"]
