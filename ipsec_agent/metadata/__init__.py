"""
Metadata Module

Read-only access to the cluster metadata service:
- Typed documents for hosts, containers, services, networks, environments
- One-shot snapshot fetch for topology refreshes
- Version polling for change notification
"""

from .models import ClusterSnapshot, Container, Environment, Host, Network, Service
from .client import MetadataClient
from .change_handler import MetadataChangeHandler

__all__ = [
    "ClusterSnapshot",
    "Container",
    "Environment",
    "Host",
    "Network",
    "Service",
    "MetadataClient",
    "MetadataChangeHandler",
]
