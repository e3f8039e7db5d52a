"""Tenant-scoped identity provisioning and access control for the school platform."""

__version__ = "0.1.0"
