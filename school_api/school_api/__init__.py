"""HTTP control plane for the school-management backend."""

__version__ = "0.1.0"
