"""
RoleGate - ANSI RBAC Policy Engine

This package contains the RoleGate policy decision and session services:
- access_control: hierarchy, separation of duty, sessions, access decisions
- storage: policy store contract with in-memory and SQLAlchemy backends
- platform: Cross-cutting concerns (configuration, logging)
"""

__version__ = "0.1.0"
