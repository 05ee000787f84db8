"""Role and capability checks."""

from .capabilities import ROLE_CAPABILITIES, Capability, ensure_capability, has_capability  # noqa: F401
