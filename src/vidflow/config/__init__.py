"""Configuration package for VidFlow."""

from .config import (
    ProviderPricing,
    RoleOverride,
    VidflowConfig,
    config,
    load_role_overrides,
)

__all__ = [
    "ProviderPricing",
    "RoleOverride",
    "VidflowConfig",
    "config",
    "load_role_overrides",
]
