from membership.registry.token_registry import DEFAULT_TIER, TokenRegistry, TokenState

__all__ = ["DEFAULT_TIER", "TokenRegistry", "TokenState"]
