"""DPoP proof validation, nonces, key registry, and token binding."""
