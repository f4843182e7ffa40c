"""OAuth 2.0 token engine with DPoP sender-constrained tokens."""
