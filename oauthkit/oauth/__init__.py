"""Token lifecycle, extensions, and OAuth endpoints."""
