"""Signing keys, token codec, and client secret hashing."""
