"""Staff directory - role lookups over the identity provider's users"""
