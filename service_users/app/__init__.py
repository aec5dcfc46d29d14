"""
Users Service package for the Orderly platform.

Owns user accounts: registration, login (token issuance), profile reads and
updates, and the admin-only user listing. Storage is injected through
``shared.storage.Repository``.
"""
