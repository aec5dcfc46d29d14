"""
Orders service package for the Orderly platform.

Owns order records: creation, per-user listing, status updates and
cancellation. Every route is bearer-token protected.
"""
