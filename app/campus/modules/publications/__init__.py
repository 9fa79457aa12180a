"""
Publications module.

- Announcements with an optional expiry date and at most one attached file
- Expiration status is derived from expires_at (permanent/expired/expiring_soon/active)
- Duplicating a publication copies its file bytes under the new owner
- Expired publications past the retention window are purged by a script
"""
