"""
File attachments shared by documents and publications.

Bytes live in the configured Storage backend under a per-owner prefix;
metadata lives in the `attachments` table. Both are written and removed by
explicit service calls (no ORM lifecycle hooks).
"""
