"""
Documents module.

- Documents carry ownership columns and are soft-deleted; purge removes their files
- Status is one of Draft/Pending/Approved/Rejected/Archived, with unguarded transitions
- Status changes append timestamped entries to the document's comment log
- Meaningful actions are recorded to the append-only audit trail
"""
