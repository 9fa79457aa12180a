"""
Document types module.

- A flat catalogue of named types that documents can reference
- Names are unique across live and trashed rows
- Soft delete, restore and purge go through the shared soft-delete store
"""
