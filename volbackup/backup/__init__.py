"""
Backup module for volbackup.

This module handles the core backup functionality including:
- Archiving, listing and extraction (compression)
- Storage root access (storage)
- Execution of single backups (executor) and ordered group runs (groups)
- Orphan reconciliation (reconcile) and retention expiry (retention)

Submodules are imported directly; the catalog depends on `errors`, so this
package must not import the executor eagerly.
"""
