"""
The `packaging` sub-package contains the modules that assemble and inspect
PHAR archives.

This includes:
- Writing archives entry by entry, with per-entry compression and a signature.
- Orchestrating a build from a Composer project's metadata.
- Reading and verifying finished archives.
"""
