"""schoolauth database schema.

Access-control schema for the school platform: roles, permissions, users and
the student account link, plus the migration runner that applies and reverts
them.

Copyright (C) 2025 Global Digital Labs (gdlabs.io)
SPDX-License-Identifier: LGPL-3.0-or-later
"""

__version__ = "1.0.0"
