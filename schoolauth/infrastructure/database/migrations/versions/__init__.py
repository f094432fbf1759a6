# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Migration revisions.

Each module exposes revision, down_revision, upgrade() and downgrade().
Revisions are applied in the order listed in runner.MIGRATIONS.

Contains:
- 001_initial_schema: roles, permissions, role_permissions, users, student_users
"""
