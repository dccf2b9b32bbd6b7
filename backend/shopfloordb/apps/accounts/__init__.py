# backend/shopfloordb/apps/accounts/__init__.py
"""
Accounts app

Responsible for:
- User records with role and maintenance skill level
- Availability flags used by assignment and escalation routing

Authentication itself is handled by the identity service; see
shopfloordb.security for how bearer tokens map onto these users.
"""

from . import models  # noqa: F401

__all__ = ["models"]
