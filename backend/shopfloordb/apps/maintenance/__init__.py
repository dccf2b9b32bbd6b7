# backend/shopfloordb/apps/maintenance/__init__.py
"""
Maintenance app

Responsible for:
- Maintenance plans on a calendar clock, an operating-hours clock, or both
- Generating tasks from due plans and running them through their lifecycle
- Checklist evaluation and escalation of failed checks
- Daily assignment of work by skill
- Operating-hours readings and the read models behind the dashboards
"""

from . import models  # noqa: F401

__all__ = ["models"]
