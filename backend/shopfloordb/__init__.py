# backend/shopfloordb/__init__.py
"""
Import ORM models from each app so that:

- Alembic and Base.metadata.create_all() see all tables.
- The package exposes a clear surface.

Set SHOPFLOORDB_SKIP_MODEL_IMPORTS=1 to import the package without pulling
in every app (tests import the models they need explicitly).

The actual model classes are kept in shopfloordb/apps/*/models.py.
"""

import os

if os.getenv("SHOPFLOORDB_SKIP_MODEL_IMPORTS") != "1":
    from .apps.accounts import models as accounts_models        # users + skill levels
    from .apps.machines import models as machines_models        # machines + hours log
    from .apps.maintenance import models as maintenance_models  # plans, tasks, escalations
    from .apps.audit import models as audit_models              # audit trail

    __all__ = [
        "accounts_models",
        "machines_models",
        "maintenance_models",
        "audit_models",
    ]
