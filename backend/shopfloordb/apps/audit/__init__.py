from . import models, services  # noqa: F401

__all__ = ["models", "services"]
