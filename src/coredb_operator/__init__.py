"""CoreDB operator: reconciles CoreDB custom resources into running Postgres instances."""

__version__ = "0.1.0"
