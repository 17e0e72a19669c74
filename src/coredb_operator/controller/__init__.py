"""The per-object reconcile pass and the runner the kopf handlers call."""

from .reconciler import Action, Reconciler
from .runner import PassRunner

__all__ = ["Action", "PassRunner", "Reconciler"]
