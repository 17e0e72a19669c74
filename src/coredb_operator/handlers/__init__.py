"""kopf handlers that drive reconcile passes for CoreDB objects."""
