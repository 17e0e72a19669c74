"""Registry of the pydantic models that back the operator's CRDs."""

import importlib
import logging
import pkgutil

logger = logging.getLogger(__name__)

MODELS_PACKAGE = "coredb_operator.models"


class CRDRegistry:
    """Process-wide registry filled by the ``register`` decorator at import time."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._models = {}
        return cls._instance

    @classmethod
    def register(
        cls,
        group,
        version,
        kind,
        plural=None,
        scope="Namespaced",
        short_names=None,
        status_model=None,
        printer_columns=None,
    ):
        """Decorator registering a spec model as a CRD.

        Args:
            group: API group, e.g. 'coredb.io'
            version: API version, e.g. 'v1alpha1'
            kind: Kind name, e.g. 'CoreDB'
            plural: Plural name (defaults to kind.lower() + 's')
            scope: 'Namespaced' or 'Cluster'
            short_names: kubectl short names (default: first three letters of the kind)
            status_model: pydantic model describing ``.status``
            printer_columns: additionalPrinterColumns entries
        """

        def decorator(model_class):
            singular = kind.lower()
            key = f"{group}/{version}/{kind}"
            cls()._models[key] = {
                "model": model_class,
                "group": group,
                "version": version,
                "kind": kind,
                "plural": plural or f"{singular}s",
                "scope": scope,
                "singular": singular,
                "short_names": short_names or [singular[:3]],
                "status_model": status_model,
                "printer_columns": printer_columns or [],
            }
            logger.debug(f"Registered CRD: {key}")
            return model_class

        return decorator

    def discover_models(self, package_path=MODELS_PACKAGE):
        """Import every module of ``package_path`` so their decorators run."""
        package = importlib.import_module(package_path)
        for _, module_name, _ in pkgutil.iter_modules(getattr(package, "__path__", [])):
            importlib.import_module(f"{package_path}.{module_name}")
            logger.debug(f"Discovered models in {package_path}.{module_name}")

    def get_all_models(self):
        return self._models.copy()

    def validate_model_schema(self, model_class):
        """True if the model renders to a JSON schema with properties."""
        try:
            schema = model_class.model_json_schema()
        except Exception as e:
            logger.error(f"Schema generation failed for {model_class.__name__}: {e}")
            return False
        return isinstance(schema.get("properties"), dict)
