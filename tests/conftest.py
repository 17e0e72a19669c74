"""In-memory stand-ins for the cluster API and the Postgres catalog."""

import copy

import kubernetes
import psycopg2
import pytest
from kubernetes.client.exceptions import ApiException
from prometheus_client import CollectorRegistry

from coredb_operator.config import OperatorConfig
from coredb_operator.controller.reconciler import Reconciler
from coredb_operator.errors import DatabaseUnavailableError
from coredb_operator.metrics import Metrics
from coredb_operator.services.apply import APPLY_PATCH, ResourceApplier


def deep_merge(target, patch):
    for key, value in patch.items():
        if value is None:
            target.pop(key, None)
        elif isinstance(value, dict) and isinstance(target.get(key), dict):
            deep_merge(target[key], value)
        else:
            target[key] = copy.deepcopy(value)
    return target


class FakeApplier(ResourceApplier):
    """ResourceApplier over a dict of objects keyed by (kind, namespace, name)."""

    def __init__(self):
        super().__init__(api_client=kubernetes.client.ApiClient())
        self.objects = {}
        self.writes = []
        self.failures = {}

    def _fail(self, verb, kind, name):
        exc = self.failures.get((verb, kind, name))
        if exc is not None:
            raise exc

    def _read(self, kind, namespace, name):
        self._fail("read", kind, name)
        try:
            return copy.deepcopy(self.objects[(kind, namespace, name)])
        except KeyError:
            raise ApiException(status=404, reason="Not Found")

    def _patch(self, kind, namespace, name, body, content_type):
        self._fail("patch", kind, name)
        key = (kind, namespace, name)
        if content_type == APPLY_PATCH:
            # sole field manager: fields left out of the body are released
            obj = copy.deepcopy(body)
            if "status" in self.objects.get(key, {}):
                obj["status"] = self.objects[key]["status"]
            self.objects[key] = obj
        else:
            if key not in self.objects:
                raise ApiException(status=404, reason="Not Found")
            obj = deep_merge(self.objects[key], body)
        self.writes.append(("patch", kind, name))
        return copy.deepcopy(obj)

    def _delete(self, kind, namespace, name):
        self._fail("delete", kind, name)
        if self.objects.pop((kind, namespace, name), None) is None:
            raise ApiException(status=404, reason="Not Found")
        self.writes.append(("delete", kind, name))

    def put(self, kind, namespace, name, obj):
        self.objects[(kind, namespace, name)] = copy.deepcopy(obj)

    def obj(self, kind, name, namespace="default"):
        return self.objects.get((kind, namespace, name))


class FakeCoreDBClient:
    """Holds a single CoreDB object and records every write to it."""

    def __init__(self, obj, terminating=False):
        self.obj = copy.deepcopy(obj)
        self.terminating = terminating
        self.writes = []

    def _bump(self):
        version = int(self.obj["metadata"].get("resourceVersion", "1"))
        self.obj["metadata"]["resourceVersion"] = str(version + 1)

    def get(self, namespace, name):
        if self.obj is None:
            return None
        return copy.deepcopy(self.obj)

    def patch_status(self, obj, status):
        self.obj["status"] = copy.deepcopy(status)
        self._bump()
        self.writes.append("status")
        return copy.deepcopy(self.obj)

    def namespace_terminating(self, namespace):
        return self.terminating

    @property
    def status(self):
        return self.obj.get("status") or {}


class FakeCatalog:
    """A Postgres instance reduced to its extension catalog.

    Args:
        available: extension name -> default version
        databases: databases that exist
        failing: extension names whose CREATE fails
    """

    def __init__(self, available, databases=("postgres",), failing=()):
        self.available = dict(available)
        self.databases = list(databases)
        self.failing = set(failing)
        self.installed = {}
        self.applied = []
        self.reachable = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def install(self, name, database="postgres", version=None, schema="public"):
        self.installed[(name, database)] = {
            "version": version or self.available[name],
            "schema": schema,
        }

    def list_databases(self):
        if not self.reachable:
            raise DatabaseUnavailableError("connection refused")
        return list(self.databases)

    def list_extensions(self, database):
        rows = []
        for name, default_version in sorted(self.available.items()):
            installed = self.installed.get((name, database))
            rows.append(
                {
                    "name": name,
                    "version": installed["version"] if installed else default_version,
                    "enabled": installed is not None,
                    "schema": installed["schema"] if installed else None,
                    "description": f"{name} extension",
                }
            )
        return rows

    def apply(self, database, action):
        self.applied.append(action)
        kind = action.kind.value
        key = (action.name, database)
        if kind == "create":
            if action.name in self.failing:
                raise psycopg2.Error(f'could not open extension control file for "{action.name}"')
            self.install(action.name, database, action.version, action.schema or "public")
        elif kind == "drop":
            self.installed.pop(key, None)
        elif kind == "update":
            self.installed[key]["version"] = action.version
        elif kind == "set_schema":
            self.installed[key]["schema"] = action.schema


def coredb_object(spec=None, status=None, name="sample", namespace="default", **metadata):
    obj = {
        "apiVersion": "coredb.io/v1alpha1",
        "kind": "CoreDB",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "uid": "7d3f2a1c-0000-4000-8000-000000000001",
            "resourceVersion": "1",
            "generation": 1,
            **metadata,
        },
        "spec": spec if spec is not None else {},
    }
    if status is not None:
        obj["status"] = status
    return obj


@pytest.fixture
def config():
    return OperatorConfig()


@pytest.fixture
def metrics():
    return Metrics(registry=CollectorRegistry())


@pytest.fixture
def applier():
    return FakeApplier()


@pytest.fixture
def catalog():
    return FakeCatalog(
        {
            "pg_stat_statements": "1.10",
            "pgvector": "0.5.1",
            "vector": "0.5.1",
            "pgcrypto": "1.3",
        }
    )


@pytest.fixture
def make_reconciler(applier, config, metrics, catalog):
    def factory(obj, terminating=False):
        client = FakeCoreDBClient(obj, terminating=terminating)
        reconciler = Reconciler(
            client=client,
            applier=applier,
            config=config,
            metrics=metrics,
            session_factory=lambda ctx: catalog,
        )
        return reconciler, client

    return factory


def mark_ready(applier, name="sample", namespace="default"):
    statefulset = applier.objects[("StatefulSet", namespace, name)]
    replicas = statefulset["spec"]["replicas"]
    statefulset["status"] = {"replicas": replicas, "readyReplicas": replicas}
