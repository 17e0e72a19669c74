import pytest
from kubernetes.client.exceptions import ApiException

from coredb_operator.controller import Action
from coredb_operator.errors import FinalizerError
from coredb_operator.services.common import WATCH_ANNOTATION, data_claim_name

from conftest import coredb_object, mark_ready

SPEC = {
    "image": "quay.io/coredb/postgres:15.3.0",
    "storage": "1Gi",
    "extensions": [{"name": "pgvector", "locations": [{"enabled": True}]}],
}


def condition(client, condition_type):
    for c in client.status.get("conditions", []):
        if c["type"] == condition_type:
            return c
    return None


def claim(requested, capacity):
    return {
        "spec": {"resources": {"requests": {"storage": requested}}},
        "status": {"capacity": {"storage": capacity}},
    }


def postgres_container(applier):
    containers = applier.obj("StatefulSet", "sample")["spec"]["template"]["spec"]["containers"]
    return next(c for c in containers if c["name"] == "postgres")


def test_first_pass_creates_owned_objects(make_reconciler, applier, metrics):
    reconciler, client = make_reconciler(coredb_object(SPEC))
    action = reconciler.reconcile("default", "sample")

    assert action == Action.done()
    for kind, name in [
        ("Secret", "sample-connection"),
        ("ConfigMap", "sample-config"),
        ("ServiceAccount", "sample"),
        ("Role", "sample"),
        ("RoleBinding", "sample"),
        ("StatefulSet", "sample"),
        ("Service", "sample"),
        ("Deployment", "sample-metrics"),
        ("Service", "sample-metrics"),
    ]:
        assert applier.obj(kind, name) is not None, f"{kind}/{name} missing"
    assert applier.obj("CronJob", "sample-maintenance") is None
    assert applier.obj("IngressRouteTCP", "sample-rw") is None

    assert client.status["running"] is False
    assert client.status["phase"] == "Reconciling"
    assert metrics.sample("instances_created_total") == 1


def test_extensions_sync_once_running(make_reconciler, applier, catalog, metrics):
    reconciler, client = make_reconciler(coredb_object(SPEC))
    reconciler.reconcile("default", "sample")
    assert catalog.applied == []

    mark_ready(applier)
    reconciler.reconcile("default", "sample")

    status = client.status
    assert status["running"] is True
    assert status["phase"] == "Ready"
    assert status["extensionsUpdating"] is False
    assert ("pgvector", "postgres") in catalog.installed
    assert ("pg_stat_statements", "postgres") in catalog.installed
    pgvector = next(e for e in status["extensions"] if e["name"] == "pgvector")
    assert pgvector["locations"][0]["enabled"] is True
    assert pgvector["locations"][0]["schema"] == "public"
    assert condition(client, "ExtensionsSynced")["status"] == "True"
    assert metrics.sample("instances_updated_total") == 1


def test_steady_state_pass_writes_nothing(make_reconciler, applier):
    reconciler, client = make_reconciler(coredb_object(SPEC))
    reconciler.reconcile("default", "sample")
    mark_ready(applier)
    reconciler.reconcile("default", "sample")

    object_writes = len(applier.writes)
    client_writes = len(client.writes)
    action = reconciler.reconcile("default", "sample")

    assert action == Action.done()
    assert len(applier.writes) == object_writes
    assert len(client.writes) == client_writes


def test_disabling_exporter_deletes_it(make_reconciler, applier):
    reconciler, client = make_reconciler(coredb_object(SPEC))
    reconciler.reconcile("default", "sample")
    assert applier.obj("Deployment", "sample-metrics") is not None

    client.obj["spec"]["postgresExporterEnabled"] = False
    reconciler.reconcile("default", "sample")

    assert applier.obj("Deployment", "sample-metrics") is None
    assert applier.obj("Service", "sample-metrics") is None
    assert applier.obj("Service", "sample") is not None


def test_partial_extension_failure_is_reported(make_reconciler, applier, catalog):
    catalog.available["broken"] = "1.0"
    catalog.failing.add("broken")
    spec = dict(SPEC, extensions=[{"name": "broken"}, {"name": "pgcrypto"}])
    reconciler, client = make_reconciler(coredb_object(spec))
    reconciler.reconcile("default", "sample")
    mark_ready(applier)
    action = reconciler.reconcile("default", "sample")

    assert action == Action.done()
    assert ("pgcrypto", "postgres") in catalog.installed
    by_name = {e["name"]: e["locations"][0] for e in client.status["extensions"]}
    assert by_name["pgcrypto"]["enabled"] is True
    assert by_name["broken"]["enabled"] is False
    assert by_name["broken"]["error"] is True
    assert client.status["extensionsUpdating"] is False
    synced = condition(client, "ExtensionsSynced")
    assert synced["status"] == "False"
    assert synced["reason"] == "PartialFailure"


def test_unreachable_database_keeps_updating_flag(make_reconciler, applier, catalog, metrics):
    reconciler, client = make_reconciler(coredb_object(SPEC))
    reconciler.reconcile("default", "sample")
    mark_ready(applier)
    catalog.reachable = False

    action = reconciler.reconcile("default", "sample")

    assert action.retry
    assert "connection refused" in action.message
    assert client.status["extensionsUpdating"] is True
    assert condition(client, "ExtensionsSynced")["reason"] == "DatabaseUnavailable"
    assert metrics.sample("reconcile_failures_total", {"error": "DatabaseUnavailable"}) == 1


def test_stop_after_unreachable_database_scales_down(make_reconciler, applier, catalog):
    reconciler, client = make_reconciler(coredb_object(SPEC))
    reconciler.reconcile("default", "sample")
    mark_ready(applier)
    catalog.reachable = False
    reconciler.reconcile("default", "sample")
    assert client.status["extensionsUpdating"] is True

    client.obj["spec"]["stop"] = True
    reconciler.reconcile("default", "sample")

    assert applier.obj("StatefulSet", "sample")["spec"]["replicas"] == 0
    assert client.status["phase"] == "Stopped"
    assert condition(client, "TransitionValid")["status"] == "True"


def test_extension_sync_marks_condition_while_applying(make_reconciler, applier, catalog):
    seen = []
    reconciler, client = make_reconciler(coredb_object(SPEC))
    reconciler.reconcile("default", "sample")
    mark_ready(applier)

    apply = catalog.apply

    def record(database, action):
        seen.append((client.status["extensionsUpdating"], condition(client, "ExtensionsSynced")["reason"]))
        apply(database, action)

    catalog.apply = record
    reconciler.reconcile("default", "sample")

    assert seen and all(entry == (True, "Updating") for entry in seen)
    assert condition(client, "ExtensionsSynced")["reason"] == "Synced"


def test_stopped_instance_scales_down(make_reconciler, applier):
    reconciler, client = make_reconciler(coredb_object(dict(SPEC, stop=True)))
    reconciler.reconcile("default", "sample")
    assert applier.obj("StatefulSet", "sample")["spec"]["replicas"] == 0
    assert client.status["phase"] == "Stopped"


def test_shrinking_storage_is_rejected(make_reconciler, applier, metrics):
    applier.put("PersistentVolumeClaim", "default", data_claim_name("sample", 0), claim("10Gi", "10Gi"))
    reconciler, client = make_reconciler(coredb_object(dict(SPEC, storage="5Gi")))
    action = reconciler.reconcile("default", "sample")

    assert action.permanent
    assert "shrink" in action.message
    assert applier.writes == []
    assert client.status["phase"] == "Invalid"
    assert condition(client, "TransitionValid")["status"] == "False"
    assert metrics.sample("instances_invalid_state_transition_total") == 1
    assert metrics.sample("reconcile_failures_total", {"error": "InvalidTransition"}) == 1


def test_claim_capacity_above_request_is_not_a_shrink(make_reconciler, applier):
    # provisioners may round a 1Gi request up to a 10Gi volume
    applier.put("PersistentVolumeClaim", "default", data_claim_name("sample", 0), claim("1Gi", "10Gi"))
    reconciler, client = make_reconciler(coredb_object(SPEC))
    action = reconciler.reconcile("default", "sample")

    assert action == Action.done()
    assert client.status["phase"] != "Invalid"
    assert condition(client, "TransitionValid")["status"] == "True"
    assert client.status["storage"] == "10Gi"


def test_stop_during_extension_update_leaves_workload(make_reconciler, applier):
    reconciler, client = make_reconciler(coredb_object(SPEC))
    reconciler.reconcile("default", "sample")
    mark_ready(applier)
    client.obj["status"]["extensionsUpdating"] = True
    client.obj["status"]["conditions"].append(
        {"type": "ExtensionsSynced", "status": "False", "reason": "Updating", "message": ""}
    )
    client.obj["spec"]["stop"] = True

    writes = len(applier.writes)
    action = reconciler.reconcile("default", "sample")

    assert action.permanent
    assert len(applier.writes) == writes
    assert applier.obj("StatefulSet", "sample")["spec"]["replicas"] == 1
    assert client.status["phase"] == "Invalid"


def test_removed_resource_limits_leave_the_statefulset(make_reconciler, applier):
    requests = {"cpu": "500m", "memory": "1Gi"}
    spec = dict(SPEC, resources={"limits": {"cpu": "2", "memory": "2Gi"}, "requests": requests})
    reconciler, client = make_reconciler(coredb_object(spec))
    reconciler.reconcile("default", "sample")
    assert postgres_container(applier)["resources"]["limits"] == {"cpu": "2", "memory": "2Gi"}

    client.obj["spec"]["resources"] = {"requests": requests}
    reconciler.reconcile("default", "sample")

    resources = postgres_container(applier)["resources"]
    assert "limits" not in resources
    assert resources["requests"] == requests


def test_invalid_spec_sets_condition(make_reconciler, applier, metrics):
    reconciler, client = make_reconciler(coredb_object({"replicas": -1}))
    action = reconciler.reconcile("default", "sample")

    assert action.permanent
    assert applier.writes == []
    assert client.status["phase"] == "Invalid"
    assert condition(client, "SpecValid")["reason"] == "SpecValidation"
    assert metrics.sample("reconcile_failures_total", {"error": "SpecValidation"}) == 1


def test_unwatched_object_is_skipped(make_reconciler, applier):
    obj = coredb_object(SPEC, annotations={WATCH_ANNOTATION: "false"})
    reconciler, client = make_reconciler(obj)
    assert reconciler.reconcile("default", "sample") == Action.done()
    assert applier.writes == []
    assert client.writes == []


def test_missing_object_needs_nothing(make_reconciler):
    reconciler, client = make_reconciler(coredb_object(SPEC))
    client.obj = None
    assert reconciler.reconcile("default", "sample") == Action.done()


def test_deleted_object_is_left_to_cleanup(make_reconciler, applier):
    reconciler, client = make_reconciler(coredb_object(SPEC))
    reconciler.reconcile("default", "sample")
    client.obj["metadata"]["deletionTimestamp"] = "2026-10-18T10:00:00Z"

    writes = len(applier.writes)
    assert reconciler.reconcile("default", "sample") == Action.done()
    assert len(applier.writes) == writes


def test_cleanup_removes_route(make_reconciler, applier, config):
    config.data_plane_basedomain = "data.example.com"
    reconciler, client = make_reconciler(coredb_object(SPEC))
    reconciler.reconcile("default", "sample")
    assert applier.obj("IngressRouteTCP", "sample-rw") is not None

    reconciler.cleanup(client.obj)

    assert applier.obj("IngressRouteTCP", "sample-rw") is None
    # garbage collection removes the rest
    assert applier.obj("StatefulSet", "sample") is not None


def test_failed_cleanup_raises(make_reconciler, applier, config):
    config.data_plane_basedomain = "data.example.com"
    reconciler, client = make_reconciler(coredb_object(SPEC))
    reconciler.reconcile("default", "sample")

    applier.failures[("delete", "IngressRouteTCP", "sample-rw")] = ApiException(status=500)
    with pytest.raises(FinalizerError):
        reconciler.cleanup(client.obj)
    assert applier.obj("IngressRouteTCP", "sample-rw") is not None

    del applier.failures[("delete", "IngressRouteTCP", "sample-rw")]
    reconciler.cleanup(client.obj)
    assert applier.obj("IngressRouteTCP", "sample-rw") is None


def test_cleanup_in_terminating_namespace_posts_no_event(make_reconciler):
    reconciler, client = make_reconciler(coredb_object(SPEC), terminating=True)
    posted = []
    reconciler.events.info = lambda obj, reason, message: posted.append(reason)
    reconciler.cleanup(client.obj)
    assert posted == []


def test_cleanup_posts_delete_event(make_reconciler):
    reconciler, client = make_reconciler(coredb_object(SPEC))
    posted = []
    reconciler.events.info = lambda obj, reason, message: posted.append(reason)
    reconciler.cleanup(client.obj)
    assert posted == ["DeleteCoreDB"]


def test_failing_sub_resource_does_not_block_the_rest(make_reconciler, applier, metrics):
    applier.failures[("patch", "CronJob", "sample-maintenance")] = ApiException(status=503)
    spec = dict(SPEC, maintenance={"enabled": True})
    reconciler, client = make_reconciler(coredb_object(spec))
    action = reconciler.reconcile("default", "sample")

    assert action.retry
    assert applier.obj("Service", "sample") is not None
    synced = condition(client, "ResourcesSynced")
    assert synced["status"] == "False"
    assert "CronJob" in synced["message"]
