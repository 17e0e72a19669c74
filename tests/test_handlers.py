import asyncio

import kopf
import pytest

from coredb_operator.controller import Action
from coredb_operator.controller.runner import PassRunner
from coredb_operator.handlers.coredb_handler import (
    delete_coredb,
    owned_event,
    owner_key,
    reconcile_coredb,
    requeue_coredb,
)


class RecordingReconciler:
    def __init__(self, action=None):
        self.action = action or Action.done()
        self.keys = []
        self.cleaned = []

    def reconcile(self, namespace, name):
        self.keys.append((namespace, name))
        return self.action

    def cleanup(self, obj):
        self.cleaned.append(obj["metadata"]["name"])


class Memo:
    def __init__(self, action=None):
        self.reconciler = RecordingReconciler(action)
        self.runner = PassRunner(self.reconciler, backoff_base=1, backoff_max=60)


def test_owner_key_from_owner_reference():
    meta = {
        "namespace": "default",
        "ownerReferences": [
            {"apiVersion": "apps/v1", "kind": "ReplicaSet", "name": "other"},
            {"apiVersion": "coredb.io/v1alpha1", "kind": "CoreDB", "name": "sample"},
        ],
    }
    assert owner_key(meta) == ("default", "sample")


def test_owner_key_from_label():
    meta = {"namespace": "default", "labels": {"coredb.io/name": "sample"}}
    assert owner_key(meta) == ("default", "sample")
    assert owner_key({"namespace": "default"}) is None


def test_handlers_run_passes_for_the_owning_coredb():
    memo = Memo()
    asyncio.run(reconcile_coredb(namespace="a", name="b", retry=0, memo=memo))
    asyncio.run(requeue_coredb(namespace="a", name="b", retry=0, memo=memo))
    asyncio.run(owned_event(event={}, meta={"namespace": "a", "labels": {"coredb.io/name": "c"}}, memo=memo))
    asyncio.run(owned_event(event={}, meta={"namespace": "a", "name": "stray"}, memo=memo))
    assert memo.reconciler.keys == [("a", "b"), ("a", "b"), ("a", "c")]


def test_failed_pass_asks_kopf_to_retry():
    memo = Memo(Action.again("apiserver unavailable"))
    with pytest.raises(kopf.TemporaryError) as info:
        asyncio.run(reconcile_coredb(namespace="a", name="b", retry=3, memo=memo))
    assert info.value.delay == 4


def test_rejected_pass_is_permanent():
    memo = Memo(Action.reject("storage cannot shrink"))
    with pytest.raises(kopf.PermanentError, match="shrink"):
        asyncio.run(requeue_coredb(namespace="a", name="b", retry=0, memo=memo))


def test_owned_event_never_raises():
    memo = Memo(Action.again("apiserver unavailable"))
    asyncio.run(owned_event(event={}, meta={"namespace": "a", "labels": {"coredb.io/name": "c"}}, memo=memo))
    assert memo.reconciler.keys == [("a", "c")]


def test_delete_handler_cleans_up():
    memo = Memo()
    body = {"metadata": {"namespace": "a", "name": "b"}}
    asyncio.run(delete_coredb(body=body, retry=0, memo=memo))
    assert memo.reconciler.cleaned == ["b"]
