"""Postgres configuration rendered into a ConfigMap."""

import hashlib
import logging

import jinja2
import kubernetes

from .common import CONFIG_MOUNT, PGDATA, configmap_name, object_meta

logger = logging.getLogger(__name__)

_env = jinja2.Environment(
    loader=jinja2.PackageLoader("coredb_operator", "templates"),
    keep_trailing_newline=True,
    undefined=jinja2.StrictUndefined,
)


def render_postgresql_conf(ctx):
    template = _env.get_template("postgresql.conf.j2")
    return template.render(
        name=ctx.name,
        namespace=ctx.namespace,
        data_directory=PGDATA,
        config_dir=CONFIG_MOUNT,
        port=ctx.spec.port,
        configs=ctx.resolved.postgres_config,
    )


def render_pg_hba_conf(ctx):
    template = _env.get_template("pg_hba.conf.j2")
    return template.render(name=ctx.name, namespace=ctx.namespace)


def config_data(ctx):
    return {
        "postgresql.conf": render_postgresql_conf(ctx),
        "pg_hba.conf": render_pg_hba_conf(ctx),
        "pg_ident.conf": "",
    }


def config_hash(data):
    """Stable digest of the rendered files, used to roll the pods on change."""
    digest = hashlib.sha256()
    for key in sorted(data):
        digest.update(key.encode())
        digest.update(data[key].encode())
    return digest.hexdigest()[:16]


def build_configmap(ctx, data):
    return kubernetes.client.V1ConfigMap(
        api_version="v1",
        kind="ConfigMap",
        metadata=object_meta(ctx, configmap_name(ctx.name), component="config"),
        data=data,
    )


def ensure_configmap(applier, ctx):
    """ Render and apply the Postgres configuration.

    Stores the config hash in ``ctx.observed["config_hash"]``.
    """
    data = config_data(ctx)
    ctx.observed["config_hash"] = config_hash(data)
    return applier.apply(build_configmap(ctx, data))
