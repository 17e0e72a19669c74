""" Scheduled maintenance job for a CoreDB instance.
"""

import logging

import kubernetes

from .common import cronjob_name, object_meta, secret_name

logger = logging.getLogger(__name__)


def build_cronjob(ctx):
    spec = ctx.spec
    secret = secret_name(ctx.name)

    container = kubernetes.client.V1Container(
        name="maintenance",
        image=spec.image,
        command=["vacuumdb", "--all", "--analyze-in-stages"],
        env=[
            kubernetes.client.V1EnvVar(name="PGHOST", value=ctx.service_host),
            kubernetes.client.V1EnvVar(name="PGPORT", value=str(spec.port)),
            kubernetes.client.V1EnvVar(
                name="PGUSER",
                value_from=kubernetes.client.V1EnvVarSource(
                    secret_key_ref=kubernetes.client.V1SecretKeySelector(name=secret, key="user")
                ),
            ),
            kubernetes.client.V1EnvVar(
                name="PGPASSWORD",
                value_from=kubernetes.client.V1EnvVarSource(
                    secret_key_ref=kubernetes.client.V1SecretKeySelector(
                        name=secret, key="password"
                    )
                ),
            ),
        ],
    )

    return kubernetes.client.V1CronJob(
        api_version="batch/v1",
        kind="CronJob",
        metadata=object_meta(ctx, cronjob_name(ctx.name), component="maintenance"),
        spec=kubernetes.client.V1CronJobSpec(
            schedule=spec.maintenance.schedule,
            concurrency_policy="Forbid",
            successful_jobs_history_limit=1,
            failed_jobs_history_limit=3,
            job_template=kubernetes.client.V1JobTemplateSpec(
                spec=kubernetes.client.V1JobSpec(
                    backoff_limit=2,
                    template=kubernetes.client.V1PodTemplateSpec(
                        spec=kubernetes.client.V1PodSpec(
                            restart_policy="OnFailure",
                            service_account_name=ctx.name,
                            containers=[container],
                        )
                    ),
                )
            ),
        ),
    )


def ensure_cronjob(applier, ctx):
    if not ctx.spec.maintenance.enabled:
        return delete_cronjob(applier, ctx)
    return applier.apply(build_cronjob(ctx))


def delete_cronjob(applier, ctx):
    return applier.delete("CronJob", ctx.namespace, cronjob_name(ctx.name))
