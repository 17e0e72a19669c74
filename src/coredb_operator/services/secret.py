"""Connection secret for a CoreDB instance."""

import base64
import logging
import secrets
import string
from urllib.parse import quote

import kubernetes

from .common import object_meta, secret_name

logger = logging.getLogger(__name__)

SUPERUSER = "postgres"
PASSWORD_LENGTH = 16
PASSWORD_ALPHABET = string.ascii_letters + string.digits


def generate_password(length=PASSWORD_LENGTH):
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))


def b64encode(value):
    return base64.b64encode(str(value).encode()).decode()


def b64decode(value):
    return base64.b64decode(value).decode()


def read_credentials(existing):
    """Decode the credentials held by a connection secret, or None.

    Args:
        existing: Secret as a dict, possibly None
    """
    data = (existing or {}).get("data") or {}
    if not data.get("password"):
        return None
    try:
        return {
            "user": b64decode(data.get("user", b64encode(SUPERUSER))),
            "password": b64decode(data["password"]),
        }
    except (ValueError, UnicodeDecodeError):
        logger.warning("Connection secret holds an undecodable password, regenerating")
        return None


def build_secret(ctx, password):
    name = secret_name(ctx.name)
    host = ctx.service_host
    port = ctx.spec.port
    uri = f"postgresql://{SUPERUSER}:{quote(password, safe='')}@{host}:{port}"

    secret = kubernetes.client.V1Secret(
        api_version="v1",
        kind="Secret",
        metadata=object_meta(ctx, name, component="connection"),
        type="Opaque",
        data={
            "user": b64encode(SUPERUSER),
            "username": b64encode(SUPERUSER),
            "password": b64encode(password),
            "port": b64encode(port),
            "host": b64encode(host),
            "uri": b64encode(uri),
        },
    )
    return secret


def ensure_secret(applier, ctx):
    """ Create the connection secret, reusing the stored password if present.

    The decoded credentials are left in ``ctx.observed["credentials"]`` for
    the extension synchronizer.
    """
    name = secret_name(ctx.name)
    existing = applier.get("Secret", ctx.namespace, name)
    credentials = read_credentials(existing)
    if credentials is None:
        credentials = {"user": SUPERUSER, "password": generate_password()}
        if existing is not None:
            logger.warning(f"Secret {ctx.namespace}/{name} has no usable password")

    result = applier.apply(build_secret(ctx, credentials["password"]), existing=existing)
    ctx.observed["credentials"] = credentials
    return result
