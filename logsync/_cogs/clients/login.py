"""
Rudimentary login from the service account or from the kubeconfig files.

The agent is not a client library, and avoids bringing too much logic
for proper authentication, especially all the complex auth-providers.
The in-cluster service account is tried first (the agent normally runs
as a DaemonSet), then the kubeconfig files (for development).
"""
import os
from typing import Any

import yaml

from logsync._cogs.helpers import typedefs
from logsync._cogs.structs import credentials

# As per https://kubernetes.io/docs/tasks/run-application/access-api-from-pod/
SERVICE_ACCOUNT_DIR = '/var/run/secrets/kubernetes.io/serviceaccount'


def login(*, logger: typedefs.Logger) -> credentials.ConnectionInfo:
    info = login_with_service_account()
    if info is not None:
        logger.debug("Logged in with the service account.")
        return info
    info = login_with_kubeconfig()
    if info is not None:
        logger.debug("Logged in via the kubeconfig file.")
        return info
    raise credentials.LoginError("Cannot authenticate neither in-cluster, nor via kubeconfig.")


def login_with_service_account() -> credentials.ConnectionInfo | None:
    token_path = os.path.join(SERVICE_ACCOUNT_DIR, 'token')
    ns_path = os.path.join(SERVICE_ACCOUNT_DIR, 'namespace')
    ca_path = os.path.join(SERVICE_ACCOUNT_DIR, 'ca.crt')
    if not os.path.exists(token_path):
        return None

    with open(token_path, encoding='utf-8') as f:
        token = f.read().strip()

    namespace: str | None = None
    if os.path.exists(ns_path):
        with open(ns_path, encoding='utf-8') as f:
            namespace = f.read().strip()

    # The env vars are injected by K8s into every container. The DNS name is a fallback.
    host = os.environ.get('KUBERNETES_SERVICE_HOST')
    port = os.environ.get('KUBERNETES_SERVICE_PORT', '443')
    server = f'https://{host}:{port}' if host else 'https://kubernetes.default.svc'

    return credentials.ConnectionInfo(
        server=server,
        ca_path=ca_path if os.path.exists(ca_path) else None,
        token=token or None,
        default_namespace=namespace or None,
    )


def login_with_kubeconfig() -> credentials.ConnectionInfo | None:
    # As per https://kubernetes.io/docs/concepts/configuration/organize-cluster-access-kubeconfig/
    kubeconfig = os.environ.get('KUBECONFIG')
    if not kubeconfig and os.path.exists(os.path.expanduser('~/.kube/config')):
        kubeconfig = '~/.kube/config'
    if not kubeconfig:
        return None

    paths = [path.strip() for path in kubeconfig.split(os.pathsep)]
    paths = [os.path.expanduser(path) for path in paths if path]

    # As prescribed: if the file is absent or non-deserialisable, then fail. The first value wins.
    current_context: str | None = None
    contexts: dict[Any, Any] = {}
    clusters: dict[Any, Any] = {}
    users: dict[Any, Any] = {}
    for path in paths:

        with open(path, encoding='utf-8') as f:
            config = yaml.safe_load(f.read()) or {}

        if current_context is None:
            current_context = config.get('current-context')
        for item in config.get('contexts', []):
            contexts.setdefault(item['name'], item.get('context') or {})
        for item in config.get('clusters', []):
            clusters.setdefault(item['name'], item.get('cluster') or {})
        for item in config.get('users', []):
            users.setdefault(item['name'], item.get('user') or {})

    if current_context is None:
        raise credentials.LoginError('Current context is not set in kubeconfigs.')
    try:
        context = contexts[current_context]
        cluster = clusters[context['cluster']]
        user = users.get(context.get('user'), {})
    except KeyError as e:
        raise credentials.LoginError(f'Inconsistent kubeconfig: {e} is not defined.') from e

    return credentials.ConnectionInfo(
        server=cluster.get('server'),
        ca_path=cluster.get('certificate-authority'),
        ca_data=cluster.get('certificate-authority-data'),
        insecure=cluster.get('insecure-skip-tls-verify'),
        certificate_path=user.get('client-certificate'),
        certificate_data=user.get('client-certificate-data'),
        private_key_path=user.get('client-key'),
        private_key_data=user.get('client-key-data'),
        username=user.get('username'),
        password=user.get('password'),
        token=user.get('token'),
        default_namespace=context.get('namespace'),
    )
