"""
Shared HTTP session for alert delivery: connection pooling, retry on
gateway errors, and a CA bundle that survives frozen (PyInstaller) builds.
"""

import os

import certifi
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

_retry_strategy = Retry(
    total=3,
    backoff_factor=2,
    status_forcelist=[502, 503, 504],
    allowed_methods=["GET", "POST"],
)


def _get_ca_bundle():
    """ProgramData copy → REQUESTS_CA_BUNDLE / SSL_CERT_FILE → certifi."""
    permanent = os.path.join(
        os.environ.get("PROGRAMDATA", "C:\\ProgramData"), "DeskGuard", "cacert.pem",
    )
    if os.path.isfile(permanent):
        return permanent
    env_ca = os.environ.get("REQUESTS_CA_BUNDLE") or os.environ.get("SSL_CERT_FILE")
    if env_ca and os.path.isfile(env_ca):
        return env_ca
    return certifi.where()


def create_session():
    session = requests.Session()
    adapter = HTTPAdapter(pool_connections=1, pool_maxsize=4, max_retries=_retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    session.verify = _get_ca_bundle()
    session.headers["User-Agent"] = "DeskGuard-Agent"
    return session


def reset_session(session):
    """Close and recreate the session (stale connections after a crash)."""
    try:
        session.close()
    except Exception:
        pass
    return create_session()


http = create_session()
