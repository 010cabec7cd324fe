"""
Centralized Observability Infrastructure.
Provides structured logging setup and Sentry SDK initialization
governed entirely by environment variables.
"""

import os
import logging
import re
from typing import Any, Dict

log = logging.getLogger(__name__)

SENSITIVE_KEYS = {
    "password", "idtoken", "id_token", "refreshtoken", "refresh_token",
    "server_auth_code", "serverauthcode", "postbody", "client_secret", "api_key", "key",
}

# Patterns to scrub in Sentry events
SENSITIVE_PATTERNS = [
    re.compile(r"((?:idToken|id_token|refresh_token|serverAuthCode|password)=)[^&\s]+"),
    re.compile(r"([a-zA-Z0-9_\-]{30,})"),  # Catch tokens/dsn looking strings
]


def _mask_string(val: str) -> str:
    val = SENSITIVE_PATTERNS[0].sub(r"\1[REDACTED]", val)
    return SENSITIVE_PATTERNS[1].sub("[REDACTED]", val)


def _recursive_scrub(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {
            k: "[REDACTED]" if str(k).lower() in SENSITIVE_KEYS else _recursive_scrub(v)
            for k, v in obj.items()
        }
    elif isinstance(obj, list):
        return [_recursive_scrub(i) for i in obj]
    elif isinstance(obj, str):
        return _mask_string(obj)
    return obj


def _scrub_sensitive_data(event: Dict[str, Any], hint: Dict[str, Any]) -> Dict[str, Any]:
    """
    Sentry before_send hook. Scrubs passwords, id/refresh tokens and
    platform auth codes from stack frame locals, request data and
    breadcrumbs before the event leaves the client.
    """
    for exc in event.get("exception", {}).get("values", []):
        for frame in exc.get("stacktrace", {}).get("frames", []):
            if "vars" in frame:
                frame["vars"] = _recursive_scrub(frame["vars"])

    if "request" in event:
        event["request"] = _recursive_scrub(event["request"])

    breadcrumbs = event.get("breadcrumbs")
    if isinstance(breadcrumbs, dict) and "values" in breadcrumbs:
        breadcrumbs["values"] = _recursive_scrub(breadcrumbs["values"])

    return event


def setup_observability() -> None:
    """
    Initializes global system logging and Sentry (if DSN is present).
    Should be called once at application startup.
    """

    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    # [2026-02-27 15:00:00] INFO - module.name: The message
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    sentry_dsn = os.getenv("SENTRY_DSN")
    if sentry_dsn:
        import sentry_sdk

        sentry_env = os.getenv("SENTRY_ENV", "development")
        sentry_sdk.init(
            dsn=sentry_dsn,
            environment=sentry_env,
            traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.0")),
            send_default_pii=False,
            before_send=_scrub_sensitive_data
        )
        log.info(f"Sentry SDK initialized (env: {sentry_env})")
    else:
        log.info("SENTRY_DSN not provided. Running without Sentry.")

    # Quiet down noisy third-party loggers
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)
