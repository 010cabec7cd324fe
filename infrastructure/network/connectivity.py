import logging

import requests

log = logging.getLogger(__name__)

DEFAULT_PROBE_URL = "https://clients3.google.com/generate_204"


class RequestsConnectivity:
    """Reachability probe consulted before every identity backend call."""

    def __init__(self, probe_url: str = DEFAULT_PROBE_URL, timeout: float = 3):
        self.probe_url = probe_url
        self.timeout = timeout

    def is_connected(self) -> bool:
        try:
            resp = requests.head(self.probe_url, timeout=self.timeout, allow_redirects=False)
        except requests.RequestException as e:
            log.info(f"Connectivity probe failed: {e}")
            return False
        return resp.status_code < 500
