"""
Grafana region annotation marking the measured window of a run.
"""

import logging
from typing import Any, Dict

import requests

from common.errors import AnnotationError
from configuration import GRAFANA_DASHBOARD_ID, GRAFANA_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class GrafanaAnnotator:
    """Posts one region annotation to a Grafana annotations endpoint."""

    def __init__(self, url: str, dashboard_id: int = GRAFANA_DASHBOARD_ID,
                 timeout: float = GRAFANA_TIMEOUT_SECONDS):
        self.url = url
        self.dashboard_id = dashboard_id
        self.timeout = timeout

        logger.debug(f"Initialized Grafana annotator for {url}")

    def build_payload(self, start_ms: float, duration_ms: float, text: str) -> Dict[str, Any]:
        return {
            "dashboardId": self.dashboard_id,
            "time": int(start_ms),
            "isRegion": True,
            "timeEnd": int(start_ms + duration_ms),
            "tags": [],
            "text": text,
        }

    def annotate(self, start_ms: float, duration_ms: float, text: str) -> Dict[str, Any]:
        """Post the annotation.

        Returns:
            The payload that was sent

        Raises:
            AnnotationError: On a transport error or a non-2xx response
        """
        payload = self.build_payload(start_ms, duration_ms, text)
        try:
            response = requests.post(self.url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise AnnotationError(f"Grafana annotation to {self.url} failed: {e}") from e

        if not 200 <= response.status_code < 300:
            raise AnnotationError(
                f"Grafana annotation to {self.url} rejected: {response.status_code} {response.text[:200]}"
            )

        logger.info(f"Annotated Grafana dashboard {self.dashboard_id}: {text}")
        return payload
