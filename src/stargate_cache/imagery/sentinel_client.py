from __future__ import annotations

import logging
import os
from datetime import date
from typing import Any

import requests

from stargate_cache.schemas import BoundingBox, coerce_date

TOKEN_URL = (
    "https://identity.dataspace.copernicus.eu/auth/realms/CDSE/protocol/openid-connect/token"
)
SENTINEL_API_BASE = "https://sh.dataspace.copernicus.eu/api/v1"
COLLECTION = "sentinel-2-l2a"
WGS84_CRS = "http://www.opengis.net/def/crs/EPSG/0/4326"

# Enhanced true colour: 3x gain on B04/B03/B02, gamma 0.9.
TRUE_COLOR_EVALSCRIPT = """//VERSION=3
function setup() {
  return {
    input: ["B02", "B03", "B04"],
    output: { bands: 3 }
  };
}

function evaluatePixel(sample) {
  let r = Math.pow(sample.B04 * 3.0, 0.9);
  let g = Math.pow(sample.B03 * 3.0, 0.9);
  let b = Math.pow(sample.B02 * 3.0, 0.9);
  return [r, g, b];
}
"""

logger = logging.getLogger(__name__)


class SentinelHubClient:
    """Minimal Copernicus Sentinel Hub client: catalog search and PNG process requests.

    The access token is fetched once per client and reused for its lifetime.
    """

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        width: int = 512,
        height: int = 512,
        max_cloud_coverage: int = 40,
        timeout_seconds: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        if not client_id.strip():
            raise ValueError("Sentinel client id is empty.")
        if not client_secret.strip():
            raise ValueError("Sentinel client secret is empty.")
        if width < 1 or height < 1:
            raise ValueError("width and height must be >= 1.")
        if not 0 <= max_cloud_coverage <= 100:
            raise ValueError("max_cloud_coverage must be between 0 and 100.")
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0.")

        self.client_id = client_id
        self.client_secret = client_secret
        self.width = width
        self.height = height
        self.max_cloud_coverage = max_cloud_coverage
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()
        self._token: str | None = None

    @classmethod
    def from_env(
        cls,
        *,
        client_id_env: str = "SENTINEL_CLIENT_ID",
        client_secret_env: str = "SENTINEL_CLIENT_SECRET",
        width: int = 512,
        height: int = 512,
        max_cloud_coverage: int = 40,
        timeout_seconds: float = 30.0,
        session: requests.Session | None = None,
    ) -> SentinelHubClient:
        client_id = os.getenv(client_id_env, "").strip()
        if not client_id:
            raise ValueError(f"Environment variable {client_id_env} is not set.")
        client_secret = os.getenv(client_secret_env, "").strip()
        if not client_secret:
            raise ValueError(f"Environment variable {client_secret_env} is not set.")
        return cls(
            client_id=client_id,
            client_secret=client_secret,
            width=width,
            height=height,
            max_cloud_coverage=max_cloud_coverage,
            timeout_seconds=timeout_seconds,
            session=session,
        )

    def fetch_image(self, image_date: date | str, bounding_box: BoundingBox) -> bytes | None:
        day = coerce_date(image_date).isoformat()
        response = self.session.post(
            f"{SENTINEL_API_BASE}/process",
            headers=self._auth_headers(),
            json=self._process_payload(day=day, bounding_box=bounding_box),
            timeout=self.timeout_seconds,
        )
        if response.status_code >= 400:
            logger.warning(
                "sentinel no image date=%s status=%s body=%s",
                day,
                response.status_code,
                response.text[:200],
            )
            return None

        logger.info("sentinel image date=%s bytes=%d", day, len(response.content))
        return response.content

    def search_available_dates(
        self,
        bounding_box: BoundingBox,
        start: date | str,
        end: date | str,
    ) -> list[date]:
        """Acquisition dates under the cloud threshold; empty on any failure."""
        start_day = coerce_date(start).isoformat()
        end_day = coerce_date(end).isoformat()
        body = {
            "collections": [COLLECTION],
            "datetime": f"{start_day}T00:00:00Z/{end_day}T23:59:59Z",
            "bbox": list(bounding_box.as_tuple()),
            "limit": 1000,
            "query": {"eo:cloud_cover": {"lt": self.max_cloud_coverage}},
        }
        try:
            response = self.session.post(
                f"{SENTINEL_API_BASE}/catalog/search",
                headers=self._auth_headers(),
                json=body,
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError):
            logger.warning("sentinel catalog search failed", exc_info=True)
            return []

        dates = self._extract_dates(payload)
        logger.info(
            "sentinel catalog dates=%d max_cloud_coverage=%d",
            len(dates),
            self.max_cloud_coverage,
        )
        return dates

    def _auth_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._access_token()}",
            "Content-Type": "application/json",
        }

    def _access_token(self) -> str:
        if self._token is not None:
            return self._token

        response = self.session.post(
            TOKEN_URL,
            data={
                "grant_type": "client_credentials",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            },
            timeout=self.timeout_seconds,
        )
        response.raise_for_status()
        payload = response.json()
        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(token, str) or not token:
            raise ValueError("Sentinel token response has no access_token.")
        self._token = token
        return token

    def _process_payload(self, *, day: str, bounding_box: BoundingBox) -> dict[str, Any]:
        return {
            "input": {
                "bounds": {
                    "bbox": list(bounding_box.as_tuple()),
                    "properties": {"crs": WGS84_CRS},
                },
                "data": [
                    {
                        "type": COLLECTION,
                        "dataFilter": {
                            "timeRange": {
                                "from": f"{day}T00:00:00Z",
                                "to": f"{day}T23:59:59Z",
                            },
                            "maxCloudCoverage": self.max_cloud_coverage,
                        },
                    }
                ],
            },
            "output": {
                "width": self.width,
                "height": self.height,
                "responses": [{"identifier": "default", "format": {"type": "image/png"}}],
            },
            "evalscript": TRUE_COLOR_EVALSCRIPT,
        }

    @staticmethod
    def _extract_dates(payload: Any) -> list[date]:
        if not isinstance(payload, dict):
            return []
        features = payload.get("features")
        if not isinstance(features, list):
            return []

        dates: set[date] = set()
        for feature in features:
            if not isinstance(feature, dict):
                continue
            properties = feature.get("properties")
            if not isinstance(properties, dict):
                continue
            raw = properties.get("datetime")
            if not isinstance(raw, str):
                continue
            try:
                dates.add(coerce_date(raw))
            except ValueError:
                continue
        return sorted(dates)
