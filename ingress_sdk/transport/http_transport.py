"""
HTTP transport for the replica v2 API.
"""
import logging
from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..exceptions import TransportError
from ..principal import Principal
from ..request_id import RequestId
from ..version import __version__
from .transport import ReplicaTransport, TransportConfig

logger = logging.getLogger(__name__)

CBOR_CONTENT_TYPE = "application/cbor"


class HttpTransport(ReplicaTransport):
    """
    Replica transport over HTTPS using a pooled ``requests`` session.

    Connection errors and 5xx responses are retried by the session's
    adapter; anything still failing is raised as TransportError.
    """

    def __init__(self, config: Optional[TransportConfig] = None, session: Optional[requests.Session] = None):
        """
        Initialize the HTTP transport.

        Args:
            config: Transport configuration (defaults to TransportConfig())
            session: Optional pre-built session, mostly for tests

        Raises:
            ValueError: If the configured URL is invalid or insecure
        """
        self.config = config or TransportConfig()
        self.config.validate()
        self.base_url = self.config.url.rstrip("/")

        if session is None:
            session = requests.Session()
            retries = Retry(
                total=self.config.retry_count,
                backoff_factor=0.5,
                status_forcelist=[500, 502, 503, 504],
                allowed_methods=["POST"],
                raise_on_status=False,
                connect=self.config.retry_count,
                read=self.config.retry_count,
            )
            session.mount("http://", HTTPAdapter(max_retries=retries))
            session.mount("https://", HTTPAdapter(max_retries=retries))
        self.session = session
        self.session.headers.update({
            "Content-Type": CBOR_CONTENT_TYPE,
            "User-Agent": f"ingress-sdk/{__version__}",
        })
        logger.debug(f"Initialized HTTP transport for {self.base_url}")

    def _endpoint(self, destination: Principal, kind: str) -> str:
        return f"{self.base_url}/api/v2/canister/{destination.to_text()}/{kind}"

    def _post(self, url: str, envelope: bytes) -> requests.Response:
        try:
            response = self.session.post(
                url,
                data=envelope,
                timeout=self.config.timeout,
                verify=self.config.verify_ssl,
            )
        except requests.Timeout as e:
            raise TransportError(f"Request to {url} timed out", detail=str(e)) from e
        except requests.RequestException as e:
            raise TransportError(f"Request to {url} failed: {e}", detail=str(e)) from e

        if response.status_code >= 400:
            detail = response.text[:500] if response.content else ""
            logger.error(f"Replica returned HTTP {response.status_code} for {url}: {detail}")
            raise TransportError(
                f"Replica returned HTTP {response.status_code}",
                status_code=response.status_code,
                detail=detail,
            )
        return response

    def call(self, destination: Principal, envelope: bytes, request_id: RequestId) -> None:
        logger.info("Submitting update call %s to %s", request_id.hex, destination)
        response = self._post(self._endpoint(destination, "call"), envelope)
        if response.status_code != 202:
            logger.warning(f"Unexpected status {response.status_code} for call {request_id.hex} (expected 202)")

    def query(self, destination: Principal, envelope: bytes) -> bytes:
        logger.debug("Sending query to %s", destination)
        return self._post(self._endpoint(destination, "query"), envelope).content

    def query_for_status(self, destination: Principal, envelope: bytes) -> bytes:
        return self._post(self._endpoint(destination, "read_state"), envelope).content

    def close(self) -> None:
        self.session.close()
