"""
Transport layer for replica communication.

This module defines the narrow contract the SDK needs from the network:
submitting an update call, running a query, and asking for the status of
a previously submitted call. Implementations must be safe for concurrent
use, since independent status polls may share one transport.
"""
import os
import logging
import urllib.parse
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from ..principal import Principal
from ..request_id import RequestId

logger = logging.getLogger(__name__)

DEFAULT_IC_URL = "https://ic0.app"


@dataclass(frozen=True)
class TransportConfig:
    """
    Explicit configuration of a replica transport.

    Attributes:
        url: Base URL of the replica or boundary node
        timeout: Per-request timeout in seconds
        retry_count: Retries for connection errors and 5xx responses
        verify_ssl: Whether to verify TLS certificates
        allow_insecure: Allow plain HTTP to non-local hosts
    """
    url: str = DEFAULT_IC_URL
    timeout: float = 30.0
    retry_count: int = 3
    verify_ssl: bool = True
    allow_insecure: bool = False

    @classmethod
    def from_env(cls) -> "TransportConfig":
        """
        Build a configuration from the environment.

        Reads ``IC_URL``, ``INGRESS_TIMEOUT`` and ``INGRESS_INSECURE``.
        """
        return cls(
            url=os.environ.get("IC_URL", DEFAULT_IC_URL),
            timeout=float(os.environ.get("INGRESS_TIMEOUT", "30")),
            allow_insecure=os.environ.get("INGRESS_INSECURE") == "1",
        )

    def validate(self) -> None:
        """
        Validate the URL is secure.

        Raises:
            ValueError: If the URL is invalid or uses insecure HTTP
        """
        parsed = urllib.parse.urlparse(self.url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"Invalid replica URL '{self.url}'")

        host = parsed.hostname or ""
        is_local = host in ("localhost", "127.0.0.1", "::1")
        if parsed.scheme != "https" and not is_local and not self.allow_insecure:
            raise ValueError(
                f"Replica URL must use HTTPS for security (got: {parsed.scheme}://). "
                "Set allow_insecure (INGRESS_INSECURE=1) to allow HTTP for development."
            )


class ReplicaTransport(ABC):
    """
    Abstract base class for replica transport implementations.

    Every method takes the already-signed envelope bytes; transports never
    look inside them.
    """

    @abstractmethod
    def call(self, destination: Principal, envelope: bytes, request_id: RequestId) -> None:
        """
        Submit an update call.

        Args:
            destination: Target canister
            envelope: Signed CBOR envelope
            request_id: Request id of the call, for correlation

        Raises:
            TransportError: If the submission fails
        """
        pass

    @abstractmethod
    def query(self, destination: Principal, envelope: bytes) -> bytes:
        """
        Run a query call and return the raw CBOR response.

        Raises:
            TransportError: If the request fails
        """
        pass

    @abstractmethod
    def query_for_status(self, destination: Principal, envelope: bytes) -> bytes:
        """
        Send a signed status query (read_state) and return the raw CBOR response.

        Raises:
            TransportError: If the request fails
        """
        pass

    def close(self) -> None:
        """Close any open connections or resources."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
