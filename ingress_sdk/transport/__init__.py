"""
Transport module for the Ingress SDK.

This module is the boundary to the network: it submits signed envelopes
to a replica and returns the raw responses. The rest of the SDK depends
only on the ReplicaTransport contract.
"""
import logging
from typing import Optional

from .http_transport import HttpTransport
from .stub_transport import StubTransport
from .transport import DEFAULT_IC_URL, ReplicaTransport, TransportConfig

__all__ = ['ReplicaTransport', 'TransportConfig', 'HttpTransport', 'StubTransport',
           'DEFAULT_IC_URL', 'get_transport']

logger = logging.getLogger(__name__)


def get_transport(config: Optional[TransportConfig] = None, dry_run: bool = False) -> ReplicaTransport:
    """
    Get a transport implementation for the given configuration.

    Args:
        config: Transport configuration (defaults to TransportConfig())
        dry_run: Return a StubTransport that never touches the network

    Returns:
        Transport implementation
    """
    if dry_run:
        logger.info("Using stub transport (dry run)")
        return StubTransport()
    config = config or TransportConfig()
    logger.info("Using HTTP transport for %s", config.url)
    return HttpTransport(config)
