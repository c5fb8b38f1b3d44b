"""Services for running the discovery pipeline."""

from src.services.discovery_service import DiscoveryResult, DiscoveryService, RunStats

__all__ = ["DiscoveryResult", "DiscoveryService", "RunStats"]
