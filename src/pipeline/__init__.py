"""Ingestion orchestration: task dispatch, sync, webhooks and housekeeping."""

from src.pipeline.orchestrator import IngestionOrchestrator
from src.pipeline.webhook import SIGNATURE_HEADER, compute_signature, verify_signature

__all__ = [
    "IngestionOrchestrator",
    "SIGNATURE_HEADER",
    "compute_signature",
    "verify_signature",
]
