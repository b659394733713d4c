"""Persistence of workflows, runs, tenants and credentials."""

from relay.storage.credentials import CredentialStore
from relay.storage.recorder import RunRecorder
from relay.storage.runs import RunRepository
from relay.storage.workflows import WorkflowRepository

__all__ = ["CredentialStore", "RunRecorder", "RunRepository", "WorkflowRepository"]
