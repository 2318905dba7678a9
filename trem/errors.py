"""Exception taxonomy for the repository core."""
from __future__ import annotations


class TremError(Exception):
    """Base class for all repository-core errors."""


# ── Structural (tree) errors ───────────────────────────────────────

class NodeNotFoundError(TremError):
    def __init__(self, node_id: str, message: str = ""):
        self.node_id = node_id
        super().__init__(message or f"Node {node_id} not found")


class TypeMismatchError(TremError):
    def __init__(self, node_id: str, expected: str, actual: str):
        self.node_id = node_id
        self.expected = expected
        self.actual = actual
        super().__init__(f"Node {node_id} is a {actual}, expected a {expected}")


class LockedNodeError(TremError):
    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Node {node_id} is locked")


class DuplicateNodeError(TremError):
    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Node id {node_id} already exists in the tree")


# ── Facade lookups ─────────────────────────────────────────────────

class RepositoryNotFoundError(TremError):
    def __init__(self, repository_id: int):
        self.repository_id = repository_id
        super().__init__(f"Repository {repository_id} not found")


class AssetNotFoundError(TremError):
    def __init__(self, asset_id: str):
        self.asset_id = asset_id
        super().__init__(f"Asset {asset_id} not found")


# ── External collaborators ─────────────────────────────────────────

class CollaboratorError(TremError):
    """A call to an external service failed; the pipeline recovers locally."""


class ExtractionError(CollaboratorError):
    pass


class TranscriptionError(CollaboratorError):
    pass


class TranscriptionTimeoutError(TranscriptionError):
    def __init__(self, prediction_id: str, attempts: int):
        self.prediction_id = prediction_id
        self.attempts = attempts
        super().__init__(f"Prediction {prediction_id} still running after {attempts} polls")


class AnalysisError(CollaboratorError):
    pass
