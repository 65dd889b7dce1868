# errors.py
"""
Error kinds surfaced by the possession proof pipeline.

Verification failure is NOT an error: verify() returns False for forged,
stale or malformed proofs. Everything here is fatal for one invocation only.
"""


class PossessionError(Exception):
    """Base exception for note possession operations"""
    pass


class ConstructionError(PossessionError):
    """Malformed note, tree, hash parameters or relation shape"""
    pass


class UnsatisfiedRelationError(PossessionError):
    """The witness does not satisfy the possession relation"""
    pass


class KeyMismatchError(PossessionError):
    """A key does not belong to the relation or public inputs it is used with"""
    pass


class SerializationError(PossessionError):
    """Corrupt or truncated artifact blob"""
    pass


class ArtifactIOError(PossessionError):
    """Artifact file missing or unreadable"""
    pass
