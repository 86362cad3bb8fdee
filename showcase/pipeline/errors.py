"""
Error taxonomy for the generation pipeline.

Every error carries the HTTP status the routes translate it to. Jobs raise
these at their boundary after refunding credits and annotating the project.
"""


class PipelineError(Exception):
    """Base class for all user-facing pipeline failures."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class BadRequest(PipelineError):
    status_code = 400


class Unauthorized(PipelineError):
    status_code = 401


class PaymentRequired(PipelineError):
    status_code = 402


class InsufficientCredits(PaymentRequired):
    """Raised by the ledger when a reservation would overdraw the balance."""


class NotFound(PipelineError):
    status_code = 404


class Conflict(PipelineError):
    status_code = 409


class PreconditionFailed(PipelineError):
    status_code = 412


class UpstreamError(PipelineError):
    """The generative model returned an unusable or absent result."""

    status_code = 502


class GenerationTimedOut(UpstreamError):
    status_code = 504


class StorageError(PipelineError):
    """Normalizer or object-storage failure."""

    status_code = 500


class InternalError(PipelineError):
    status_code = 500
