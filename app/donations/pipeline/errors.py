"""
Failure taxonomy for the receipt pipeline.

Routers map ``status_code`` onto the HTTP response; ``step`` names the
pipeline stage that aborted.
"""
from __future__ import annotations


class PipelineError(Exception):
    status_code = 500
    error = "Internal server error"

    def __init__(self, message: str, step: str = "approval_process"):
        super().__init__(message)
        self.message = message
        self.step = step


class DonationNotFound(PipelineError):
    status_code = 404
    error = "Donation not found"

    def __init__(self, donation_id: str):
        super().__init__(f"No donation with id {donation_id}", step="fetch")
        self.donation_id = donation_id


class AlreadyApproved(PipelineError):
    status_code = 400
    error = "Donation already approved"

    def __init__(self, donation_id: str):
        super().__init__(f"Donation {donation_id} is already approved", step="guard")
        self.donation_id = donation_id


class InvalidTransition(PipelineError):
    status_code = 400
    error = "Invalid status transition"

    def __init__(self, donation_id: str, current: str, target: str):
        super().__init__(
            f"Donation {donation_id} cannot move from {current} to {target}", step="guard"
        )
        self.current = current
        self.target = target


class RenderError(PipelineError):
    """Headless browser launch / content / export failure. Safe to retry."""
    error = "PDF generation failed"

    def __init__(self, message: str):
        super().__init__(message, step="render")


class StorageError(PipelineError):
    error = "Storage upload failed"

    def __init__(self, message: str):
        super().__init__(message, step="storage")
