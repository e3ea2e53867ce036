"""
Exceptions raised by the import pipeline.
"""


class ImportPipelineError(Exception):
    """Base class for import pipeline failures."""


class ImportJobNotFound(ImportPipelineError):
    def __init__(self, job_id: str):
        super().__init__(f"Import job {job_id} not found")
        self.job_id = job_id


class InvalidJobTransition(ImportPipelineError):
    def __init__(self, job_id: str, current: str, target: str):
        super().__init__(f"Import job {job_id} cannot move from {current} to {target}")
        self.job_id = job_id
        self.current = current
        self.target = target


class SourceFileError(ImportPipelineError):
    """The uploaded file cannot be read as CSV."""
