"""Use cases for the uploader service."""

from .commit_blocks import CommitCoordinator
from .orchestrate_upload import UploadOrchestrator
from .upload_blocks import BlockUploader

__all__ = [
    "BlockUploader",
    "CommitCoordinator",
    "UploadOrchestrator",
]
