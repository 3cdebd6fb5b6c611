"""ProjectSync Provisioning — external folder creation for new projects."""

from projectsync.provisioning.drive import FOLDER_MIME_TYPE, DriveClient  # noqa: F401
from projectsync.provisioning.folders import FolderProvisioner  # noqa: F401

__all__ = [
    "FOLDER_MIME_TYPE",
    "DriveClient",
    "FolderProvisioner",
]
