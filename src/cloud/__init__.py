"""
Remote drive integrations.
"""

from .google_drive import GoogleDriveClient
from .protocol import FOLDER_MIME_TYPE, DriveClient, DriveItem, DrivePage, iter_children, list_all_children

__all__ = [
    "GoogleDriveClient",
    "DriveClient",
    "DriveItem",
    "DrivePage",
    "FOLDER_MIME_TYPE",
    "iter_children",
    "list_all_children",
]
