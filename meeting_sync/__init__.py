"""
Meeting recording sync.

Pulls cloud recordings from Zoom, copies new media files to Google Drive and
keeps a ledger of what has been transferred.
"""

__version__ = "1.0.0"
