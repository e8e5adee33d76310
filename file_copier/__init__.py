"""File Copier: mirrors new files from a watched folder into a destination.

Watches a source folder for new and renamed files and copies them to a
configured destination, retrying while the writer still holds the file, and
restarts itself once a day.
"""

__version__ = "1.0.0"
__app_name__ = "File Copier"
