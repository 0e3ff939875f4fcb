"""Network transports for the mail and calendar servers."""

from .caldav_client import CalDavClient
from .jmap_client import JmapSession, is_safe_path_segment, sanitize_filename

__all__ = ["CalDavClient", "JmapSession", "is_safe_path_segment", "sanitize_filename"]
