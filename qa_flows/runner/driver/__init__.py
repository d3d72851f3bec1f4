"""Default automation driver backed by the Chrome DevTools Protocol."""

from .cdp import CdpDriver, open_session, url_matches

__all__ = ["CdpDriver", "open_session", "url_matches"]
