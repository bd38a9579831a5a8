"""mpdfav - MPD client with a sticker-backed playcount tracker."""

__version__ = "0.1.0"
