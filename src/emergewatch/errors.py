"""Exceptions raised by emergewatch."""


class WatcherError(Exception):
    """Base class for all emergewatch errors."""


class ScanError(WatcherError):
    """The process table could not be enumerated."""


class ChannelClosedError(WatcherError):
    """The receiving side of a job table channel is gone."""


class VersionProbeError(WatcherError):
    """The Portage version could not be determined."""
