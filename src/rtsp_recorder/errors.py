class RecorderError(Exception):
    """Base class for every error raised by rtsp_recorder."""


class ConfigError(RecorderError):
    """The source list is missing, malformed or violates an invariant.

    Fatal at startup: raised before any worker is launched.
    """


class DirectoryError(RecorderError):
    """A per-source output directory could not be created."""


class ProcessLaunchError(RecorderError):
    """The external process could not be started (not found, not executable, ...)."""


class ProcessIOError(RecorderError):
    """Reading the merged output stream of a running process failed."""


class RelayBootstrapError(RecorderError):
    """The relay server script could not be started or read."""
