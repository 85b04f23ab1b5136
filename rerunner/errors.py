"""Project-level exception hierarchy."""


class RerunnerError(Exception):
    """Base for all rerunner exceptions."""


class StartupValidationError(RerunnerError):
    """A path given on the command line does not exist."""


class ConfigError(RerunnerError):
    """Configuration file could not be read or validated."""


class RunError(RerunnerError):
    """A single run failed. Never fatal to the supervisor."""


class DirectoryChangeError(RunError):
    """The working directory for a run is missing or unusable."""


class SpawnError(RunError):
    """The job process could not be created."""


class WatchError(RerunnerError):
    """The file watcher stopped or could not be started."""
