class PotokenError(Exception):
    """Base class for every error raised by the service."""


class AttemptInProgress(PotokenError):
    """Another extraction attempt is already running."""


class ExtractionFailed(PotokenError):
    """An extraction attempt finished without a token."""


class NavigationFailure(ExtractionFailed):
    """The browser could not be launched, reach the embed page or click the player."""


class ExtractionTimeout(ExtractionFailed):
    """The player request was never observed within the allowed time."""


class ParseFailure(ExtractionFailed):
    """A player request was observed but its body did not carry both fields."""


class ImplausibleToken(PotokenError):
    """A token was extracted but is too short to be trusted."""
