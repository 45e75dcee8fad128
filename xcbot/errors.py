"""
Error taxonomy for the flight notification bot.
Every failure is scoped to one poll cycle, one delivery or one command.
"""


class XcBotError(Exception):
    """Base class for all bot errors."""


class FeedUnavailable(XcBotError):
    """The flight feed could not be fetched or parsed."""


class StoreUnavailable(XcBotError):
    """A database operation failed."""


class CommandParseError(XcBotError):
    """An inbound command could not be parsed.

    The message is the usage text that should be sent back to the user.
    """


class DeliveryError(XcBotError):
    """
    A message could not be delivered to a recipient.
    
    Transient errors (timeouts, network problems, rate limits) may be retried.
    Permanent errors (unknown recipient, blocked bot) must not be retried.
    """
    
    def __init__(self, message: str, transient: bool = True):
        super().__init__(message)
        self.transient = transient
    
    def __str__(self) -> str:
        kind = "transient" if self.transient else "permanent"
        return f"{kind}: {super().__str__()}"
