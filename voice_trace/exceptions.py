class VoiceTraceError(Exception):
    """Base exception for the voice trace engine.

    Malformed instrumentation data never raises; these exceptions signal
    caller misuse (bad settings, invalid arguments).
    """

    def __init__(self, message: str, user_facing: bool = False):
        """Initialize the voice trace error.

        Args:
            message: The error message.
            user_facing: Whether the message is safe to show to the user.
        """
        super().__init__(message)
        self.message = message
        self.user_facing = user_facing


class ConfigurationError(VoiceTraceError):
    """Raised when engine settings are invalid."""

    def __init__(self, message: str):
        """Initialize a configuration error."""
        super().__init__(message, user_facing=True)


class InvalidPercentileError(VoiceTraceError, ValueError):
    """Raised when a percentile outside 0..100 is requested."""

    def __init__(self, percentile: float):
        """Initialize an invalid percentile error."""
        super().__init__(f"Percentile must be within [0, 100], got {percentile}")
        self.percentile = percentile
