class EbmError(ValueError):
    """Base class for failures raised by the EBM integration."""


class EbmConfigurationError(EbmError):
    """A company is missing configuration the authority needs, such as its TIN."""


class EbmProtocolError(EbmError):
    """The authority answered with an envelope that cannot be persisted."""
