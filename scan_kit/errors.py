class ScanKitError(Exception):
    """Base class for scan_kit runtime errors."""


class ModelLoadError(ScanKitError):
    """The model could not be parsed or the runtime could not be initialised."""


class InferenceError(ScanKitError):
    """A single native inference call failed. The session remains usable."""
