class DoorLockError(Exception):
    """Base exception for the door lock system."""


class CameraUnavailable(DoorLockError):
    """Raised when the camera is denied, missing or already claimed."""


class BufferUnavailable(DoorLockError):
    """Raised when a frame is requested while the camera is not streaming."""


class ValidationError(DoorLockError):
    """Raised when an enrollment is submitted with missing fields."""


class StorageError(DoorLockError):
    """Raised when registry persistence fails."""


class InvalidTransition(DoorLockError):
    """Raised when a capture operation is not allowed in the current state."""
