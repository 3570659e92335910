"""Exceptions raised by the attendance core.

Terminal outcomes such as low samples, timeouts and cancellation are
reported as controller states, not exceptions.
"""


class AttendanceError(Exception):
    """Base class for all attendance core errors."""


class CameraError(AttendanceError):
    """The camera could not be used."""


class PermissionDenied(CameraError):
    """Access to the camera device was refused."""


class NotSecureContext(CameraError):
    """The camera source is not reachable over a secure transport."""


class DeviceUnavailable(CameraError):
    """The camera device is missing, busy or failed to open."""


class ModelError(AttendanceError):
    """Face models could not be used."""


class ModelsUnavailable(ModelError):
    """Face models were used before they were loaded."""


class ModelLoadError(ModelError):
    """Face models could not be downloaded or initialized."""


class NotEnrolled(AttendanceError):
    """The identity has no reference embedding."""

    def __init__(self, identity_id):
        super().__init__(f"Identity {identity_id!r} has no registered face")
        self.identity_id = identity_id
