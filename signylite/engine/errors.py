"""
Marking engine errors.

Every failure carries a stable ``code`` so the session and the HTTP adapter
can report it without parsing messages.
"""


class MarkingError(Exception):
    """Base class for marking engine failures."""

    default_code = "MARKING_ERROR"

    def __init__(self, message: str, code: str = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code


class MissingInputError(MarkingError):
    """No source document or no mark content was provided."""

    default_code = "MISSING_INPUT"


class LoadError(MarkingError):
    """Source bytes are not a readable PDF or image."""

    default_code = "LOAD_ERROR"


class PlacementOutOfRangeError(MarkingError):
    """Placement outside the document. Only raised in strict mode."""

    default_code = "PLACEMENT_OUT_OF_RANGE"


class SerializeError(MarkingError):
    """The mutated document could not be encoded."""

    default_code = "SERIALIZE_ERROR"


class SessionBusyError(MarkingError):
    """An operation is already running on this session."""

    default_code = "SESSION_BUSY"
