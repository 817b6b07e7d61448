from __future__ import annotations


class MomoError(Exception):
    """Base for every error raised by the engine."""


class ConfigError(MomoError):
    pass


class ExternalCallFailure(MomoError):
    pass


class UploadError(ExternalCallFailure):
    def __init__(self, message: str, *, stderr: str = "") -> None:
        super().__init__(message)
        self.stderr = stderr


class LlmRequestError(ExternalCallFailure):
    pass


class LiveStatusError(ExternalCallFailure):
    pass


class ValidationFailure(MomoError):
    pass


class InvalidArgument(ValidationFailure):
    pass


class PermissionDenied(MomoError):
    pass


class StorageFailure(MomoError):
    pass


class RoomNotFound(LiveStatusError):
    def __init__(self, room_id: str) -> None:
        super().__init__(f"live room {room_id} does not exist")
        self.room_id = room_id
