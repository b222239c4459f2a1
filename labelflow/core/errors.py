"""
Domain errors raised by the task lifecycle and export services.

Routers never see SQLAlchemy or botocore exceptions directly: services wrap
them in ``StorageError``. ``labelflow.main`` maps each class to an HTTP status.
"""

from __future__ import annotations


class LabelflowError(Exception):
    status_code = 500

    def __init__(self, message: str, **context) -> None:
        super().__init__(message)
        self.message = message
        self.context = context


class NotFoundError(LabelflowError):
    status_code = 404


class ValidationError(LabelflowError):
    status_code = 400


class InvalidStateError(LabelflowError):
    status_code = 409


class StorageError(LabelflowError):
    status_code = 502


class ExpiredResourceError(LabelflowError):
    status_code = 410
