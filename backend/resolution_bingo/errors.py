"""Errors raised by the game-state engine.

Every error is recoverable by the caller and is surfaced verbatim at the HTTP
boundary as ``{"error": message}`` with the class' status code.
"""
from flask import jsonify


class BingoError(Exception):
    status_code = 400

    def __init__(self, message=None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class NotFound(BingoError):
    status_code = 404


class PreconditionNotMet(BingoError):
    status_code = 409


class NotAuthorized(BingoError):
    status_code = 403


class NotOwner(NotAuthorized):
    pass


class CompletingUserCannotVote(NotAuthorized):
    pass


class InvalidTransition(BingoError):
    status_code = 409


class CellIsEmptyOrJoker(InvalidTransition):
    pass


class ThreadAlreadyOpen(InvalidTransition):
    pass


class ThreadClosed(BingoError):
    status_code = 409


class FileTooLarge(BingoError):
    status_code = 413


class UnsupportedFileType(BingoError):
    status_code = 415


class ValidationError(BingoError):
    status_code = 400


class EmptyContent(ValidationError):
    pass


class InvalidVoteValue(ValidationError):
    pass


class DuplicateContent(ValidationError):
    pass


class UnsafeStoragePath(BingoError):
    status_code = 500


def register_error_handlers(flask_app):
    @flask_app.errorhandler(BingoError)
    def handle_bingo_error(exc):
        return jsonify({'error': exc.message}), exc.status_code

    @flask_app.errorhandler(413)
    def handle_request_too_large(_exc):
        return jsonify({'error': 'File size exceeds the upload limit'}), 413
