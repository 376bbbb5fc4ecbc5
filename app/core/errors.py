"""Typed errors raised by the service layer.

Routes never see botocore or openai exceptions directly; the service layer
wraps them in these types and app.main maps them onto HTTP responses.
"""


class HomeworkHelperError(Exception):
    """Base class for service-layer errors."""


class StoreError(HomeworkHelperError):
    """The key-value store failed; the whole operation was aborted."""


class UpstreamError(HomeworkHelperError):
    """The model provider failed or returned an unusable reply."""


class QuizFormatError(UpstreamError):
    """The model reply did not contain a parseable quiz array."""


class NotFoundError(HomeworkHelperError):
    """Nothing matched the requested key prefix."""
