from typing import Optional

from fastapi import HTTPException, status


class AssistantNotConfiguredException(HTTPException):
    def __init__(self, detail: str = "Completion service is not configured. Please check your .env file."):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail,
        )


class CompletionServiceException(HTTPException):
    def __init__(self, detail: str = "Completion service error"):
        super().__init__(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=detail,
        )


class CompletionTimeoutException(HTTPException):
    def __init__(self, detail: str = "Completion service timed out"):
        super().__init__(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail=detail,
        )


class UpstreamError(Exception):
    """An upstream data source answered with a non-2xx status or an unusable body."""

    def __init__(self, source: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{source}: {message}")
        self.source = source
        self.status_code = status_code


class EmbeddingServiceError(Exception):
    """The embedding service failed for a whole batch."""
