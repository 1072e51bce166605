"""Custom exceptions for readlist-vault.

Provides a structured exception hierarchy with error codes and
machine-readable error information for better error handling.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Record errors (1xxx)
    RECORD_NOT_FOUND = 1001
    RECORD_VALIDATION_FAILED = 1002
    RECORD_ALREADY_EXISTS = 1003

    # Storage errors (4xxx)
    STORAGE_READ_FAILED = 4001
    STORAGE_WRITE_FAILED = 4002
    STORAGE_DELETE_FAILED = 4003

    # Backup errors (45xx)
    BACKUP_FAILED = 4501

    # Sync errors (5xxx)
    SYNC_NOT_CONFIGURED = 5001
    SYNC_IN_PROGRESS = 5002
    SYNC_FAILED = 5003

    # Configuration errors (6xxx)
    CONFIG_INVALID = 6001
    CONFIG_MISSING = 6002

    # Validation errors (7xxx)
    VALIDATION_FAILED = 7001


class ReadlistError(Exception):
    """Base exception for all readlist-vault errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class RecordNotFoundError(ReadlistError):
    """Raised when a record cannot be found."""

    def __init__(self, record_id: int, message: Optional[str] = None):
        super().__init__(
            message or f"Record with ID '{record_id}' not found",
            code=ErrorCode.RECORD_NOT_FOUND,
            details={"record_id": record_id}
        )
        self.record_id = record_id


class StorageError(ReadlistError):
    """Raised for storage/persistence errors."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        path: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_READ_FAILED,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if path:
            # Don't expose full paths in error messages
            details["path_hint"] = path.split("/")[-1] if "/" in path else path
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.path = path
        self.original_error = original_error


class BackupError(StorageError):
    """Raised when the pre-sync backup cannot be written.

    A sync pass with backups enabled must not proceed without one.
    """

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(
            message,
            operation="backup",
            path=path,
            code=ErrorCode.BACKUP_FAILED,
            original_error=original_error
        )


class ConfigurationError(ReadlistError):
    """Raised for configuration-related errors."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        code: ErrorCode = ErrorCode.CONFIG_INVALID
    ):
        details = {}
        if config_key:
            details["config_key"] = config_key

        super().__init__(message, code=code, details=details)
        self.config_key = config_key


class SyncError(ReadlistError):
    """Raised when a whole sync call cannot run."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        code: ErrorCode = ErrorCode.SYNC_FAILED
    ):
        details = {}
        if operation:
            details["operation"] = operation

        super().__init__(message, code=code, details=details)
        self.operation = operation


class ValidationError(ReadlistError):
    """Raised for general validation errors."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value
