"""
Custom exceptions for MDB_HANDLE.

These exceptions provide more specific error types while maintaining
backward compatibility with RuntimeError.
"""

from typing import Any, Dict, Optional


class MDBHandleError(RuntimeError):
    """
    Base exception for MDB_HANDLE errors.

    Attributes:
        message: Error message
        context: Optional dictionary with additional context (db_name,
                 namespace, etc.)
    """

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        """
        Initialize the exception.

        Args:
            message: Error message
            context: Optional dictionary with additional context information
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        """Return formatted error message with context if available."""
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} (context: {context_str})"
        return self.message


class TransportError(MDBHandleError):
    """
    Raised when the connection closed or failed before a reply arrived.

    Attributes:
        message: Error message
        namespace: Namespace the failed query targeted (if available)
        context: Additional context information
    """

    def __init__(
        self,
        message: str,
        namespace: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        context = context or {}
        if namespace:
            context["namespace"] = namespace
        super().__init__(message, context=context)
        self.namespace = namespace


class CommandFailed(MDBHandleError):
    """
    Raised when a well-formed reply signals a logical failure.

    The server's ``errmsg`` becomes the message. The reply document is kept
    so non-blocking callers receive it alongside the error.

    Attributes:
        message: Server error message
        code: Server error code (if reported)
        code_name: Server error code name (if reported)
        document: The reply document that carried the failure
    """

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        code_name: Optional[str] = None,
        document: Optional[Dict[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        context = context or {}
        if code is not None:
            context["code"] = code
        if code_name:
            context["code_name"] = code_name
        super().__init__(message, context=context)
        self.code = code
        self.code_name = code_name
        self.document = document


class ConfigurationError(MDBHandleError):
    """
    Raised when configuration is invalid or missing.

    Attributes:
        message: Error message
        config_key: Configuration key that caused the error (if available)
        config_value: Configuration value that caused the error (if available)
        context: Additional context information
    """

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_value: Optional[Any] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Initialize the configuration error.

        Args:
            message: Error message
            config_key: Configuration key that caused the error (if available)
            config_value: Configuration value that caused the error (if available)
            context: Additional context information
        """
        context = context or {}
        if config_key:
            context["config_key"] = config_key
        if config_value is not None:
            context["config_value"] = config_value
        super().__init__(message, context=context)
        self.config_key = config_key
        self.config_value = config_value
