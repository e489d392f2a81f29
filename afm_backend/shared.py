"""Backend-facing alias for shared utilities."""

from __future__ import annotations

import afm_shared as _root_shared

Result = _root_shared.Result
ErrorCode = _root_shared.ErrorCode
get_logger = _root_shared.get_logger
log_success = _root_shared.log_success
log_structured = _root_shared.log_structured
request_id_var = _root_shared.request_id_var
sanitize_error_message = _root_shared.sanitize_error_message

__all__ = [
    "Result",
    "ErrorCode",
    "get_logger",
    "log_success",
    "log_structured",
    "request_id_var",
    "sanitize_error_message",
]
