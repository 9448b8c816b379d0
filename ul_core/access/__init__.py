"""Serving API keys and monthly request accounting."""

from ul_core.access.api_keys import (
    ALL_PERMISSIONS,
    ApiKeyRecord,
    CreatedApiKey,
    create_api_key,
    list_api_keys,
    revoke_api_key,
    verify_api_key,
)
from ul_core.access.usage import (
    RequestEvent,
    UsageCheck,
    check_and_record_request,
    list_request_events,
    record_request_event,
)

__all__ = [
    "ALL_PERMISSIONS",
    "ApiKeyRecord",
    "CreatedApiKey",
    "RequestEvent",
    "UsageCheck",
    "check_and_record_request",
    "create_api_key",
    "list_api_keys",
    "list_request_events",
    "record_request_event",
    "revoke_api_key",
    "verify_api_key",
]
