# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

# sdk/infra/quota/errors.py
from __future__ import annotations


class QuotaError(RuntimeError):
    code = "quota_error"
    status_code = 500

    def __init__(self, message: str, *, code: str | None = None, data: dict | None = None):
        super().__init__(message)
        if code:
            self.code = code
        self.data = data or {}


class OrganizationNotFound(QuotaError):
    code = "organization_not_found"
    status_code = 404


class StorageUnavailable(QuotaError):
    code = "storage_unavailable"
    status_code = 503


class IncrementFailed(QuotaError):
    code = "increment_failed"
    status_code = 500


class NotificationDispatchFailed(QuotaError):
    code = "notification_dispatch_failed"
    status_code = 502


class UnauthorizedReset(QuotaError):
    code = "unauthorized_reset"
    status_code = 403
