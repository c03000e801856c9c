# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

# infra/namespaces.py

class REDIS:
    class USAGE:
        CONVERSATIONS_PREFIX = "elva:usage:conversations"
        INDEX_SUFFIX = "index"
        NOTIFIED_SUFFIX = "notified"
        CLAIM_SUFFIX = "claim"

class CONFIG:
    class QUOTA:
        NOTIFY_CLAIM_TTL_SEC = 300
