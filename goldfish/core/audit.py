#!/usr/bin/env python3
"""
goldfish Audit Trail

One JSON line per security-relevant event on the "goldfish.audit" logger:
- credential_bootstrap: wrapping token unwrap at startup or via /v1/bootstrap
- shutdown:             signal received, dev backend teardown requested

Token values never reach a record; detail keys naming a token are dropped.
"""

import json
import logging
import os
import time
from typing import Any, Dict, Optional

from fastapi import Request

_SECRET_KEYS = ("token", "secret")


def _request_context(request: Request) -> Dict[str, str]:
    return {
        "remote_addr": request.client.host if request.client else "unknown",
        "user_agent": request.headers.get("user-agent", "unknown"),
        "request": f"{request.method} {request.url.path}",
    }


class AuditLogger:
    """Writes goldfish audit records."""

    def __init__(self, name: str = "goldfish.audit"):
        self.logger = logging.getLogger(name)

    def _emit(self, event: str, details: Dict[str, Any], request: Optional[Request] = None) -> None:
        record = {
            "time": int(time.time()),
            "pid": os.getpid(),
            "event": event,
            "details": {k: v for k, v in details.items() if not any(s in k for s in _SECRET_KEYS)},
        }
        if request is not None:
            record.update(_request_context(request))
        self.logger.info(json.dumps(record, default=str))

    def credential_bootstrap(self, success: bool, source: str, details: Dict[str, Any],
                             request: Optional[Request] = None) -> None:
        """source is "startup" or "api"."""
        self._emit("credential_bootstrap", {"success": success, "source": source, **details}, request)

    def shutdown(self, signal_name: str, dev_backend: bool) -> None:
        self._emit("shutdown", {"signal": signal_name, "dev_backend": dev_backend})


audit_logger = AuditLogger()
