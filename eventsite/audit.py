"""Turns user lifecycle events into audit log lines."""

import logging

from .lifecycle import AFTER_DESTROY, BEFORE_DESTROY, LifecycleEvent
from .logger import audit_logger


class AuditLog:
    """Observer passed to lifecycle.destroy_audit; it records, it never vetoes."""

    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or audit_logger

    def record(self, event: LifecycleEvent) -> None:
        if event.kind == BEFORE_DESTROY:
            self.logger.info(f"##### About to destroy user {event.name} (id={event.user_id}) #####")
        elif event.kind == AFTER_DESTROY:
            self.logger.info(f"########### User {event.name} (id={event.user_id}) destroyed ###########")
        else:
            self.logger.debug(f"Lifecycle event {event.kind} for user id={event.user_id}")

    __call__ = record


audit_log = AuditLog()
