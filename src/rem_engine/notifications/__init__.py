"""Notification sub-package — delivery of evaluation results to subscribers."""

from rem_engine.notifications.handlers import (
    CallbackSubscriber,
    ResultDispatcher,
    ResultSubscriber,
)

__all__ = ["CallbackSubscriber", "ResultDispatcher", "ResultSubscriber"]
