"""Observers that turn run events into side effects (log files)."""

from .step_log import StepLogObserver, describe_event

__all__ = ['StepLogObserver', 'describe_event']
