"""Helpers for Kubernetes: target resolution, rollouts, logs, exec, events, metrics and cleanup."""

__version__ = "0.1.0"