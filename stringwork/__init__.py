"""Coordination core for a driver agent and its worker agents: state, assignment, liveness, notifications and a socket proxy."""

__version__ = "0.1.0"