"""Shared helpers used across the load balancer and its CLI."""
