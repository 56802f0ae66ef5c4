"""
Shared constants for runnerops.

- ``timeouts``: retry, backoff, probe and check bounds
- ``paths``: lock files, hosts, runner files and log locations
"""
