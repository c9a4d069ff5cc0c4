"""Exception hierarchy for StakeScope.

Only configuration problems are allowed to escape a pipeline run. Remote
and persistence failures are converted into result values at the layer
that observes them.
"""


class StakeScopeError(Exception):
    """Base exception for StakeScope."""


class ConfigurationError(StakeScopeError):
    """Missing or invalid configuration. Aborts a run before any fetch."""
