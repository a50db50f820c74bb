"""
Loop Errors
===========
Exceptions raised inside an iteration. Neither escapes Orchestrator.start():
both are turned into a failed LoopResult.
"""


class DeploymentError(Exception):
    """Deployer reported failure. Fatal for the run, never retried."""


class LoopStopped(Exception):
    """The operator called stop() while an iteration was in flight."""
