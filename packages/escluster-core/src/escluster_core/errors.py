"""
Error taxonomy for cluster reconciliation.

Only InvalidSpecError and CACorruptionError halt reconciliation of a
cluster; both are written to user-visible status. Every other kind keeps
the control loop alive and is retried on the next tick or backoff interval.
Quorum deferral is not an exception: the sequencer reports it as a result.
"""


class OperatorError(Exception):
    """Base class for all reconciliation errors."""

    fatal: bool = False
    """True if retrying without operator intervention cannot succeed."""


class InvalidSpecError(OperatorError):
    """
    The desired-state spec cannot be planned (e.g. no master pool).

    Fatal: requires a spec correction. No partial changes are attempted.
    """

    fatal = True

    def __init__(self, cluster: str, problems: list[str]) -> None:
        self.cluster = cluster
        self.problems = problems
        super().__init__(str(self))

    def __str__(self) -> str:
        return f"Invalid spec for {self.cluster}: {'; '.join(self.problems)}"


class TransientError(OperatorError):
    """API or network failure expected to clear on retry."""


class PersistenceFailure(OperatorError):
    """A write to the resource or secret store did not complete."""


class CACorruptionError(OperatorError):
    """
    The persisted CA cannot be parsed or its key does not match.

    Fatal and never auto-repaired: regenerating the CA would break the
    trust of every existing node.
    """

    fatal = True

    def __init__(self, secret_name: str, reason: str) -> None:
        self.secret_name = secret_name
        self.reason = reason
        super().__init__(f"CA secret {secret_name} is corrupt: {reason}")


class StepError(OperatorError):
    """
    A rollout step was rejected permanently by the workload platform.

    The sequencer pauses on this error instead of retrying.
    """
