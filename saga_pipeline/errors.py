"""Error taxonomy shared by the store, the queue and the services."""


class SagaPipelineError(Exception):
    """Base class for every error raised by the pipeline."""


class NotFound(SagaPipelineError):
    """Unknown saga or job id."""

    def __init__(self, kind: str, identifier: str):
        super().__init__(f"{kind} {identifier} not found")
        self.kind = kind
        self.identifier = identifier


class QueueUnavailable(SagaPipelineError):
    """The queue broker could not be reached."""


class InvalidTransition(SagaPipelineError):
    """A state change that the normal path does not allow."""


class AlreadyTerminal(InvalidTransition):
    """The saga already reached completed/failed and cannot be written again."""

    def __init__(self, saga_id: str, status: str):
        super().__init__(f"Saga {saga_id} is already {status}")
        self.saga_id = saga_id
        self.status = status


class CollaboratorFailure(SagaPipelineError):
    """The text or image generation collaborator failed."""

    def __init__(self, stage: str, message: str):
        super().__init__(f"{stage} failed: {message}")
        self.stage = stage


class ConcurrentUpdate(SagaPipelineError):
    """A compare-and-set write kept losing against concurrent writers."""
