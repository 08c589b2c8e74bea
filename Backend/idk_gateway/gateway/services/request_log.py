"""
Provider request logs and the storage collaborator interface.

Every request/response cycle against a provider produces exactly one
AIProviderRequestLog. Streams produce a placeholder log when the stream
opens and the final log once it ends; both go to the storage connector.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import structlog

from idk_gateway.core.config import settings

logger = structlog.get_logger(__name__)

CACHE_STATUS_DISABLED = "DISABLED"


@dataclass(frozen=True)
class AIProviderRequestLog:
    """One provider call as seen by the gateway."""

    provider: str
    function_name: str
    method: str
    request_url: str
    status: int
    request_body: Dict[str, Any] = field(default_factory=dict)
    response_body: Any = None
    raw_request_body: Optional[str] = None
    raw_response_body: Optional[str] = None
    cache_status: str = CACHE_STATUS_DISABLED
    target_index: int = 0
    retry_attempt: int = 0
    latency_ms: Optional[int] = None
    first_token_ms: Optional[int] = None
    stream: bool = False
    request_id: Optional[str] = None
    config: Dict[str, Any] = field(default_factory=dict)
    # Placeholder written when a stream opens, replaced by the final log
    is_placeholder: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class UserDataStorageConnector(Protocol):
    """
    Storage collaborator for request logs and evaluation runs.

    Implementations persist wherever they like; the gateway only calls
    these methods and never depends on a storage schema.
    """

    async def create_log_output(self, log: AIProviderRequestLog) -> None:
        ...

    async def get_evaluation_runs(self, **query: Any) -> List[Dict[str, Any]]:
        ...

    async def update_evaluation_run(self, run_id: str, update: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        ...


class LoggingStorageConnector:
    """
    Default connector: writes logs through structlog, stores nothing.

    Bodies are left out unless request logging is enabled, to keep
    prompts and completions out of the logs by default.
    """

    def __init__(self, include_bodies: Optional[bool] = None):
        self.include_bodies = settings.log.requests if include_bodies is None else include_bodies

    async def create_log_output(self, log: AIProviderRequestLog) -> None:
        payload = log.to_dict()
        if not self.include_bodies:
            for key in ("request_body", "response_body", "raw_request_body", "raw_response_body"):
                payload.pop(key, None)
        logger.info("Provider request", **payload)

    async def get_evaluation_runs(self, **query: Any) -> List[Dict[str, Any]]:
        return []

    async def update_evaluation_run(self, run_id: str, update: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return None


class InMemoryStorageConnector:
    """Keeps logs in a list; used by tests and local debugging."""

    def __init__(self):
        self.logs: List[AIProviderRequestLog] = []
        self.evaluation_runs: Dict[str, Dict[str, Any]] = {}

    async def create_log_output(self, log: AIProviderRequestLog) -> None:
        self.logs.append(log)

    async def get_evaluation_runs(self, **query: Any) -> List[Dict[str, Any]]:
        return [
            run for run in self.evaluation_runs.values()
            if all(run.get(key) == value for key, value in query.items())
        ]

    async def update_evaluation_run(self, run_id: str, update: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        run = self.evaluation_runs.get(run_id)
        if run is None:
            return None
        run.update(update)
        return run
