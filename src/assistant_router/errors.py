"""
Error hierarchy for the request router.

Client and synthesis errors abort a turn. Dispatch failures are never raised;
they travel as a classification on DispatchResult (see pipeline.models).
"""

from typing import Optional, Sequence


class RouterError(Exception):
    """Base class for all router errors."""

    kind = "router_error"


class ConfigurationError(RouterError):
    """Invalid configuration detected at startup."""

    kind = "configuration_error"


class ClientUnavailable(RouterError):
    """An external model API failed, timed out, or answered with garbage."""

    kind = "client_unavailable"
    client = "external"

    def __init__(self, detail: str, url: Optional[str] = None):
        self.detail = detail
        self.url = url
        where = f" at {url}" if url else ""
        super().__init__(f"{self.client} client unavailable{where}: {detail}")


class EmbeddingUnavailable(ClientUnavailable):
    kind = "embedding_unavailable"
    client = "embedding"


class RerankUnavailable(ClientUnavailable):
    kind = "rerank_unavailable"
    client = "reranking"


class GenerationUnavailable(ClientUnavailable):
    kind = "generation_unavailable"
    client = "generation"


class SynthesisFailed(RouterError):
    """Generation never produced a payload that validates against the descriptor."""

    kind = "synthesis_failed"

    def __init__(self, endpoint: str, attempts: int, errors: Sequence[str] = ()):
        self.endpoint = endpoint
        self.attempts = attempts
        self.errors = list(errors)
        last = f": {self.errors[-1]}" if self.errors else ""
        super().__init__(
            f"Could not synthesize a valid request for {endpoint} "
            f"after {attempts} attempt(s){last}"
        )


class SessionBusy(RouterError):
    """A turn is already running for this session."""

    kind = "session_busy"

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session '{session_id}' already has a turn in flight")
