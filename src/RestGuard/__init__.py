"""Resilient HTTP request execution across interchangeable service nodes.

Register :class:`RestService` pools of :class:`RestNode` endpoints on a
:class:`RestGuard`, take a :class:`RestTicket` per logical call, and let the
guard build, send and retry the request, rotating across nodes until a
response is accepted.  :meth:`RestGuard.do_download` streams an accepted body
to disk and returns a :class:`RestArtefact` with its size and digest.
"""

from .download import ArtefactWriter
from .errors import (
    ConfigurationError,
    DeadlineExceeded,
    FileIOError,
    InvalidResponse,
    MissingValidator,
    NodeListEmpty,
    RestGuardError,
    RetryCallbackError,
    ServiceNotFound,
    TransportError,
    ValidationFailed,
)
from .guard import RestGuard
from .logging_utils import setup_logging
from .settings import DEFAULT_USER_AGENT, GuardConfiguration, ServiceConfiguration, load_config
from .specs import (
    RequestBodyProducer,
    ResponseCloseHook,
    ResponseValidator,
    RestArtefact,
    RestNode,
    RestService,
    RestTicket,
    RetryNodeSelector,
    default_response_validator,
    reject,
)
from .version import RGUARD_VERSION, __version__

__all__ = [
    "__version__",
    "RGUARD_VERSION",
    "DEFAULT_USER_AGENT",
    "ArtefactWriter",
    "GuardConfiguration",
    "ServiceConfiguration",
    "load_config",
    "setup_logging",
    "RestGuard",
    "RestArtefact",
    "RestNode",
    "RestService",
    "RestTicket",
    "RequestBodyProducer",
    "ResponseCloseHook",
    "ResponseValidator",
    "RetryNodeSelector",
    "default_response_validator",
    "reject",
    "RestGuardError",
    "ConfigurationError",
    "ServiceNotFound",
    "NodeListEmpty",
    "MissingValidator",
    "TransportError",
    "DeadlineExceeded",
    "ValidationFailed",
    "RetryCallbackError",
    "InvalidResponse",
    "FileIOError",
]
