"""Plain records for nodes, services, tickets and artefacts, plus callback protocols."""

from .artefact import RestArtefact
from .callbacks import (
    ACCEPTED_STATUS_CODES,
    RequestBodyProducer,
    ResponseCloseHook,
    ResponseValidator,
    RetryNodeSelector,
    default_response_validator,
    reject,
)
from .node import RestNode
from .service import RestService
from .ticket import RestTicket

__all__ = [
    "ACCEPTED_STATUS_CODES",
    "RequestBodyProducer",
    "ResponseCloseHook",
    "ResponseValidator",
    "RestArtefact",
    "RestNode",
    "RestService",
    "RestTicket",
    "RetryNodeSelector",
    "default_response_validator",
    "reject",
]
