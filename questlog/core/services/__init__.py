"""
Service wiring for questlog.

`initialize_questlog()` brings up config, logging, the database and the
`ServiceContainer`; `shutdown_questlog()` tears them down again.
"""

from questlog.core.services.container import (
    ServiceContainer,
    get_service_container,
    initialize_questlog,
    shutdown_questlog,
)

__all__ = [
    "ServiceContainer",
    "get_service_container",
    "initialize_questlog",
    "shutdown_questlog",
]
