"""Container lifecycle adapter.

The job engine talks to containers only through the ``Container`` and
``ContainerEngine`` protocols; ``DockerEngine`` is the production driver
and ``StubEngine`` the in-memory one used by tests.
"""

from localci.container._types import (
    Container,
    ContainerEngine,
    ContainerSpec,
    FileEntry,
    OutputSink,
)
from localci.container.docker import DockerContainer, DockerEngine, DockerResult, https_remote_url
from localci.container.line_writer import LineHandler, LineWriter
from localci.container.naming import create_container_name, trim_to_len
from localci.container.stub import StubCall, StubContainer, StubEngine

__all__ = [
    "Container",
    "ContainerEngine",
    "ContainerSpec",
    "FileEntry",
    "OutputSink",
    "DockerContainer",
    "DockerEngine",
    "DockerResult",
    "https_remote_url",
    "LineHandler",
    "LineWriter",
    "create_container_name",
    "trim_to_len",
    "StubCall",
    "StubContainer",
    "StubEngine",
]
