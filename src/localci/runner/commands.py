"""Workflow commands written by steps to stdout.

Container output passes through a ``LineWriter`` whose first handler is a
``CommandHandler``. Lines of the form ``::command key=value,...::message``
are consumed here and update run state; any other line falls through to
the raw output logger.

.. code-block:: text

    ::set-output name=result::42      steps.<current>.outputs.result = "42"
    ::set-env name=FOO::bar           FOO=bar for every later step
    ::add-path::/opt/tool/bin         prepended to PATH for every later step
    ::debug:: / ::warning:: / ::error:: / ::add-mask::   logged
    ::stop-commands::tok ... ::tok::  lines in between are not commands
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from localci.runner.run_context import RunContext

_COMMAND = re.compile(r"^::([^ :]+)( (.+?))?::([^\r\n]*)")


def unescape_value(value: str) -> str:
    """Undo the ``%25`` / ``%0D`` / ``%0A`` escaping applied by the toolkit."""
    return value.replace("%0D", "\r").replace("%0A", "\n").replace("%25", "%")


def parse_properties(raw: str | None) -> dict[str, str]:
    """Parse ``key=value,key=value`` command properties."""
    properties: dict[str, str] = {}
    if not raw:
        return properties
    for pair in raw.split(","):
        key, sep, value = pair.partition("=")
        if sep:
            properties[key.strip()] = unescape_value(value)
    return properties


class CommandHandler:
    """Line handler applying workflow commands to a ``RunContext``."""

    def __init__(self, rc: RunContext, logger: Any) -> None:
        self._rc = rc
        self._logger = logger
        self._resume_token = ""

    def __call__(self, line: str) -> bool:
        match = _COMMAND.match(line)
        if match is None:
            return True
        command, _, raw_properties, message = match.groups()

        if self._resume_token:
            if command != self._resume_token:
                return True
            self._resume_token = ""
            return False

        properties = parse_properties(raw_properties)
        message = unescape_value(message)

        if command == "set-output":
            self._set_output(properties.get("name", ""), message)
        elif command == "set-env":
            self._set_env(properties.get("name", ""), message)
        elif command == "add-path":
            self._rc.extra_path.insert(0, message)
        elif command == "debug":
            self._logger.debug("workflow_debug", message=message)
        elif command == "warning":
            self._logger.warning("workflow_warning", message=message, properties=properties)
        elif command == "error":
            self._logger.error("workflow_error", message=message, properties=properties)
        elif command == "add-mask":
            self._logger.info("workflow_add_mask", length=len(message))
        elif command == "stop-commands":
            self._resume_token = message
        else:
            self._logger.warning("workflow_command_unknown", command=command)
        return False

    def _set_output(self, name: str, value: str) -> None:
        result = self._rc.step_results.get(self._rc.current_step)
        if not name or result is None:
            self._logger.warning("set_output_ignored", name=name, step=self._rc.current_step)
            return
        self._logger.info("set_output", step=self._rc.current_step, name=name)
        result.outputs[name] = value

    def _set_env(self, name: str, value: str) -> None:
        if not name:
            self._logger.warning("set_env_ignored")
            return
        self._logger.info("set_env", name=name)
        self._rc.exported_env[name] = value
