"""Batch command execution behind an interactive user switch (``sudo su - <user>``).

The switch command runs on a pty-backed exec channel and is driven by prompt
matching: answer the password prompt, wait for the switched user's prompt,
change directory, run the batch command, then exit both shells. The batch
command's output is whatever arrives between sending it and the next
switched-user prompt.
"""
import logging
import threading
from enum import Enum
from typing import List, Optional

from .command_executor import CommandExecutor
from .config import RemoteConfig
from .datastructures import ChannelKind, PromptWaitResult
from .descriptor import ConnectionDescriptor
from .polling import NO_TIMEOUT
from .session_manager import SessionConnector, SessionHandle

PROMPT_WAIT = 1000


class BatchState(Enum):
    CONNECTED = "connected"
    AWAIT_PASSWORD_PROMPT = "await_password_prompt"
    PASSWORD_SENT = "password_sent"
    AWAIT_ESCALATED_PROMPT_CD = "await_escalated_prompt_cd"
    AWAIT_ESCALATED_PROMPT_CMD = "await_escalated_prompt_cmd"
    OUTPUT_CAPTURED = "output_captured"
    AWAIT_ESCALATED_PROMPT_EXIT = "await_escalated_prompt_exit"
    AWAIT_BASE_PROMPT = "await_base_prompt"
    PTY_EXITING = "pty_exiting"
    DISCONNECTED = "disconnected"
    STATUS_CHECKED = "status_checked"


def switch_user_prompts(user_name: str, hostname: str, sudo_cmd: str) -> tuple[str, str]:
    """Prompt substrings for the login user and for the user ``sudo_cmd`` switches to."""
    target_user = sudo_cmd.strip().rsplit(' ', 1)[-1]
    user_prompt = f"{user_name.lower()}@{hostname}:"
    sudo_prompt = f"{target_user}@{hostname}:"
    return user_prompt, sudo_prompt


class SudoBatchDriver:
    """Executes a batch command, optionally switching to another user first."""

    def __init__(self, config: Optional[RemoteConfig] = None,
                 connector: Optional[SessionConnector] = None,
                 executor: Optional[CommandExecutor] = None):
        self._connector = connector or SessionConnector(config)
        self._config = config or self._connector.config
        self._executor = executor or CommandExecutor(self._config, self._connector)
        self.logger = logging.getLogger('remote_session.batch')
        self.state: Optional[BatchState] = None
        self.history: List[BatchState] = []

    def execute_batch(self, user_name: str, password: str, hostname: str,
                      sudo_cmd: Optional[str], batch_dir: str, batch_cmd: str,
                      cancel_event: Optional[threading.Event] = None) -> str:
        """Run ``batch_cmd`` in ``batch_dir`` on ``hostname`` and return its output.

        Args:
            user_name: Login user for the SSH connection
            password: Login password (also answered to the switch command's prompt)
            hostname: Remote host
            sudo_cmd: Switch-user command (e.g. "sudo su - admin"); None runs the
                batch command directly as the login user
            batch_dir: Directory containing the batch command
            batch_cmd: Batch command line
            cancel_event: Set from another thread to stop waiting; the output
                received so far is returned without an exit status check

        Raises:
            ExecutionFailedError: if the remote task exits with a non-zero status
        """
        logger = self.logger.getChild('execute_batch')
        descriptor = ConnectionDescriptor.from_parts(user_name, password, hostname, batch_dir)
        self.history = []

        if sudo_cmd is None:
            output = self._executor.exec(descriptor, batch_cmd, cancel_event)
        else:
            user_prompt, sudo_prompt = switch_user_prompts(user_name, hostname, sudo_cmd)
            with SessionHandle(ChannelKind.EXEC, descriptor, self._config, self._connector,
                               pty=True, cancel_event=cancel_event) as session:
                output = self._run_switched(session, password, sudo_cmd, batch_dir, batch_cmd,
                                            user_prompt, sudo_prompt)

        logger.info(output)
        return output

    def _run_switched(self, session: SessionHandle, password: str, sudo_cmd: str,
                      batch_dir: str, batch_cmd: str, user_prompt: str, sudo_prompt: str) -> str:
        logger = self.logger.getChild('switched')
        session.start(sudo_cmd)
        self._enter(BatchState.CONNECTED, session)
        streams = session.streams()

        self._enter(BatchState.AWAIT_PASSWORD_PROMPT, session)
        streams.wait_for_input()

        streams.write_line(password)
        self._enter(BatchState.PASSWORD_SENT, session)
        self._log_prompt(streams.wait_for_prompt(sudo_prompt, PROMPT_WAIT))

        streams.write_line(f"cd {batch_dir}")
        self._enter(BatchState.AWAIT_ESCALATED_PROMPT_CD, session)
        self._log_prompt(streams.wait_for_prompt(sudo_prompt, PROMPT_WAIT))

        streams.write_line(batch_cmd)
        self._enter(BatchState.AWAIT_ESCALATED_PROMPT_CMD, session)
        result = streams.wait_for_prompt(sudo_prompt, NO_TIMEOUT)
        output = result.text
        self._enter(BatchState.OUTPUT_CAPTURED, session)
        if session.cancelled:
            logger.warning(f"Batch on {session.masked_uri} cancelled; returning partial output")
            return output

        streams.write_line("exit")
        self._enter(BatchState.AWAIT_BASE_PROMPT, session, via=BatchState.AWAIT_ESCALATED_PROMPT_EXIT)
        self._log_prompt(streams.wait_for_prompt(user_prompt, PROMPT_WAIT))

        self._enter(BatchState.PTY_EXITING, session)
        try:
            streams.write_line("exit")
        except OSError as e:
            # Remote side may already have closed the channel after the user shell exited
            logger.debug(f"Channel closed before final exit on {session.masked_uri}: {e}")

        session.disconnect(True)
        self._enter(BatchState.DISCONNECTED, session)

        session.assert_exit_status(output)
        self._enter(BatchState.STATUS_CHECKED, session)
        return output

    def _enter(self, state: BatchState, session: SessionHandle,
               via: Optional[BatchState] = None) -> None:
        """Record ``state``; ``via`` is a step passed through without waiting in it."""
        if via is not None:
            self.history.append(via)
            label = f"{via.name} -> {state.name}"
        else:
            label = state.name
        self.history.append(state)
        self.state = state
        self.logger.getChild('state').debug(f"[{label}] {session.masked_uri}")

    def _log_prompt(self, result: PromptWaitResult) -> None:
        logger = self.logger.getChild('prompt')
        if result.matched:
            logger.info(result.text)
        else:
            logger.warning(f"Prompt wait ended with {result.status.value}: {result.text!r}")
