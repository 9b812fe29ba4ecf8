from __future__ import annotations

import logging
import re
from typing import Protocol

from .config import Settings
from .errors import NotificationError
from .tools import Runner, run_invocation, sendmail_invocation

logger = logging.getLogger(__name__)

DEFAULT_SENDER = "phylopipe@localhost"

_ADDRESS = re.compile(r"^(.*)@([a-zA-Z][a-zA-Z0-9\-]*(?:\.[a-zA-Z0-9\-]{1,63})*[a-zA-Z0-9])$")
_LOCAL_ATOMS = re.compile(
    r"^[a-zA-Z0-9!~&'=_#\-\^\$\|\*\+\?\{\}%/`]+(?:\.[a-zA-Z0-9!~&'=_#\-\^\$\|\*\+\?\{\}%/`]+)*$"
)
_LOCAL_QUOTED = re.compile(r'^"(?:[^\\]*(?:\\"[^"]*\\")*(?:\\[^"])*)*"$')


def validate_email(address: str) -> bool:
    """Syntactic check of a mailbox (RFC 2822 local part, RFC 1034 domain)."""
    match = _ADDRESS.match(address or "")
    if not match:
        return False
    local, domain = match.group(1), match.group(2)
    if not local or len(local) > 64 or len(domain) > 255:
        return False
    return bool(_LOCAL_ATOMS.match(local) or _LOCAL_QUOTED.match(local))


class Notifier(Protocol):
    def send(self, address: str, subject: str, body: str) -> None: ...


class SendmailNotifier:
    def __init__(self, settings: Settings, runner: Runner = run_invocation) -> None:
        self.settings = settings
        self.runner = runner

    def compose(self, address: str, subject: str, body: str) -> str:
        sender = self.settings.sender_email or DEFAULT_SENDER
        subject = re.sub(r"[\r\n]+", "", subject) or "[phylopipe] Pipeline"
        return f"To: {address}\nFrom: {sender}\nSubject: {subject}\n\n{body or '-phylopipe-'}\n"

    def send(self, address: str, subject: str, body: str) -> None:
        if not address:
            raise NotificationError("no target e-mail address provided")
        if not validate_email(address):
            raise NotificationError(f"invalid e-mail address: {address}")
        invocation = sendmail_invocation(self.settings, self.compose(address, subject, body))
        try:
            outcome = self.runner(invocation)
        except OSError as exc:
            raise NotificationError(f"failed to send notification e-mail: {exc}") from exc
        if outcome.returncode != 0:
            raise NotificationError(
                f"failed to send notification e-mail (sendmail exit status {outcome.returncode})"
            )
        logger.info("Notification sent to %s", address)
