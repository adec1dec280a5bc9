#!/usr/bin/env python3
# ─────────────────────────────────────────────────────────────────────────────
# tmpmail - A Temporary Email Client for the Terminal
# Copyright © 2024‑2025  zebbern  <https://github.com/zebbern>
# ─────────────────────────────────────────────────────────────────────────────
# A CLI utility for throw‑away e‑mail addresses backed by 1secmail.
# Generates an address, lists the inbox and renders a message as HTML in a
# terminal browser or as plain text.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import html
import json
import logging
import os
import random
import re
import shutil
import string
import subprocess
import sys
import tempfile
from collections import deque
from contextlib import nullcontext
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, ContextManager, Deque, Dict, List, Optional, Sequence

import requests
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.theme import Theme

__version__ = "1.2.3"

# Set up rich console with custom theme
custom_theme = Theme({
    "info": "cyan",
    "warning": "yellow",
    "error": "bold red",
    "success": "bold green",
    "header": "bold cyan",
})

console = Console(theme=custom_theme, emoji=False)
err_console = Console(theme=custom_theme, stderr=True, emoji=False)

LOGGER = logging.getLogger("tmpmail")


def configure_logging() -> None:
    """Route log records through rich on stderr."""
    logging.basicConfig(
        level=logging.DEBUG if os.environ.get("DEBUG") else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, console=err_console)],
    )

##############################################################################
# Configuration
##############################################################################

CONFIG_DIR = Path.home() / ".config" / "tmpmail"
CONFIG_FILE = CONFIG_DIR / "config.json"

DEFAULT_BROWSER = "w3m"
TEXT_RENDERER = "w3m"


def default_config() -> Dict[str, Any]:
    return {
        "browser": DEFAULT_BROWSER,
        "storage_dir": str(Path(tempfile.gettempdir()) / "tmpmail"),
    }


def load_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Load configuration from file, falling back to defaults."""
    path = path or CONFIG_FILE
    config = default_config()
    if not path.exists():
        return config

    try:
        with open(path, "r") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        LOGGER.warning(f"Failed to load config: {e}. Using defaults.")
        return config

    if not isinstance(data, dict):
        LOGGER.warning(f"Ignoring config {path}: expected a JSON object.")
        return config

    config.update({k: v for k, v in data.items() if k in config})
    return config

##############################################################################
# Errors
##############################################################################

class TmpmailError(Exception):
    """Base exception; every subclass ends the current invocation."""
    pass

class MissingDependencyError(TmpmailError):
    """A required external program is not installed."""
    pass

class InvalidAddressError(TmpmailError):
    pass

class NetworkError(TmpmailError):
    """Network-related errors."""
    pass

class APIError(TmpmailError):
    """API response errors."""
    pass

class MessageNotFoundError(TmpmailError):
    pass

class UsageError(TmpmailError):
    """Bad command-line usage."""
    pass

class UnknownOptionError(UsageError):
    def __init__(self, option: str) -> None:
        super().__init__(f"Unknown option '{option}'. See 'tmpmail --help'.")
        self.option = option

class StorageError(TmpmailError):
    """Reading or writing local state failed."""
    pass

class RendererError(TmpmailError):
    pass

##############################################################################
# Data model
##############################################################################

@dataclass(frozen=True)
class Address:
    username: str
    domain: str

    @classmethod
    def parse(cls, value: str) -> "Address":
        username, sep, domain = value.strip().partition("@")
        if not sep or not username or not domain:
            raise InvalidAddressError(f"'{value.strip()}' is not a valid email address")
        return cls(username, domain)

    def __str__(self) -> str:
        return f"{self.username}@{self.domain}"


@dataclass
class MessageSummary:
    id: int
    sender: str
    subject: str
    date: str = ""


@dataclass
class MessageDetail:
    sender: str
    subject: str
    date: str = ""
    html_body: str = ""
    text_body: str = ""
    attachments: List[str] = field(default_factory=list)

##############################################################################
# Address storage and generation
##############################################################################

class AddressStore:
    """Keeps the active address as a single line in volatile storage."""

    FILENAME = "email_address"

    def __init__(self, storage_dir: Path) -> None:
        self.path = Path(storage_dir) / self.FILENAME

    def load(self) -> Optional[Address]:
        try:
            content = self.path.read_text()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Could not read {self.path}: {e}") from e

        content = content.strip()
        if not content:
            return None
        if not VALID_ADDRESS_RE.fullmatch(content):
            raise InvalidAddressError(
                f"Stored address '{content}' in {self.path} is not valid. "
                f"Run 'tmpmail --generate' to replace it"
            )
        return Address.parse(content)

    def save(self, address: Address) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(f"{address}\n")
        except OSError as e:
            raise StorageError(f"Could not write {self.path}: {e}") from e
        LOGGER.debug(f"Saved address {address} to {self.path}")


# Domains handed out by the generator. This is the canonical accepted set.
DOMAINS = ("1secmail.com", "1secmail.net", "1secmail.org", "esiix.com", "wwjmp.com")

# The validator once accepted "esiix.co" instead of "esiix.com". Kept for
# reference only; esiix.co addresses are rejected.
LEGACY_VALIDATOR_DOMAINS = ("1secmail.com", "1secmail.net", "1secmail.org", "esiix.co", "wwjmp.com")

USERNAME_LENGTH = 11

VALID_ADDRESS_RE = re.compile(
    r"[a-z0-9]+@(1secmail\.(com|net|org)|esiix\.com|wwjmp\.com)"
)


def _rand_string(n: int = USERNAME_LENGTH) -> str:
    """Generate a random alphanumeric string of length n."""
    return "".join(random.choice(string.ascii_lowercase + string.digits) for _ in range(n))


class AddressGenerator:
    """Creates addresses and persists whichever one it hands out."""

    def __init__(self, store: AddressStore) -> None:
        self.store = store

    def generate_random(self) -> Address:
        address = Address(_rand_string(), random.choice(DOMAINS))
        self.store.save(address)
        return address

    def validate(self, candidate: str) -> Address:
        if not VALID_ADDRESS_RE.fullmatch(candidate):
            raise InvalidAddressError(
                f"'{candidate}' is not a valid address. "
                f"Use lowercase letters and digits on one of: {', '.join(DOMAINS)}"
            )
        address = Address.parse(candidate)
        self.store.save(address)
        return address

    def generate(self, custom: Optional[str] = None) -> Address:
        """Set a custom address when given, otherwise a random one."""
        if custom:
            return self.validate(custom)
        return self.generate_random()

##############################################################################
# Provider client – 1secmail
##############################################################################

API_URL = "https://www.1secmail.com/api/v1/"
USER_AGENT = f"tmpmail/{__version__}"
REQUEST_TIMEOUT = 15

NOT_FOUND_SENTINEL = "Message not found"


def make_requests_session() -> requests.Session:
    """Create a requests session with proper headers."""
    session = requests.Session()
    session.headers.update({"User-Agent": USER_AGENT})
    return session


@dataclass
class ProviderResponse:
    """Raw provider body; the not-found sentinel is checked before decoding."""

    action: str
    text: str

    def json(self) -> Any:
        if self.text == NOT_FOUND_SENTINEL:
            raise MessageNotFoundError(NOT_FOUND_SENTINEL)
        try:
            return json.loads(self.text)
        except ValueError as e:
            raise APIError(f"Invalid JSON from '{self.action}': {e}") from e


class OneSecMailClient:
    """Client for the two 1secmail actions the CLI needs."""

    def __init__(self, session: Optional[requests.Session] = None, base_url: str = API_URL) -> None:
        self.session = session or make_requests_session()
        self.base_url = base_url

    def _get(self, action: str, **params: Any) -> ProviderResponse:
        params = {"action": action, **params}
        LOGGER.debug(f"GET {self.base_url} {params}")
        try:
            res = self.session.get(self.base_url, params=params, timeout=REQUEST_TIMEOUT)
            res.raise_for_status()
        except requests.RequestException as e:
            raise NetworkError(f"Network error: {e}") from e
        return ProviderResponse(action, res.text)

    def list_messages(self, address: Address) -> List[MessageSummary]:
        data = self._get("getMessages", login=address.username, domain=address.domain).json()
        if not isinstance(data, list):
            raise APIError("Unexpected response from 'getMessages': expected a list")
        try:
            return [
                MessageSummary(
                    id=int(m["id"]),
                    sender=m.get("from") or "",
                    subject=m.get("subject") or "",
                    date=m.get("date") or "",
                )
                for m in data
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise APIError(f"Malformed message list: {e}") from e

    def read_message(self, address: Address, message_id: int) -> MessageDetail:
        data = self._get(
            "readMessage", login=address.username, domain=address.domain, id=message_id
        ).json()
        if not isinstance(data, dict):
            raise APIError("Unexpected response from 'readMessage': expected an object")
        return MessageDetail(
            sender=data.get("from") or "",
            subject=data.get("subject") or "",
            date=data.get("date") or "",
            html_body=data.get("htmlBody") or "",
            text_body=data.get("textBody") or "",
            attachments=[
                a.get("filename", "")
                for a in data.get("attachments") or []
                if isinstance(a, dict)
            ],
        )

##############################################################################
# Inbox formatting
##############################################################################

COLUMN_DELIMITER = "||"
COLUMN_GAP = "  "


def _columnize(lines: Sequence[str], columns: int, delimiter: str = COLUMN_DELIMITER) -> List[str]:
    """Align delimiter-separated lines into columns.

    Splitting happens on the delimiter only, so whitespace inside a field
    (a subject like "Hi there") stays intact. The last column absorbs any
    stray delimiters.
    """
    rows = [line.split(delimiter, columns - 1) for line in lines]
    widths = [max((len(row[i]) for row in rows if i < len(row)), default=0) for i in range(columns)]
    return [
        COLUMN_GAP.join(cell.ljust(widths[i]) for i, cell in enumerate(row)).rstrip()
        for row in rows
    ]


def format_inbox(address: Address, summaries: Sequence[MessageSummary]) -> str:
    header = f"[ Inbox for {address} ]"
    if not summaries:
        return f"{header}\n\nNo new mail"
    lines = [
        COLUMN_DELIMITER.join((str(m.id), m.sender, m.subject))
        for m in summaries
    ]
    return "\n".join([header, ""] + _columnize(lines, 3))

##############################################################################
# Message rendering
##############################################################################

class MessageRenderer:
    """Builds the HTML document for a message and hands it to w3m or a browser."""

    FILENAME = "tmpmail.html"

    def __init__(self, storage_dir: Path, text_renderer: str = TEXT_RENDERER) -> None:
        self.path = Path(storage_dir) / self.FILENAME
        self.text_renderer = text_renderer

    def render(self, address: Address, detail: MessageDetail) -> str:
        header = [
            f"<b>To: </b>{html.escape(str(address))}",
            f"<b>From: </b>{html.escape(detail.sender)}",
            f"<b>Subject: </b>{html.escape(detail.subject)}",
        ]
        if detail.date:
            header.append(f"<b>Date: </b>{html.escape(detail.date)}")
        if detail.attachments:
            names = ", ".join(html.escape(a) for a in detail.attachments)
            header.append(f"<b>Attachments: </b>{names}")

        if detail.html_body:
            body = detail.html_body
        else:
            body = f"<pre>{html.escape(detail.text_body)}</pre>"

        return "<pre>" + "\n".join(header) + "</pre>\n" + body + "\n"

    def write(self, document: str) -> Path:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(document)
        except OSError as e:
            raise StorageError(f"Could not write {self.path}: {e}") from e
        return self.path

    def _run(self, args: List[str], **kwargs: Any) -> subprocess.CompletedProcess:
        LOGGER.debug(f"Running {args}")
        try:
            return subprocess.run(args, check=True, **kwargs)
        except FileNotFoundError as e:
            raise MissingDependencyError(
                f"Could not find '{args[0]}'. Make sure it is installed and in your PATH"
            ) from e
        except subprocess.CalledProcessError as e:
            raise RendererError(f"'{args[0]}' exited with status {e.returncode}") from e

    def to_plain_text(self, document: str) -> str:
        """Strip markup by dumping the document through the text renderer."""
        result = self._run(
            [self.text_renderer, "-dump", "-T", "text/html"],
            input=document,
            capture_output=True,
            text=True,
        )
        return result.stdout

    def open_in_browser(self, path: Path, browser: str) -> None:
        if shutil.which(browser) is None:
            raise MissingDependencyError(
                f"Could not find browser '{browser}'. Make sure it is in your PATH"
            )
        self._run([browser, str(path)])

##############################################################################
# CLI - option dispatch table and actions
##############################################################################

USAGE = """\
tmpmail - A temporary email right from your terminal

Usage: tmpmail [-h] [--version] [-g [ADDRESS]] [-t] [-b BROWSER] [-r | ID]

When called with no option and no argument, tmpmail lists the messages in
the inbox and their numeric IDs. When called with one argument, tmpmail
shows the email message with the specified ID.

Options:
  -b, --browser BROWSER   Change the browser used to view emails
                          (default: w3m)
  -g, --generate [ADDR]   Generate a new email address, either a random one
                          or ADDR if specified
  -h, --help              Show help
  -r, --recent            View the most recent email message
  -t, --text              View the email as raw text, with the HTML tags
                          removed. Without this option, HTML is used
  --version               Show version"""


@dataclass
class Options:
    """State accumulated from flags before an action runs."""

    browser: str = DEFAULT_BROWSER
    raw_text: bool = False


@dataclass(frozen=True)
class Command:
    action: str
    argument: Optional[str] = None


# Handlers either update Options and return None, or return the Command that
# ends parsing. They may consume following arguments from the queue.
MESSAGE_ID_RE = re.compile(r"[0-9]+")

OptionHandler = Callable[[Options, Deque[str]], Optional[Command]]


def _set_browser(options: Options, args: Deque[str]) -> None:
    if not args or args[0].startswith("-"):
        raise UsageError("Option '--browser' requires a browser name")
    options.browser = args.popleft()


def _set_raw_text(options: Options, args: Deque[str]) -> None:
    options.raw_text = True


def _generate(options: Options, args: Deque[str]) -> Command:
    custom = args.popleft() if args and not args[0].startswith("-") else None
    return Command("generate", custom)


def _terminal(action: str) -> OptionHandler:
    return lambda options, args: Command(action)


OPTION_HANDLERS: Dict[str, OptionHandler] = {
    "-h": _terminal("help"),
    "--help": _terminal("help"),
    "--version": _terminal("version"),
    "-g": _generate,
    "--generate": _generate,
    "-r": _terminal("recent"),
    "--recent": _terminal("recent"),
    "-b": _set_browser,
    "--browser": _set_browser,
    "-t": _set_raw_text,
    "--text": _set_raw_text,
}


def parse_command(argv: Sequence[str], options: Options) -> Command:
    """Walk arguments left to right until one of them selects an action.

    Arguments after the action are never looked at. With no action at all
    the inbox is listed.
    """
    args = deque(argv)
    while args:
        arg = args.popleft()
        if MESSAGE_ID_RE.fullmatch(arg):
            return Command("view", arg)
        if arg.startswith("-"):
            handler = OPTION_HANDLERS.get(arg)
            if handler is None:
                raise UnknownOptionError(arg)
            command = handler(options, args)
            if command is not None:
                return command
            continue
        raise UsageError(f"'{arg}' is not a valid message ID")
    return Command("list")


class Tmpmail:
    """Runs a parsed command against the store, provider and renderer."""

    def __init__(
        self,
        options: Options,
        storage_dir: Path,
        client: Optional[OneSecMailClient] = None,
        out: Optional[Console] = None,
    ) -> None:
        self.options = options
        self.store = AddressStore(storage_dir)
        self.generator = AddressGenerator(self.store)
        self.client = client or OneSecMailClient()
        self.renderer = MessageRenderer(storage_dir)
        self.console = out or console
        self.actions: Dict[str, Callable[[Optional[str]], None]] = {
            "list": lambda _: self.list_inbox(),
            "generate": self.generate,
            "recent": lambda _: self.view_recent(),
            "view": lambda message_id: self.view(int(message_id)),
            "help": lambda _: self.show_help(),
            "version": lambda _: self.show_version(),
        }

    def execute(self, command: Command) -> None:
        LOGGER.debug(f"Executing {command} with {self.options}")
        self.actions[command.action](command.argument)

    def _spinner(self, text: str) -> ContextManager[Any]:
        """Spinner on stderr, shown only when stderr is a terminal."""
        if not err_console.is_terminal:
            return nullcontext()
        progress = Progress(
            SpinnerColumn(),
            TextColumn(f"[bold cyan]{text}"),
            console=err_console,
            transient=True,
        )
        progress.add_task("request", total=None)
        return progress

    def _echo(self, text: str) -> None:
        """Print text exactly as given: no markup, emoji or highlighting."""
        self.console.print(text, markup=False, emoji=False, highlight=False, soft_wrap=True)

    def address(self) -> Address:
        """Return the stored address, generating one on first use."""
        address = self.store.load()
        if address is None:
            address = self.generator.generate_random()
            LOGGER.info(f"Generated new address {address}")
        return address

    def fetch_inbox(self, address: Address) -> List[MessageSummary]:
        with self._spinner("Checking inbox..."):
            return self.client.list_messages(address)

    def list_inbox(self) -> None:
        address = self.address()
        summaries = self.fetch_inbox(address)
        self._echo(format_inbox(address, summaries))

    def generate(self, custom: Optional[str] = None) -> None:
        address = self.generator.generate(custom)
        self._echo(str(address))

    def view_recent(self) -> None:
        address = self.address()
        summaries = self.fetch_inbox(address)
        if not summaries:
            raise MessageNotFoundError("No new mail")
        self.view(summaries[0].id, address)

    def view(self, message_id: int, address: Optional[Address] = None) -> None:
        address = address or self.address()
        with self._spinner("Fetching message..."):
            detail = self.client.read_message(address, message_id)

        document = self.renderer.render(address, detail)
        path = self.renderer.write(document)

        if self.options.raw_text:
            text = self.renderer.to_plain_text(document)
            self._echo(text.rstrip("\n"))
        else:
            self.renderer.open_in_browser(path, self.options.browser)

    def show_help(self) -> None:
        self._echo(USAGE)

    def show_version(self) -> None:
        self._echo(__version__)

##############################################################################
# Entry point
##############################################################################

def check_dependencies() -> None:
    """Fail fast when the text renderer is not installed."""
    if shutil.which(TEXT_RENDERER) is None:
        raise MissingDependencyError(
            f"Could not find '{TEXT_RENDERER}'. Make sure it is installed and in your PATH"
        )


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the application."""
    configure_logging()
    argv = sys.argv[1:] if argv is None else argv
    try:
        check_dependencies()
        config = load_config()
        options = Options(browser=config["browser"])
        command = parse_command(argv, options)
        Tmpmail(options, Path(config["storage_dir"])).execute(command)
    except TmpmailError as e:
        LOGGER.debug(f"{type(e).__name__}: {e}")
        err_console.print(f"[error]Error:[/] {escape(str(e))}", soft_wrap=True)
        sys.exit(1)
    except KeyboardInterrupt:
        sys.exit(0)
    except Exception as e:
        err_console.print(f"[error]Error:[/] {escape(str(e))}", soft_wrap=True)
        if os.environ.get("DEBUG"):
            err_console.print_exception()
        sys.exit(1)


if __name__ == "__main__":
    main()
