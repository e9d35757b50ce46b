"""Command-line entry point: one invocation, one exchange."""

import argparse
import sys
import time
from importlib import metadata
from pathlib import Path

from . import fmt
from .config import (
    _UNSET,
    apply_config_to_args,
    generate_config,
    load_config,
    resolve_api_config,
)
from .correlator import outstanding_tool_calls
from .errors import ChatError
from .history import history_path, load
from .inputs import parse_input, resolve
from .messages import Message, Role, estimate_tokens
from .template import load_template
from .transport import PROVIDERS
from .turn import run_turn

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_PERSIST_FAILURE = 3


def build_parser():
    """Build and return the argument parser."""
    parser = argparse.ArgumentParser(
        prog="oaichat",
        usage="%(prog)s [options] <chat_id> [message]",
        description="Persistent multi-turn chat with an OpenAI-compatible endpoint.",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print the version and exit.",
    )
    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Print a commented configuration template and exit.",
    )
    parser.add_argument(
        "chat_id", nargs="?", default=None, help="Name of the conversation."
    )
    parser.add_argument(
        "message",
        nargs="?",
        default=None,
        help="Message to send. Prefix a filename with @ to send that file; "
        "use - or @- to read standard input. Omit to re-send a pending request.",
    )
    parser.add_argument(
        "--role",
        choices=[Role.USER.value, Role.TOOL.value],
        default=Role.USER.value,
        help="Role of the new message (default: user).",
    )
    parser.add_argument(
        "--name",
        default=None,
        help="Function name, required when --role is tool.",
    )
    parser.add_argument(
        "--tool-call-id",
        default=None,
        help="Tool call answered by a tool message "
        "(default: the oldest tool call without a response).",
    )
    parser.add_argument(
        "--config-dir",
        default=_UNSET,
        help="Directory holding empty_chat.json (default: data).",
    )
    parser.add_argument(
        "--chats-dir",
        default=_UNSET,
        help="Directory holding chat histories (default: chats).",
    )
    parser.add_argument(
        "--provider",
        choices=list(PROVIDERS),
        default=_UNSET,
        help="openai (any OpenAI-compatible endpoint) or azure. "
        "Default: azure when AZURE_* variables are set.",
    )
    parser.add_argument(
        "--model", default=_UNSET, help="Model name (or Azure deployment)."
    )
    parser.add_argument(
        "--api-key", default=_UNSET, help="API key (overrides env var)."
    )
    parser.add_argument(
        "--base-url", default=_UNSET, help="Endpoint base URL (overrides env var)."
    )
    parser.add_argument(
        "--api-version", default=_UNSET, help="API version (azure)."
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=_UNSET,
        help="Request timeout in seconds (default: 600).",
    )
    parser.add_argument(
        "--write-req-resp",
        action="store_true",
        default=_UNSET,
        help="Write last_request.json and last_response.json in the current directory.",
    )
    parser.add_argument(
        "--no-network",
        action="store_true",
        help="Append the message to the chat without calling the endpoint.",
    )
    parser.add_argument(
        "--dump",
        action="store_true",
        help="Print the stored chat in a readable format and exit.",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        default=_UNSET,
        help="Suppress diagnostics on stderr.",
    )
    color_group = parser.add_mutually_exclusive_group()
    color_group.add_argument(
        "--color", action="store_true", default=_UNSET, help="Force colored output."
    )
    color_group.add_argument(
        "--no-color", action="store_true", default=_UNSET, help="Disable colors."
    )
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        try:
            version = metadata.version("oaichat")
        except metadata.PackageNotFoundError:
            version = "unknown"
        print(version)
        sys.exit(EXIT_OK)

    if args.init_config:
        print(generate_config())
        sys.exit(EXIT_OK)

    if args.chat_id is None:
        parser.error("chat_id is required")
    if args.role == Role.TOOL.value and not args.name:
        parser.error("--name is required when --role is tool")
    if args.tool_call_id is not None and args.role != Role.TOOL.value:
        parser.error("--tool-call-id is only valid with --role tool")

    try:
        apply_config_to_args(args, load_config())
    except ChatError as e:
        fmt.error(str(e))
        sys.exit(EXIT_ERROR)

    fmt.init(color=args.color, no_color=args.no_color)
    args.verbose = not args.quiet

    try:
        code = _run_main(args)
    except ChatError as e:
        fmt.error(str(e))
        sys.exit(EXIT_ERROR)
    sys.exit(code)


def _dump_chat(chat_id: str, chats_dir: Path) -> int:
    path = history_path(chat_id, chats_dir)
    if not path.is_file():
        raise ChatError(f"no chat {chat_id!r} in {chats_dir}")
    history = load(path)
    print("\n\n".join(m.human_readable() for m in history.messages))
    return EXIT_OK


def _new_message(args) -> Message | None:
    text = resolve(parse_input(args.message)) if args.message is not None else None
    if args.role == Role.TOOL.value:
        return Message.tool(text or "", args.tool_call_id, name=args.name)
    if not text:
        return None
    return Message.user(text)


def _run_main(args) -> int:
    chats_dir = Path(args.chats_dir)
    if args.dump:
        return _dump_chat(args.chat_id, chats_dir)

    template = load_template(args.config_dir)
    api = None if args.no_network else resolve_api_config(args)
    new_message = _new_message(args)

    if args.verbose and api is not None:
        fmt.model_info(f"Endpoint {api.base_url} ({api.provider})")

    start = time.monotonic()
    if args.verbose and api is not None:
        with fmt.llm_spinner():
            result = _turn(args, chats_dir, template, api, new_message)
    else:
        result = _turn(args, chats_dir, template, api, new_message)
    elapsed = time.monotonic() - start

    if args.no_network:
        if args.verbose:
            fmt.info(f"No network: message appended to {result.path}")
        return EXIT_OK

    reply = result.reply
    if args.verbose:
        fmt.llm_timing(elapsed, result.finish_reason)
    print(reply.human_readable())

    if args.verbose:
        for tc in reply.tool_calls or []:
            fmt.tool_call(tc.id, tc.function.name, tc.function.arguments)
        pending = outstanding_tool_calls(result.history.messages)
        if pending:
            fmt.pending_tool_calls(pending)
        fmt.context_stats(
            f"Chat {args.chat_id}", estimate_tokens(result.history.messages)
        )

    if result.persist_error is not None:
        fmt.error(f"reply received but the chat was not saved: {result.persist_error}")
        return EXIT_PERSIST_FAILURE
    return EXIT_OK


def _turn(args, chats_dir, template, api, new_message):
    return run_turn(
        args.chat_id,
        new_message,
        chats_dir=chats_dir,
        template=template,
        api=api,
        no_network=args.no_network,
        dump_dir=Path.cwd() if args.write_req_resp else None,
    )
