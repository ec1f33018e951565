#!/usr/bin/env python3
"""
chatrelay CLI — talk to a thread from the terminal.

    COMMAND         ALIASES         WHAT IT DOES
    -------         -------         ----------------------------------
    ask             chat, say       Send a prompt, print the reply
    history         log, thread     Print a conversation, oldest first
    use             mode            Set the default or per-sender mode
    reset           new             Start a fresh thread for a sender
"""

import argparse
import asyncio
import sys

from chatrelay import __version__
from chatrelay.errors import ChatError


def _service(args):
    from chatrelay.config import get_config, load_config, setup_logging
    from chatrelay.dispatcher import ChatService

    cfg = load_config(args.config) if args.config else get_config()
    setup_logging(cfg)
    return ChatService.from_config(cfg)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_ask(args):
    """Send a prompt as a sender and print the reply."""
    service = _service(args)
    prompt = " ".join(args.prompt)
    reply = asyncio.run(service.handle(prompt, args.sender))
    print(reply)


def cmd_history(args):
    """Print a conversation in chronological order."""
    service = _service(args)
    dispatcher = service.dispatcher
    progress = dispatcher.load_progress(args.sender)

    conversation_id = args.conversation or progress.conversation_id
    if not conversation_id:
        print(f"  No conversation for sender '{args.sender}'")
        return

    provider = dispatcher.registry.get(dispatcher.resolve_mode(progress))
    conversation = asyncio.run(provider.get_history(conversation_id))
    print(f"  Conversation {conversation_id} ({len(conversation)} messages)")
    for message in conversation.messages:
        print(f"  [{message.role.value}] {message.content}")


def cmd_use(args):
    """Set the namespace default mode, or one sender's mode."""
    service = _service(args)
    if args.sender:
        service.dispatcher.set_user_mode(args.sender, args.mode)
        print(f"  Sender '{args.sender}' now uses {args.mode}")
    else:
        service.dispatcher.set_default_mode(args.mode)
        print(f"  Default mode is now {args.mode}")


def cmd_reset(args):
    """Forget a sender's thread."""
    service = _service(args)
    service.dispatcher.reset(args.sender)
    print(f"  Sender '{args.sender}' starts a new conversation")


# ---------------------------------------------------------------------------
# Parser with aliases
# ---------------------------------------------------------------------------

def _add_command(subparsers, names, help_text, func, setup_fn=None):
    """Register a command under multiple names."""
    p = subparsers.add_parser(names[0], help=help_text, aliases=names[1:])
    p.set_defaults(func=func)
    if setup_fn:
        setup_fn(p)
    return p


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chatrelay",
        description="chatrelay — multi-turn threads over LLM chat backends.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version", "-V", action="version",
        version=f"chatrelay {__version__}",
    )
    parser.add_argument("--config", "-c", default=None, help="Path to config.yaml")

    sub = parser.add_subparsers(dest="command", metavar="<command>")

    def setup_ask(p):
        p.add_argument("prompt", nargs="+", help="Prompt text")
        p.add_argument("--sender", "-s", default="cli", help="Sender identity (default: cli)")

    _add_command(sub, ["ask", "chat", "say"],
                 "Send a prompt and print the reply", cmd_ask, setup_ask)

    def setup_history(p):
        p.add_argument("--sender", "-s", default="cli", help="Sender identity (default: cli)")
        p.add_argument("--conversation", default=None, help="Conversation id (default: sender's current)")

    _add_command(sub, ["history", "log", "thread"],
                 "Print a conversation, oldest first", cmd_history, setup_history)

    def setup_use(p):
        p.add_argument("mode", help="Mode tag, e.g. openai")
        p.add_argument("--sender", "-s", default=None, help="Only for this sender")

    _add_command(sub, ["use", "mode"],
                 "Set the default or per-sender mode", cmd_use, setup_use)

    def setup_reset(p):
        p.add_argument("--sender", "-s", default="cli", help="Sender identity (default: cli)")

    _add_command(sub, ["reset", "new"],
                 "Start a fresh thread for a sender", cmd_reset, setup_reset)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 0

    try:
        args.func(args)
    except (ChatError, ValueError) as e:
        print(f"  ✗  {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
