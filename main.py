#!/usr/bin/env python3
"""Prompt Enhancer CLI."""

import argparse
import logging
import sys
import time

from pydantic import ValidationError

from app import create_application
from config.settings import load_settings
from errors import EnhancerError
from orchestrator import owner_label
from schemas.enhance import EnhanceRequest
from schemas.identity import RequestIdentity
from schemas.session import ChatTurn


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Prompt Enhancer - rewrite prompts with daily quotas and session memory"
    )
    parser.add_argument("--config", "-c", type=str, help="Path to YAML config file")
    parser.add_argument("--db-path", type=str, help="Override the SQLite database path")
    parser.add_argument("--anon-id", type=str, default="cli", help="Anonymous id (default: cli)")
    parser.add_argument("--user-id", type=str, help="Authenticated user id")
    parser.add_argument("--ip", type=str, default="127.0.0.1", help="Client IP for the IP quota")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose output")

    sub = parser.add_subparsers(dest="command", required=True)

    enhance = sub.add_parser("enhance", help="Enhance a prompt")
    enhance.add_argument("prompt", type=str, help="Prompt to enhance")
    enhance.add_argument("--session", "-s", type=str, help="Session id")
    enhance.add_argument("--history", action="store_true", help="Use session history for follow-ups")
    enhance.add_argument("--new-session", action="store_true", help="Create a session for this prompt")
    enhance.add_argument(
        "--turn",
        action="append",
        default=[],
        metavar="ROLE:TEXT",
        help="Recent turn, e.g. 'user:write a haiku' (repeatable, oldest first)"
    )

    sub.add_parser("usage", help="Show today's quota usage")

    link = sub.add_parser("link", help="Fold today's anonymous usage into the user quota")
    link.add_argument("--from-anon", type=str, help="Anonymous id to link (default: --anon-id)")

    session = sub.add_parser("session", help="Manage sessions")
    session_sub = session.add_subparsers(dest="action", required=True)
    ls = session_sub.add_parser("list", help="List sessions")
    ls.add_argument("--page", type=int, default=1)
    ls.add_argument("--limit", type=int, default=10)
    show = session_sub.add_parser("show", help="Show a session with its recent prompts")
    show.add_argument("session_id")
    create = session_sub.add_parser("create", help="Create a session")
    create.add_argument("--title", type=str)
    rename = session_sub.add_parser("rename", help="Rename a session")
    rename.add_argument("session_id")
    rename.add_argument("title")
    delete = session_sub.add_parser("delete", help="Delete a session and its prompts")
    delete.add_argument("session_id")
    merge = session_sub.add_parser("merge", help="Move an anonymous session to the user")
    merge.add_argument("session_id")

    feedback = sub.add_parser("feedback", help="Accept or reject an enhanced prompt")
    feedback.add_argument("prompt_id")
    feedback.add_argument("verdict", choices=["accept", "reject"])

    sub.add_parser("worker", help="Run the synopsis worker until interrupted")

    return parser


def parse_turn(value: str) -> ChatTurn:
    role, sep, content = value.partition(":")
    if not sep or role not in ("user", "assistant"):
        raise ValueError(f"Invalid turn '{value}', expected user:TEXT or assistant:TEXT")
    return ChatTurn(role=role, content=content.strip())


def print_session(session):
    print(f"{session.session_id}  {session.title or '(untitled)'}")
    print(f"  owner: {owner_label(session.owner)}")
    print(f"  last message: {session.last_message_at.isoformat()}")
    print(f"  synopsis v{session.synopsis_version}: {session.synopsis.model_dump(exclude_none=True)}")


def run_command(args, app, identity: RequestIdentity):
    orchestrator = app.orchestrator

    if args.command == "enhance":
        request = EnhanceRequest(
            prompt=args.prompt,
            session_id=args.session,
            use_history=args.history,
            last_messages=[parse_turn(t) for t in args.turn],
            auto_create_session=args.new_session,
        )
        response = orchestrator.enhance(request, identity)
        print("\n" + "=" * 60)
        print("ENHANCED PROMPT")
        print("=" * 60 + "\n")
        print(response.enhanced_prompt)
        print()
        print(f"prompt_id: {response.prompt_id}")
        if response.session_id:
            print(f"session_id: {response.session_id}")
        print(f"history used: {response.use_history} "
              f"(turns={response.context_used.last_turns}, synopsis_chars={response.context_used.synopsis_chars})")
        print(f"quota remaining today: {response.quota_remaining}")

    elif args.command == "usage":
        usage = orchestrator.usage(identity)
        print(f"used {usage.used}/{usage.limit}, remaining {usage.remaining} "
              f"({'user' if usage.is_authenticated else 'anonymous'})")

    elif args.command == "link":
        if not identity.user_id:
            raise EnhancerError("link requires --user-id")
        result = app.auth.link_anonymous(identity.user_id, args.from_anon or identity.anon_id)
        print(f"linked: {result.linked}, count: {result.count}")

    elif args.command == "session":
        if args.action == "list":
            page = orchestrator.list_sessions(identity, page=args.page, limit=args.limit)
            for session in page.sessions:
                print_session(session)
            print(f"page {page.page}/{page.total_pages} ({page.total} sessions)")
        elif args.action == "show":
            session, prompts = orchestrator.get_session_detail(args.session_id, identity)
            print_session(session)
            for record in prompts:
                print(f"  - [{record.created_at.isoformat()}] {record.original}")
                print(f"    -> {record.enhanced}")
        elif args.action == "create":
            print_session(orchestrator.create_session(identity, args.title))
        elif args.action == "rename":
            print_session(orchestrator.rename_session(args.session_id, identity, args.title))
        elif args.action == "delete":
            deleted = orchestrator.delete_session(args.session_id, identity)
            print(f"Session deleted ({deleted} prompts)")
        elif args.action == "merge":
            print_session(orchestrator.merge_session(args.session_id, identity))

    elif args.command == "feedback":
        found = orchestrator.record_feedback(args.prompt_id, identity, args.verdict == "accept")
        print("Feedback recorded" if found else "Prompt not found")

    elif args.command == "worker":
        purged = app.ledger.purge_expired()
        if purged:
            logging.getLogger(__name__).info(f"Purged {purged} expired counters")
        app.worker.start()
        print("Synopsis worker running, press Ctrl+C to stop")
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            pass
        finally:
            app.worker.stop()


def main():
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings = load_settings(args.config, db_path=args.db_path, verbose=args.verbose or None)
    identity = RequestIdentity(anon_id=args.anon_id, user_id=args.user_id, client_ip=args.ip)

    try:
        app = create_application(settings)
        run_command(args, app, identity)
    except (EnhancerError, PermissionError, ValidationError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
