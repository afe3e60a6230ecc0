#!/usr/bin/env python3
"""
Main entry point for the JOSH interview engine.
Runs a console SMS simulator with: python -m josh_interview
"""
import sys
import uuid

from .config import get_config
from .utils import setup_logging
from . import InterviewOrchestrator
from .infrastructure.data import InMemoryConversationStore, JsonFileConversationStore
from .interview.coverage import get_signal_coverage_status
from .interview.errors import InterviewStateError

HELP_TEXT = """Commands:
  /nudge    simulate the dropout nudge
  /status   show profile coverage
  /quit     exit
Anything else is sent as an inbound SMS."""


def _print_status(orchestrator: InterviewOrchestrator, user_id: str) -> None:
    conversation = orchestrator.store.load(user_id)
    profile = conversation.profile
    coverage = get_signal_coverage_status(profile)
    print(f"📊 State: {profile.state} | {profile.completeness_percent}% | MVP: {coverage.mvp_complete}")
    print(f"   Covered: {', '.join(coverage.covered) or '(none)'}")
    print(f"   Next target: {coverage.next_signal_target or '(none)'}")


def main():
    """Command-line interface for the interview simulator."""

    # Load configuration from environment
    try:
        config = get_config()
    except ValueError as e:
        print(f"❌ Configuration Error: {e}")
        sys.exit(1)

    use_llm = config.llm_enabled and "--no-llm" not in sys.argv
    in_memory = "--memory" in sys.argv
    user_id = "console-user"
    first_name = None
    for arg in sys.argv[1:]:
        if arg.startswith("--user="):
            user_id = arg.split("=", 1)[1] or user_id
        elif arg.startswith("--name="):
            first_name = arg.split("=", 1)[1] or None
        elif arg.startswith("--store="):
            config.store_dir = arg.split("=", 1)[1] or config.store_dir
        elif arg in ("-h", "--help"):
            print("Usage: python -m josh_interview [--no-llm] [--memory] [--user=ID] [--name=NAME] [--store=DIR]")
            print(HELP_TEXT)
            return

    log_file = setup_logging(config.log_file, config.log_level)
    store = InMemoryConversationStore() if in_memory else JsonFileConversationStore(config.store_dir)

    orchestrator = InterviewOrchestrator(
        store=store,
        project_id=config.google_cloud_project,
        credentials_json=config.google_application_credentials,
        location=config.vertex_location,
        model_name=config.model_name,
        llm_timeout_ms=config.llm_timeout_ms,
        llm_retry_count=config.llm_retry_count,
        enable_llm=use_llm,
    )

    if use_llm:
        print(f"🧠 LLM extraction: {config.model_name} ({config.vertex_location})")
    else:
        print("📝 Deterministic mode: answers are parsed without the LLM")
    print(f"💾 Store: {'memory' if in_memory else config.store_dir} | Log: {log_file}")
    print(HELP_TEXT)
    print()

    while True:
        try:
            text = input("📱 You: ").strip()
        except (EOFError, KeyboardInterrupt):
            print()
            break

        if not text:
            continue
        if text == "/quit":
            break
        if text == "/status":
            _print_status(orchestrator, user_id)
            continue
        if text == "/nudge":
            nudge = orchestrator.send_dropout_nudge(user_id)
            print(f"🤖 JOSH: {nudge}" if nudge else "ℹ️  Nothing to nudge")
            continue

        try:
            plan = orchestrator.handle_inbound(user_id, f"SM{uuid.uuid4().hex}", text, first_name=first_name)
        except InterviewStateError as e:
            print(f"❌ Session error: {e}")
            sys.exit(1)

        print(f"🤖 JOSH: {plan.reply_message}")
        if plan.action == "complete":
            _print_status(orchestrator, user_id)

    print(f"📈 Metrics: {orchestrator.get_metrics()}")


if __name__ == "__main__":
    main()
