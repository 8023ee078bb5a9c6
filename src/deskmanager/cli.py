"""Command-line interface for batch ticket processing and draft management.

Provides an argparse-based tool with one subcommand per support workflow:
processing open tickets into drafts, searching, statistics, reviewing and
sending drafts, live watching, and first-time OAuth setup.  Output formats
for listings: table (default) or JSON.

Exit codes: 0 success, 1 Desk API failure, 2 authentication failure,
3 rate limited, 4 draft or generation failure, 130 interrupted.

Usage::

    deskmanager process --status Open --limit 10 --auto-save
    deskmanager process "#1234" --auto-tag --post-comment --auto-save
    deskmanager search "user@example.com" --format json
    deskmanager send-draft 123456789012345678 --edit
    deskmanager send-draft "#1234"
"""

from __future__ import annotations

import argparse
import json
import sys
import time
from collections.abc import Callable, Sequence
from typing import Any

import structlog

from deskmanager.analysis.tagging import auto_tag_ticket
from deskmanager.config import get_settings
from deskmanager.desk.client import TicketFilter
from deskmanager.desk.conversation import parse_timestamp
from deskmanager.desk.stats import calculate_customer_stats, dashboard_summary
from deskmanager.domain.errors import (
    AuthError,
    DeskApiError,
    DeskManagerError,
    DraftNotFoundError,
    GenerationError,
    RateLimitedError,
    UnauthorizedError,
)
from deskmanager.domain.models import Ticket, TicketPage
from deskmanager.domain.types import ResponseType, SearchType, Tone
from deskmanager.drafts.generators import DraftGenerator, generate_draft
from deskmanager.drafts.models import DraftOptions
from deskmanager.drafts.store import send_draft
from deskmanager.observability.logs import configure_logging
from deskmanager.observability.sentry import init_sentry
from deskmanager.wiring import Services, initialize_services

logger = structlog.get_logger()

EXIT_OK = 0
EXIT_API_FAILURE = 1
EXIT_AUTH_FAILURE = 2
EXIT_RATE_LIMITED = 3
EXIT_DRAFT_FAILURE = 4
EXIT_INTERRUPTED = 130

InputFn = Callable[[str], str]
SleepFn = Callable[[float], None]

TONE_CHOICES = {"1": Tone.FRIENDLY, "2": Tone.FORMAL, "3": Tone.TECHNICAL, "4": Tone.EMPATHETIC}


def exit_code_for(exc: BaseException) -> int:
    """Map a domain error to the CLI exit code."""
    if isinstance(exc, AuthError | UnauthorizedError):
        return EXIT_AUTH_FAILURE
    if isinstance(exc, RateLimitedError):
        return EXIT_RATE_LIMITED
    if isinstance(exc, DeskApiError):
        return EXIT_API_FAILURE
    if isinstance(exc, GenerationError | DraftNotFoundError):
        return EXIT_DRAFT_FAILURE
    return EXIT_API_FAILURE


# ---------------------------------------------------------------------------
# Output formatting
# ---------------------------------------------------------------------------


def format_table(rows: Sequence[Sequence[Any]], headers: Sequence[str], widths: Sequence[int]) -> str:
    """Format rows as a fixed-width table with a header row.

    Long cells are truncated with ``...`` to fit their column.

    Args:
        rows: Table rows, one value per column.
        headers: Column titles.
        widths: Column widths in characters.

    Returns:
        Formatted table string, or ``"No results found."`` when empty.
    """
    if not rows:
        return "No results found."

    def truncate(value: Any, width: int) -> str:
        s = str(value if value is not None else "")
        s = " ".join(s.split())
        if len(s) > width:
            return s[: width - 3] + "..."
        return s

    lines: list[str] = []
    header_line = "  ".join(h.ljust(w) for h, w in zip(headers, widths, strict=True))
    lines.append(header_line)
    lines.append("-" * len(header_line))
    for row in rows:
        cells = [truncate(v, w) for v, w in zip(row, widths, strict=True)]
        lines.append("  ".join(c.ljust(w) for c, w in zip(cells, widths, strict=True)).rstrip())
    return "\n".join(lines)


def format_json(payload: Any) -> str:
    """Format *payload* as pretty-printed JSON."""
    return json.dumps(payload, indent=2, default=str)


def format_tickets(tickets: Sequence[Ticket]) -> str:
    """Tabulate tickets: number, ID, status, priority, email and subject."""
    rows = [
        [
            f"#{t.ticket_number}" if t.ticket_number else "",
            t.id,
            t.status,
            t.priority,
            t.customer_email,
            t.subject,
        ]
        for t in tickets
    ]
    return format_table(
        rows,
        ["Number", "ID", "Status", "Priority", "Email", "Subject"],
        [8, 18, 12, 8, 28, 40],
    )


def _tickets_json(tickets: Sequence[Ticket]) -> str:
    return format_json([t.model_dump(mode="json", by_alias=True, exclude_none=True) for t in tickets])


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser with all subcommands.

    Returns:
        A configured :class:`argparse.ArgumentParser`.
    """
    parser = argparse.ArgumentParser(
        prog="deskmanager",
        description="Zoho Desk ticket manager: drafts, search and stats",
    )
    parser.add_argument("--debug", action="store_true", help="Log full failure context")
    sub = parser.add_subparsers(dest="command", required=True)

    process = sub.add_parser("process", help="Generate draft replies for tickets")
    process.add_argument(
        "tickets",
        nargs="*",
        help="Ticket IDs, numbers, Desk URLs or customer emails (default: list by --status)",
    )
    process.add_argument("--status", type=str, default="Open", help="Ticket status (default: Open)")
    process.add_argument("--limit", type=int, default=50, help="Maximum tickets (default: 50)")
    process.add_argument("--interactive", action="store_true", help="Review each draft")
    process.add_argument("--auto-save", action="store_true", help="Save drafts without asking")
    process.add_argument("--force", action="store_true", help="Regenerate existing drafts")
    process.add_argument(
        "--auto-tag", action="store_true", help="Tag each ticket at the configured tag scope"
    )
    process.add_argument(
        "--post-comment",
        action="store_true",
        help="Also post each draft as an internal comment for review",
    )
    process.add_argument(
        "--response-type",
        type=str,
        choices=[r.value for r in ResponseType],
        default=ResponseType.SOLUTION.value,
        help="Kind of reply to draft (default: solution)",
    )
    process.add_argument(
        "--tone",
        type=str,
        choices=[t.value for t in Tone],
        default=None,
        help="Reply tone (default: configured response style)",
    )
    process.add_argument(
        "--delay",
        type=float,
        default=2.0,
        help="Seconds to wait between tickets (default: 2)",
    )
    process.set_defaults(handler=cmd_process)

    search = sub.add_parser("search", help="Search recent tickets")
    search.add_argument("query", type=str, help="Email, ticket number, or text")
    search.add_argument(
        "--type",
        type=str,
        choices=[s.value for s in SearchType],
        default=SearchType.AUTO.value,
        dest="search_type",
        help="Search strategy (default: auto)",
    )
    search.add_argument("--limit", type=int, default=20, help="Maximum results (default: 20)")
    search.add_argument("--force", action="store_true", help="Bypass the search cache")
    _add_format(search)
    search.set_defaults(handler=cmd_search)

    stats = sub.add_parser("stats", help="Open-ticket summary or customer history stats")
    stats.add_argument("--customer", type=str, help="Customer email or contact ID")
    stats.add_argument("--force", action="store_true", help="Bypass the summary cache")
    _add_format(stats)
    stats.set_defaults(handler=cmd_stats)

    drafts = sub.add_parser("drafts", help="List saved drafts")
    _add_format(drafts)
    drafts.set_defaults(handler=cmd_drafts)

    send = sub.add_parser("send-draft", help="Send a saved draft as the ticket reply")
    send.add_argument("ticket", type=str, help="Ticket ID, number, Desk URL or customer email")
    send.add_argument("--edit", action="store_true", help="Edit the draft before sending")
    send.set_defaults(handler=cmd_send_draft)

    clear = sub.add_parser("clear-drafts", help="Delete every saved draft")
    clear.add_argument("--yes", action="store_true", help="Skip the confirmation prompt")
    clear.set_defaults(handler=cmd_clear_drafts)

    watch = sub.add_parser("watch", help="Poll for new or updated tickets")
    watch.add_argument("--interval", type=int, default=60, help="Seconds between polls (default: 60)")
    watch.add_argument("--status", type=str, default=None, help="Only watch this status")
    watch.add_argument("--limit", type=int, default=50, help="Tickets per poll (default: 50)")
    watch.add_argument("--auto-draft", action="store_true", help="Draft replies for new activity")
    watch.add_argument("--auto-tag", action="store_true", help="Tag tickets with new activity")
    watch.add_argument(
        "--max-cycles",
        type=int,
        default=0,
        help="Stop after this many polls (default: 0, run until interrupted)",
    )
    watch.set_defaults(handler=cmd_watch)

    test = sub.add_parser("test-connection", help="Verify credentials against the Desk API")
    test.set_defaults(handler=cmd_test_connection)

    auth_url = sub.add_parser("auth-url", help="Print the OAuth authorization URL")
    auth_url.set_defaults(handler=cmd_auth_url)

    exchange = sub.add_parser("exchange-code", help="Exchange an OAuth authorization code")
    exchange.add_argument("code", type=str, help="Authorization code from the OAuth redirect")
    exchange.set_defaults(handler=cmd_exchange_code)

    return parser


def _add_format(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--format",
        type=str,
        choices=["table", "json"],
        default="table",
        dest="output_format",
        help="Output format (default: table)",
    )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _read_edited(current: str, input_fn: InputFn) -> str:
    print("Current draft:")
    print(current)
    print()
    print("Enter your edited version (type 'END' on a new line when done):")
    lines: list[str] = []
    while True:
        line = input_fn("")
        if line == "END":
            break
        lines.append(line)
    edited = "\n".join(lines).strip()
    return edited or current


def _confirm(question: str, input_fn: InputFn) -> bool:
    return input_fn(f"{question} (y/n): ").strip().lower() == "y"


def _draft_for(
    services: Services,
    generator: DraftGenerator,
    ticket_id: str,
    options: DraftOptions,
) -> tuple[str, bool]:
    """Generate a draft for one ticket; returns ``(text, prompt_only)``."""
    ticket = services.client.get_ticket(ticket_id)
    messages = services.client.get_conversation(ticket_id)
    print(f"  Conversation: {len(messages)} messages")
    result, context = generate_draft(generator, ticket, messages, services.settings, options)
    if context.key_issues:
        print(f"  Key issues: {', '.join(context.key_issues)}")
    for suggestion in context.suggestions:
        print(f"  Suggestion: {suggestion}")
    return result.text, result.prompt_only


def cmd_process(
    args: argparse.Namespace,
    services: Services,
    input_fn: InputFn = input,
    sleep: SleepFn = time.sleep,
) -> int:
    """Generate drafts for the named tickets, or a batch listed by status."""
    if args.tickets:
        page = TicketPage(
            data=[
                services.client.get_ticket(services.client.resolve_ticket_id(reference))
                for reference in args.tickets
            ]
        )
    else:
        page = services.client.list_tickets(
            TicketFilter(status=args.status, limit=args.limit, sort_by="modifiedTime"),
            force=args.force,
        )
    if not page.data:
        print("No tickets found.")
        return EXIT_OK

    generator = services.generator()
    options = DraftOptions(
        response_type=ResponseType(args.response_type),
        tone=Tone(args.tone) if args.tone else None,
    )
    total = page.count
    print(f"Found {total} tickets to process.")

    processed = drafted = skipped = errors = 0
    exit_code = EXIT_OK

    for index, ticket in enumerate(page.data, start=1):
        print("-" * 43)
        print(f"Processing ticket {index}/{total}: #{ticket.ticket_number} {ticket.subject}")

        if services.drafts.exists(ticket.id) and not args.force:
            print("  Draft already exists. Use --force to regenerate.")
            if not (args.interactive and _confirm("Regenerate draft?", input_fn)):
                skipped += 1
                continue

        try:
            text, prompt_only = _draft_for(services, generator, ticket.id, options)
        except (UnauthorizedError, RateLimitedError):
            raise
        except (DeskApiError, GenerationError) as exc:
            print(f"  Failed: {exc}")
            errors += 1
            exit_code = exit_code_for(exc)
            continue

        processed += 1
        print()
        if prompt_only:
            print("Prompt for your browser AI:")
        else:
            print("Generated draft:")
        print(text)
        print()

        if prompt_only:
            skipped += 1
        elif args.interactive:
            outcome = _interactive_review(services, generator, ticket.id, text, options, input_fn)
            if outcome:
                drafted += 1
            else:
                skipped += 1
        elif args.auto_save:
            services.drafts.save(ticket.id, text, generated_by="cli")
            drafted += 1
            print("  Draft auto-saved.")

        tags = _auto_tag(services, ticket.id) if args.auto_tag else []
        if args.post_comment and not prompt_only:
            _post_comment(services, ticket.id, text, tags, options.tone)

        print(f"Progress: processed {processed} | drafts {drafted} | skipped {skipped} | errors {errors}")
        if index < total and args.delay > 0:
            sleep(args.delay)

    print("=" * 43)
    print(f"Total: {total}  Processed: {processed}  Drafts: {drafted}  Skipped: {skipped}  Errors: {errors}")
    return exit_code


def _auto_tag(services: Services, ticket_id: str) -> list[str]:
    """Apply the tags suggested at the configured scope; returns them."""
    try:
        tags = auto_tag_ticket(services.client, ticket_id, scope=services.settings.tag_scope)
    except (UnauthorizedError, RateLimitedError):
        raise
    except DeskApiError as exc:
        print(f"  Auto-tag failed: {exc}")
        return []
    print(f"  Tags added: {', '.join(tags)}" if tags else "  No tags suggested.")
    return tags


def _post_comment(
    services: Services,
    ticket_id: str,
    text: str,
    tags: Sequence[str],
    tone: Tone | None,
) -> None:
    try:
        services.client.add_draft_comment(
            ticket_id, text, suggested_tags=tags, tone=tone.value if tone else None
        )
    except (UnauthorizedError, RateLimitedError):
        raise
    except DeskApiError as exc:
        print(f"  Comment failed: {exc}")
        return
    print("  Draft posted as internal comment.")


def _interactive_review(
    services: Services,
    generator: DraftGenerator,
    ticket_id: str,
    text: str,
    options: DraftOptions,
    input_fn: InputFn,
) -> bool:
    """Ask the agent what to do with a draft; returns ``True`` if saved."""
    print("What would you like to do?")
    print("1. Save draft")
    print("2. Edit draft")
    print("3. Regenerate with different tone")
    print("4. Skip")
    print("5. Save and send immediately")
    choice = input_fn("Enter choice (1-5): ").strip()

    if choice == "1":
        services.drafts.save(ticket_id, text, generated_by="cli")
        print("  Draft saved.")
        return True
    if choice == "2":
        services.drafts.save(ticket_id, _read_edited(text, input_fn), generated_by="cli")
        print("  Edited draft saved.")
        return True
    if choice == "3":
        print("Select tone: 1) Friendly 2) Formal 3) Technical 4) Empathetic")
        tone = TONE_CHOICES.get(input_fn("Enter choice (1-4): ").strip(), Tone.PROFESSIONAL)
        new_text, _ = _draft_for(
            services, generator, ticket_id, options.model_copy(update={"tone": tone})
        )
        services.drafts.save(ticket_id, new_text, generated_by="cli")
        print(f"  New draft with {tone.value} tone saved.")
        return True
    if choice == "5":
        services.drafts.save(ticket_id, text, generated_by="cli")
        send_draft(services.client, services.drafts, ticket_id)
        print("  Draft saved and sent.")
        return True
    print("  Skipped.")
    return False


def cmd_search(args: argparse.Namespace, services: Services) -> int:
    """Search recent tickets and print the matches."""
    page = services.client.search(
        args.query, SearchType(args.search_type), limit=args.limit, force=args.force
    )
    if args.output_format == "json":
        print(_tickets_json(page.data))
    else:
        print(format_tickets(page.data))
    return EXIT_OK


def cmd_stats(args: argparse.Namespace, services: Services) -> int:
    """Print the dashboard summary, or one customer's history stats."""
    if args.customer:
        page = services.client.get_customer_tickets(args.customer)
        stats = calculate_customer_stats(page.data)
        if args.output_format == "json":
            print(format_json(stats.model_dump(mode="json")))
            return EXIT_OK
        print(f"Customer: {args.customer}")
        print(f"  Total tickets: {stats.total_tickets}")
        print(f"  Open/active: {stats.open_tickets}")
        print(f"  Closed: {stats.closed_tickets}")
        if stats.average_resolution_hours:
            print(f"  Avg resolution: {stats.average_resolution_hours} hours")
        if stats.first_ticket_date:
            print(f"  Customer since: {stats.first_ticket_date}")
        for category, count in sorted(stats.categories.items(), key=lambda kv: -kv[1]):
            print(f"  {category}: {count} tickets")
        return EXIT_OK

    summary = dashboard_summary(
        services.client,
        services.kv,
        ttl=services.settings.dashboard_cache_seconds,
        force=args.force,
    )
    if args.output_format == "json":
        print(format_json(summary.model_dump(mode="json")))
        return EXIT_OK
    print(f"Open: {summary.open_count}  Urgent: {summary.urgent_count}  "
          f"Pending reply: {summary.pending_reply_count}  Overdue: {summary.overdue_count}")
    print(f"Rate limit: {services.limiter.remaining()}/{services.limiter.max_calls} calls left this minute")
    if summary.attention:
        print()
        print("Needs attention:")
        rows = [
            [f"#{t.ticket_number}", t.priority, "OVERDUE" if t.is_overdue else "", t.contact_name, t.subject]
            for t in summary.attention
        ]
        print(format_table(rows, ["Number", "Priority", "Due", "Contact", "Subject"], [8, 8, 8, 16, 40]))
    return EXIT_OK


def cmd_drafts(args: argparse.Namespace, services: Services) -> int:
    """List saved drafts."""
    drafts = services.drafts.list_drafts()
    if args.output_format == "json":
        print(format_json([d.model_dump(mode="json") for d in drafts]))
        return EXIT_OK
    if not drafts:
        print("No saved drafts found.")
        return EXIT_OK
    rows = [
        [
            d.ticket_id,
            d.generated_at.strftime("%Y-%m-%d %H:%M") if d.generated_at else "",
            d.generated_by,
            d.status.value,
            d.content,
        ]
        for d in drafts
    ]
    print(format_table(rows, ["Ticket ID", "Generated", "By", "Status", "Preview"], [18, 16, 10, 6, 50]))
    return EXIT_OK


def cmd_send_draft(
    args: argparse.Namespace,
    services: Services,
    input_fn: InputFn = input,
) -> int:
    """Send a saved draft, optionally editing it first."""
    ticket_id = services.client.resolve_ticket_id(args.ticket)
    content = None
    if args.edit:
        draft = services.drafts.load(ticket_id)
        content = _read_edited(draft.content, input_fn)
    send_draft(services.client, services.drafts, ticket_id, content)
    print(f"Reply sent on ticket {ticket_id}; draft removed.")
    return EXIT_OK


def cmd_clear_drafts(
    args: argparse.Namespace,
    services: Services,
    input_fn: InputFn = input,
) -> int:
    """Delete every saved draft after confirmation."""
    if not args.yes and not _confirm("Are you sure you want to clear all drafts?", input_fn):
        print("Operation cancelled.")
        return EXIT_OK
    count = services.drafts.clear_all()
    print(f"Cleared {count} draft(s).")
    return EXIT_OK


def _modified_ts(ticket: Ticket) -> float:
    parsed = parse_timestamp(ticket.modified_time)
    return parsed.timestamp() if parsed is not None else 0.0


def cmd_watch(
    args: argparse.Namespace,
    services: Services,
    sleep: SleepFn = time.sleep,
) -> int:
    """Poll for tickets modified since the previous poll.

    The first poll only establishes the baseline.  Rate-limit rejections
    wait for the window to reset; other Desk failures are reported and
    the next poll proceeds.
    """
    print(f"Watching tickets every {args.interval}s. Press Ctrl+C to stop.")
    generator = services.generator() if args.auto_draft else None
    last_seen: float | None = None
    cycles = 0

    while True:
        cycles += 1
        wait: float = args.interval
        try:
            page = services.client.list_tickets(
                TicketFilter(status=args.status, limit=args.limit, sort_by="-modifiedTime"),
                force=True,
            )
        except RateLimitedError as exc:
            print(f"Rate limited; resuming in {exc.reset_in}s.")
            wait = exc.reset_in
        except UnauthorizedError:
            raise
        except DeskApiError as exc:
            print(f"Poll failed: {exc}")
        else:
            newest = max((_modified_ts(t) for t in page.data), default=0.0)
            if last_seen is None:
                print(f"Baseline: {page.count} tickets.")
            else:
                changed = [t for t in page.data if _modified_ts(t) > last_seen]
                for ticket in changed:
                    print(f"Updated: #{ticket.ticket_number} [{ticket.status}] {ticket.subject}")
                    if args.auto_tag:
                        _auto_tag(services, ticket.id)
                    if generator is not None and not services.drafts.exists(ticket.id):
                        _watch_draft(services, generator, ticket.id)
            last_seen = max(newest, last_seen or 0.0)

        if args.max_cycles and cycles >= args.max_cycles:
            return EXIT_OK
        sleep(wait)


def _watch_draft(services: Services, generator: DraftGenerator, ticket_id: str) -> None:
    try:
        text, prompt_only = _draft_for(services, generator, ticket_id, DraftOptions())
    except (UnauthorizedError, RateLimitedError):
        raise
    except (DeskApiError, GenerationError) as exc:
        print(f"  Draft failed: {exc}")
        return
    if not prompt_only:
        services.drafts.save(ticket_id, text, generated_by="watch")
        print("  Draft saved.")


def cmd_test_connection(args: argparse.Namespace, services: Services) -> int:
    """Verify that the configured credentials can list tickets."""
    count = services.client.test_connection()
    print(f"Connection OK ({count} ticket(s) visible).")
    print(f"Rate limit: {services.limiter.remaining()}/{services.limiter.max_calls} calls left this minute")
    return EXIT_OK


def cmd_auth_url(args: argparse.Namespace, services: Services) -> int:
    """Print the URL an admin opens to authorize the app."""
    print(services.tokens.authorization_url())
    return EXIT_OK


def cmd_exchange_code(args: argparse.Namespace, services: Services) -> int:
    """Store the token pair obtained from an authorization code."""
    services.tokens.exchange_code(args.code)
    print("Authorization complete; tokens stored.")
    return EXIT_OK


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: Sequence[str] | None = None) -> int:
    """Parse arguments, run the selected command and return its exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    debug = settings.debug or args.debug
    configure_logging(
        production=settings.production,
        debug=debug,
        sentry_enabled=init_sentry(
            settings.sentry_dsn,
            environment="production" if settings.production else "development",
        ),
    )

    services = initialize_services(settings.model_copy(update={"debug": debug}))
    try:
        return int(args.handler(args, services))
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return EXIT_INTERRUPTED
    except DeskManagerError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        if debug:
            logger.exception("command_failed", command=args.command)
        return exit_code_for(exc)
    finally:
        services.close()


def run() -> None:
    """Console-script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    run()
