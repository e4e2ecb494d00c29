#!/usr/bin/env python3
"""
Command-line front end for the SFT tracker.
Every subcommand runs one operation against the configured store through the error boundary.
"""

import argparse
import asyncio
import getpass
import io
import json
import sys
from contextlib import nullcontext, redirect_stdout
from dataclasses import asdict, is_dataclass
from typing import Any

from config.config import Config
from config.config import config as default_config
from sft_tracker.data.schemas import BaseSchema, TrainingType
from sft_tracker.logic.audit import ClosedSortState, ReportingLogic
from sft_tracker.logic.health import QUESTIONS, progress
from sft_tracker.logic.training import format_duration
from sft_tracker.services.startup_service import Application, StartupService, build_application
from sft_tracker.utils.error_handler import ErrorBoundary, run_operation
from sft_tracker.utils.logging import configure_logging

EXIT_OK = 0
EXIT_ERROR = 1


def _password(args) -> str:
    return args.password if args.password is not None else getpass.getpass("Password: ")


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseSchema):
        return value.to_storage()
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    if is_dataclass(value):
        return asdict(value)
    return value


def _print_profile(profile) -> None:
    print(f"{profile.email}{' (admin)' if profile.is_admin else ''}")
    for label, value in (
        ("Rank", profile.rank),
        ("Name", profile.full_name),
        ("NRIC", profile.nric),
        ("Parent unit", profile.parent_unit),
        ("Sub-unit", profile.sub_unit),
        ("Course code", profile.course_code),
        ("Contact", profile.contact_number),
        ("PES", profile.pes_status),
    ):
        if value:
            print(f"  {label}: {value}")


def _print_record(record) -> None:
    duration = format_duration(record)
    status = "active" if record.is_open else f"duration {duration or '-'}"
    print(f"{record.timestamp.isoformat()}  {record.training_type:<20} {status}")


# Account commands
async def cmd_register(app: Application, args) -> Any:
    profile = await app.auth.register(
        {
            "email": args.email,
            "password": _password(args),
            "rank": args.rank,
            "fullName": args.name,
            "nric": args.nric,
            "parentUnit": args.parent_unit,
            "subUnit": args.sub_unit,
            "courseCode": args.course_code,
            "contactNumber": args.contact,
            "pesStatus": args.pes,
        }
    )
    print(f"Registered {profile.email}. Please log in.")
    return profile


async def cmd_login(app: Application, args) -> Any:
    profile = await app.auth.login(args.email, _password(args))
    print(f"Logged in as {profile.email}{' (admin)' if profile.is_admin else ''}")
    return profile


async def cmd_logout(app: Application, args) -> Any:
    previous = await app.auth.logout()
    print(f"Logged out {previous.email}" if previous else "No active session")
    return previous


async def cmd_whoami(app: Application, args) -> Any:
    profile = app.session.require_user()
    _print_profile(profile)
    return profile


async def cmd_profile_update(app: Application, args) -> Any:
    changes = {
        key: value
        for key, value in {
            "rank": args.rank,
            "fullName": args.name,
            "nric": args.nric,
            "parentUnit": args.parent_unit,
            "subUnit": args.sub_unit,
            "courseCode": args.course_code,
            "contactNumber": args.contact,
            "pesStatus": args.pes,
            "password": args.password,
        }.items()
        if value is not None
    }
    profile = await app.profiles.update_own_profile(changes)
    _print_profile(profile)
    return profile


# Health commands
async def cmd_health_questions(app: Application, args) -> Any:
    for number, question in enumerate(QUESTIONS, start=1):
        print(f"{number}. {question}")
    return list(QUESTIONS)


async def cmd_health_submit(app: Application, args) -> Any:
    if args.answers:
        answers = [a.strip() or None for a in args.answers.split(",")]
    else:
        answers = []
        # Prompts go to stderr so they stay visible when stdout carries JSON
        for number, question in enumerate(QUESTIONS, start=1):
            print(f"{number}. {question} [Yes/No]: ", end="", file=sys.stderr, flush=True)
            answers.append(input().strip() or None)
    print(f"Answered: {progress(answers)}%")

    result = await app.health.submit(answers)
    print(result.message)
    for index, question in zip(result.failed_indices[:3], result.failed_questions):
        print(f"  {index + 1}. {question}")
    return result


async def cmd_health_history(app: Application, args) -> Any:
    events = await app.health.unfit_history()
    if not events:
        print("No unfit declarations")
    for event in events:
        print(f"{event.timestamp.isoformat()}  failed checks: {', '.join(str(i + 1) for i in event.failed_indices)}")
    return events


# Training commands
async def cmd_training_start(app: Application, args) -> Any:
    record = await app.training.start(args.type)
    print(f"Started {record.training_type} at {record.start_time.isoformat()}")
    return record


async def cmd_training_type(app: Application, args) -> Any:
    record = await app.training.change_type(args.type)
    print(f"Training type set to {app.training.state.selected_type.value}" + (" (active session updated)" if record else ""))
    return record


async def cmd_training_end(app: Application, args) -> Any:
    record = await app.training.end()
    print(f"Session ended. Duration {format_duration(record)}")
    return record


async def cmd_training_status(app: Application, args) -> Any:
    state = await app.training.resume_on_focus()
    if state.is_running:
        print(f"Active {state.selected_type.value} session since {state.start_time.isoformat()}")
    else:
        print("No active session")
    return state


async def cmd_training_records(app: Application, args) -> Any:
    records = await app.training.list_own()
    if not records:
        print("No records")
    for record in records:
        _print_record(record)
    return records


async def cmd_training_hide(app: Application, args) -> Any:
    await app.training.hide()
    print("Records hidden")


async def cmd_training_unhide(app: Application, args) -> Any:
    await app.training.unhide()
    print("Records visible")


# Admin commands
async def cmd_admin_bootstrap(app: Application, args) -> Any:
    profile = await app.auth.bootstrap_admin(args.email, _password(args))
    print(f"{profile.email} is now an admin")
    return profile


async def cmd_admin_users(app: Application, args) -> Any:
    users = await app.profiles.list_users()
    for profile in users:
        _print_profile(profile)
    return users


async def cmd_admin_search(app: Application, args) -> Any:
    users = await app.profiles.search(args.term)
    if not users:
        print("No matching users")
    for profile in users:
        _print_profile(profile)
    return users


async def cmd_admin_grant(app: Application, args) -> Any:
    profile = await app.profiles.grant_admin(args.email)
    print(f"Granted admin to {profile.email}")
    return profile


async def cmd_admin_revoke(app: Application, args) -> Any:
    profile = await app.profiles.revoke_admin(args.email)
    print(f"Revoked admin from {profile.email}")
    return profile


async def cmd_admin_delete(app: Application, args) -> Any:
    profile = await app.profiles.delete_user(args.email)
    print(f"Deleted {profile.email}")
    return profile


async def cmd_admin_edit_as(app: Application, args) -> Any:
    profile = await app.profiles.edit_as(args.email)
    print(f"Now acting as {profile.email}")
    return profile


async def cmd_admin_audit(app: Application, args) -> Any:
    if args.clear:
        await app.audit.clear()
        print("Audit log cleared")
        return []
    entries = await app.audit.entries()
    for entry in entries:
        print(f"{entry.timestamp.isoformat()}  {entry.admin_email:<30} {entry.action}")
    return entries


async def cmd_admin_unfit_log(app: Application, args) -> Any:
    if args.clear:
        await app.health.clear_unfit_log()
        print("Unfit log cleared")
        return []
    entries = await app.health.unfit_log()
    for entry in entries:
        print(f"{entry.timestamp.isoformat()}  {entry.email}")
        for line in entry.preview.splitlines():
            print(f"    {line}")
    return entries


async def cmd_admin_today(app: Application, args) -> Any:
    overview = await app.reporting.today()
    closed = overview.closed
    if args.sort:
        closed, _ = ReportingLogic.sort_closed(closed, args.sort, ClosedSortState())
        if args.desc:
            closed.reverse()

    print(f"Open ({len(overview.open)})")
    for row in overview.open:
        print(f"  {row.owner_rank} {row.owner_name} <{row.owner_email}> {row.training_type} {row.owner_contact_uri or ''}")
    print(f"Closed ({len(closed)})")
    for row in closed:
        print(f"  {row.owner_rank} {row.owner_name} <{row.owner_email}> {row.training_type} {format_duration(row) or '-'}")
    return overview.open + closed


async def cmd_admin_clear_records(app: Application, args) -> Any:
    removed = await app.reporting.clear_records_for(args.email)
    print(f"Removed {removed} record(s) for {args.email.strip().lower()}")
    return removed


def _add_profile_fields(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--rank")
    parser.add_argument("--name", help="Full name")
    parser.add_argument("--nric", help="Last 4 characters of NRIC")
    parser.add_argument("--parent-unit")
    parser.add_argument("--sub-unit")
    parser.add_argument("--course-code")
    parser.add_argument("--contact", help="Contact number")
    parser.add_argument("--pes", help="PES status")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sft", description="SFT training and health declaration tracker")
    parser.add_argument("--database-url", help="Override SFT_DATABASE_URL")
    parser.add_argument("--format", choices=["text", "json"], default="text", help="Output format")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    register_parser = subparsers.add_parser("register", help="Register a new user")
    register_parser.add_argument("email")
    register_parser.add_argument("--password")
    _add_profile_fields(register_parser)
    register_parser.set_defaults(func=cmd_register)

    login_parser = subparsers.add_parser("login", help="Log in")
    login_parser.add_argument("email")
    login_parser.add_argument("--password")
    login_parser.set_defaults(func=cmd_login)

    subparsers.add_parser("logout", help="Log out").set_defaults(func=cmd_logout)
    subparsers.add_parser("whoami", help="Show the logged-in profile").set_defaults(func=cmd_whoami)

    # profile
    profile_parser = subparsers.add_parser("profile", help="Manage your profile")
    profile_sub = profile_parser.add_subparsers(dest="action", required=True)
    update_parser = profile_sub.add_parser("update", help="Edit your profile")
    _add_profile_fields(update_parser)
    update_parser.add_argument("--password", help="New password")
    update_parser.set_defaults(func=cmd_profile_update)

    # health
    health_parser = subparsers.add_parser("health", help="Health declaration")
    health_sub = health_parser.add_subparsers(dest="action", required=True)
    health_sub.add_parser("questions", help="List the questions").set_defaults(func=cmd_health_questions)
    submit_parser = health_sub.add_parser("submit", help="Submit a declaration")
    submit_parser.add_argument("--answers", help="Comma-separated Yes/No answers, one per question")
    submit_parser.set_defaults(func=cmd_health_submit)
    health_sub.add_parser("history", help="Your unfit declarations").set_defaults(func=cmd_health_history)

    # training
    type_choices = [t.value for t in TrainingType]
    training_parser = subparsers.add_parser("training", help="Training sessions")
    training_sub = training_parser.add_subparsers(dest="action", required=True)
    start_parser = training_sub.add_parser("start", help="Start a session")
    start_parser.add_argument("--type", default=TrainingType.RUN.value, help=f"One of: {', '.join(type_choices)}")
    start_parser.set_defaults(func=cmd_training_start)
    type_parser = training_sub.add_parser("type", help="Change the training type")
    type_parser.add_argument("type", help=f"One of: {', '.join(type_choices)}")
    type_parser.set_defaults(func=cmd_training_type)
    training_sub.add_parser("end", help="End the active session").set_defaults(func=cmd_training_end)
    training_sub.add_parser("status", help="Show the active session").set_defaults(func=cmd_training_status)
    training_sub.add_parser("records", help="List your records").set_defaults(func=cmd_training_records)
    training_sub.add_parser("hide", help="Hide your records").set_defaults(func=cmd_training_hide)
    training_sub.add_parser("unhide", help="Show your records again").set_defaults(func=cmd_training_unhide)

    # admin
    admin_parser = subparsers.add_parser("admin", help="Admin tools")
    admin_sub = admin_parser.add_subparsers(dest="action", required=True)
    bootstrap_parser = admin_sub.add_parser("bootstrap", help="Create the first admin")
    bootstrap_parser.add_argument("email")
    bootstrap_parser.add_argument("--password")
    bootstrap_parser.set_defaults(func=cmd_admin_bootstrap)
    admin_sub.add_parser("users", help="List all users").set_defaults(func=cmd_admin_users)
    search_parser = admin_sub.add_parser("search", help="Search users by email or name")
    search_parser.add_argument("term")
    search_parser.set_defaults(func=cmd_admin_search)
    for name, func, help_text in (
        ("grant", cmd_admin_grant, "Grant admin"),
        ("revoke", cmd_admin_revoke, "Revoke admin"),
        ("delete", cmd_admin_delete, "Delete a user"),
        ("edit-as", cmd_admin_edit_as, "Act as another user"),
        ("clear-records", cmd_admin_clear_records, "Remove a user's training records"),
    ):
        sub = admin_sub.add_parser(name, help=help_text)
        sub.add_argument("email")
        sub.set_defaults(func=func)
    audit_parser = admin_sub.add_parser("audit", help="Show the admin audit log")
    audit_parser.add_argument("--clear", action="store_true", help="Clear the log")
    audit_parser.set_defaults(func=cmd_admin_audit)
    unfit_parser = admin_sub.add_parser("unfit-log", help="Show the unfit declaration log")
    unfit_parser.add_argument("--clear", action="store_true", help="Clear the log")
    unfit_parser.set_defaults(func=cmd_admin_unfit_log)
    today_parser = admin_sub.add_parser("today", help="Today's open and closed sessions")
    today_parser.add_argument("--sort", choices=["start", "end"], help="Sort closed sessions")
    today_parser.add_argument("--desc", action="store_true", help="Sort descending")
    today_parser.set_defaults(func=cmd_admin_today)

    return parser


async def run(args, cfg: Config) -> int:
    async with ErrorBoundary(component="cli/startup") as boundary:
        app = await build_application(cfg)
    if boundary.error:
        print(f"Error: {boundary.user_message}", file=sys.stderr)
        return EXIT_ERROR

    # JSON output replaces the human-readable text
    quiet = redirect_stdout(io.StringIO()) if args.format == "json" else nullcontext()
    try:
        with quiet:
            result = await run_operation(StartupService(app).run_startup_migrations(), component="cli/startup")
            if result.ok:
                result = await run_operation(
                    args.func(app, args),
                    user_id=app.session.email,
                    component=f"cli/{args.command}",
                    context={"command": args.command, "action": getattr(args, "action", None)},
                )
    finally:
        await app.close()

    if not result.ok:
        print(f"Error: {result.message}", file=sys.stderr)
        return EXIT_ERROR
    if args.format == "json":
        print(json.dumps(_jsonable(result.value), indent=2, default=str))
    return EXIT_OK


def main(argv: list[str] | None = None, cfg: Config | None = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return EXIT_OK

    cfg = cfg or default_config
    if args.database_url:
        cfg.storage.database_url = args.database_url
    configure_logging(cfg.log_level)
    return asyncio.run(run(args, cfg))


if __name__ == "__main__":
    sys.exit(main())
