"""Main entry point for the application."""

import argparse
import logging
import sys
from typing import List, Optional

from portal.backends import get_backend, set_backend_url
from portal.config import get_config_value, validate_config
from portal.database import Database
from portal.errors import PortalError
from portal.logging_setup import setup_logging
from portal.service import PortalService

logger = logging.getLogger(__name__)


def _open_service() -> PortalService:
    db = Database(get_config_value("portal_settings.db_file_name", "portal.db"))
    return PortalService(get_backend(db))


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from portal.server import create_app

    host = args.host or get_config_value("server.host", "127.0.0.1")
    port = args.port or get_config_value("server.port", 8000)
    logger.info(f"Starting collaborator endpoint on {host}:{port}")
    uvicorn.run(create_app(), host=host, port=port, log_level="info")
    return 0


def cmd_list_applications(args: argparse.Namespace) -> int:
    service = _open_service()
    applications = service.list_applications(status=args.status, search=args.search)
    for application in applications:
        print(
            f"{application.id}\t{application.status.value}\t{application.submitted_at}\t"
            f"{application.full_name} <{application.email}>"
        )
    print(f"{len(applications)} application(s)")
    return 0


def cmd_approve(args: argparse.Namespace) -> int:
    service = _open_service()
    if len(args.ids) == 1:
        invite = service.approve(args.ids[0])
        print(f"Approved {args.ids[0]}: code {invite.code}")
        return 0

    result = service.batch_approve(args.ids)
    print(f"Approved {result.count} of {len(args.ids)} application(s)")
    for application_id, message in result.failed.items():
        print(f"  failed {application_id}: {message}")
    return 1 if result.failed else 0


def cmd_reject(args: argparse.Namespace) -> int:
    _open_service().reject(args.id)
    print(f"Rejected {args.id}")
    return 0


def cmd_codes(args: argparse.Namespace) -> int:
    codes = _open_service().list_codes()
    for invite in codes:
        state = "used" if invite.used else "unused"
        print(f"{invite.code}\t{state}\t{invite.email}\t{invite.application_id}")
    print(f"{len(codes)} code(s)")
    return 0


def cmd_redeem(args: argparse.Namespace) -> int:
    result = _open_service().redeem_code(args.code)
    print("valid" if result.valid else f"invalid: {result.message}")
    return 0 if result.valid else 1


def cmd_set_backend(args: argparse.Namespace) -> int:
    db = Database(get_config_value("portal_settings.db_file_name", "portal.db"))
    set_backend_url(db, args.url)
    print(f"Backend set to {args.url}" if args.url else "Backend cleared; using local storage")
    return 0


def cmd_reminders(args: argparse.Namespace) -> int:
    sent = _open_service().trigger_reminders()
    print(f"Sent {sent} reminder(s)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Class portal administration")
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the remote collaborator endpoint")
    serve.add_argument("--host", help="Bind address (default: server.host)")
    serve.add_argument("--port", type=int, help="Port (default: server.port)")
    serve.set_defaults(func=cmd_serve)

    listing = sub.add_parser("list-applications", help="List applications, newest first")
    listing.add_argument("--status", choices=["pending", "approved", "rejected"])
    listing.add_argument("--search", help="Filter by name or email")
    listing.set_defaults(func=cmd_list_applications)

    approve = sub.add_parser("approve", help="Approve applications and issue their codes")
    approve.add_argument("ids", nargs="+", metavar="ID")
    approve.set_defaults(func=cmd_approve)

    reject = sub.add_parser("reject", help="Reject an application")
    reject.add_argument("id", metavar="ID")
    reject.set_defaults(func=cmd_reject)

    sub.add_parser("codes", help="List issued invite codes").set_defaults(func=cmd_codes)

    redeem = sub.add_parser("redeem", help="Validate and redeem an access code")
    redeem.add_argument("code", metavar="CODE")
    redeem.set_defaults(func=cmd_redeem)

    backend = sub.add_parser("set-backend", help="Use a remote record store (empty URL for local)")
    backend.add_argument("url", metavar="URL", nargs="?", default="")
    backend.set_defaults(func=cmd_set_backend)

    sub.add_parser("reminders", help="Email reminders to students who redeemed a code").set_defaults(
        func=cmd_reminders
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 1

    setup_logging()
    if args.command == "serve":
        validate_config()

    try:
        return args.func(args)
    except PortalError as e:
        logger.error(f"Command '{args.command}' failed: {e.message}")
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    except Exception as e:
        logger.critical(f"Command '{args.command}' crashed: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
