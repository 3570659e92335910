"""CLI entry point for the biometric attendance core.

Usage:
    ferretto-attendance users
    ferretto-attendance enroll --user 2
    ferretto-attendance test --user 2
    ferretto-attendance verify --user 2 [--force]
    ferretto-attendance attendance [--user 2]
"""

import argparse
import asyncio
import logging
import sys
from datetime import date
from pathlib import Path

from .capture import CaptureSession
from .constants import get_config
from .embeddings import create_embedding_provider
from .enrollment import EnrollmentController
from .errors import AttendanceError
from .geolocation import create_geolocation_provider
from .storage import JsonAppStore
from .verification import VerificationController

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def _identity(value: str):
    return int(value) if value.isdigit() else value


def open_store() -> JsonAppStore:
    storage = get_config().storage
    return JsonAppStore(storage.data_file, max_log_entries=storage.max_log_entries)


def build_session() -> CaptureSession:
    config = get_config()
    provider = create_embedding_provider(settings=config.models)
    return CaptureSession(provider, settings=config.camera)


def build_verifier(store: JsonAppStore, session: CaptureSession, args) -> VerificationController:
    config = get_config()
    return VerificationController(
        session,
        identity_store=store,
        attendance_store=store,
        geolocation=create_geolocation_provider(config.geolocation),
        activity_log=store,
        settings=config.face,
        method_tag=config.storage.method_tag,
        geolocation_timeout_ms=config.geolocation.timeout_ms,
        prefer_front_facing=not args.rear,
    )


def cmd_users(args):
    """List users and their face registration status."""
    store = open_store()
    for user in store.users():
        face = "registered" if store.get_reference_embedding(user["id"]) is not None else "not set"
        logger.info(f"  [{user['id']}] {user['username']:<12} {user['name']:<20} {user['role']:<8} face: {face}")
    return 0


def cmd_enroll(args):
    """Register a user's face from a burst of captures."""
    store = open_store()
    if store.get_user(args.user) is None:
        logger.error(f"Unknown user: {args.user}")
        return 1

    def show_progress(progress):
        logger.info(f"Capturing: {progress.samples_collected}/{progress.target} samples ({progress.percent}%)")

    controller = EnrollmentController(
        build_session(),
        identity_store=store,
        activity_log=store,
        settings=get_config().face,
        on_progress=show_progress,
        prefer_front_facing=not args.rear,
    )

    logger.info("Good light + keep face centered.")
    result = asyncio.run(controller.run(args.user))
    if result.success:
        logger.info(f"✓ {result.summary}")
        return 0
    logger.error(result.summary)
    return 1


def cmd_test(args):
    """Compare a single capture against the user's registered face."""
    store = open_store()
    verifier = build_verifier(store, build_session(), args)

    result = asyncio.run(verifier.probe(args.user))
    if result.passed:
        logger.info(f"✓ {result.summary}")
        return 0
    logger.warning(result.summary)
    return 1


def cmd_verify(args):
    """Scan the user's face and mark attendance on a match."""
    store = open_store()
    today = date.today().isoformat()

    if not args.force and store.has_record_for(args.user, today):
        answer = input("Attendance already marked today. Mark again? [y/N] ")
        if answer.strip().lower() not in ("y", "yes"):
            logger.info("Attendance not marked")
            return 0

    verifier = build_verifier(store, build_session(), args)
    logger.info("Scanning...")
    result = asyncio.run(verifier.run(args.user))

    if result.success:
        record = result.record
        location = f" at {record.lat:.5f},{record.lng:.5f}" if record.lat is not None else ""
        logger.info(f"✓ {result.summary}{location}")
        return 0
    logger.warning(result.summary)
    return 1


def cmd_attendance(args):
    """List attendance records."""
    store = open_store()
    records = store.records_for(args.user)
    for r in records:
        logger.info(f"  {r.date} {r.time}  user={r.identity_id}  similarity={r.similarity:.1%}  {r.method}")
    logger.info(f"{len(records)} record(s)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ferretto-attendance",
        description="Ferretto Edu Pro biometric attendance",
    )
    parser.add_argument("--config", type=str, default=None, help="Path to config YAML")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    p = subparsers.add_parser("users", help="List users")
    p.set_defaults(func=cmd_users)

    for name, func, help_text in (
        ("enroll", cmd_enroll, "Register a user's face"),
        ("test", cmd_test, "Single-shot face test"),
        ("verify", cmd_verify, "Scan face and mark attendance"),
    ):
        p = subparsers.add_parser(name, help=help_text)
        p.add_argument("--user", "-u", type=_identity, required=True, help="User id")
        p.add_argument("--rear", action="store_true", help="Use the rear camera")
        p.set_defaults(func=func)
        if name == "verify":
            p.add_argument("--force", action="store_true",
                           help="Do not ask when attendance was already marked today")

    p = subparsers.add_parser("attendance", help="List attendance records")
    p.add_argument("--user", "-u", type=_identity, default=None, help="Only this user")
    p.set_defaults(func=cmd_attendance)

    return parser


def main(argv=None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)
    if args.config:
        get_config().reload(Path(args.config))

    try:
        return args.func(args)
    except AttendanceError as e:
        logger.error(str(e))
        return 1
    except KeyboardInterrupt:
        logger.info("Cancelled")
        return 130


if __name__ == "__main__":
    sys.exit(main())
