"""CLI helpers to audit, repair and sweep membership state."""

from __future__ import annotations

import argparse
import logging
import uuid

from scripts._path import add_root

add_root()

from core.env_utils import load_dotenv_if_available  # noqa: E402

load_dotenv_if_available()

from database import session_scope  # noqa: E402
from services.membership_diagnostics import MembershipDiagnosis, audit_users, diagnose  # noqa: E402
from services.membership_errors import MembershipError  # noqa: E402
from services.membership_repair import repair  # noqa: E402
from services.membership_sweeper import sweep_expired  # noqa: E402

logger = logging.getLogger(__name__)


def _parse_user_id(value: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid user id '{value}'.") from exc


def _format_diagnosis(diagnosis: MembershipDiagnosis) -> str:
    return (
        f"{diagnosis.user.id} | pointer={diagnosis.user.active_membership_id or '-'} "
        f"| active={len(diagnosis.active_records)} | records={len(diagnosis.records)} "
        f"| issues={','.join(diagnosis.issues) or '-'}"
    )


def _handle_audit(session, args) -> int:
    failures = 0
    found = 0
    for diagnosis in audit_users(session, limit=args.limit):
        found += 1
        print(_format_diagnosis(diagnosis))
        if not args.fix:
            continue
        try:
            result = repair(session, diagnosis.user.id)
        except MembershipError as exc:
            failures += 1
            logger.error("Repair failed for user %s at step=%s: %s", diagnosis.user.id, exc.step, exc.message)
            continue
        print(f"  -> repaired via {result.path}: membership={result.membership.id} deactivated={result.deactivated_count}")
    if not found:
        print("No membership inconsistencies found.")
    return 1 if failures else 0


def _handle_show(session, args) -> int:
    diagnosis = diagnose(session, args.user_id)
    print(_format_diagnosis(diagnosis))
    for record in diagnosis.records:
        print(f"  {record.id} | {record.state:<8} | {record.starts_at} -> {record.ends_at} | type={record.membership_type_id}")
    return 0


def _handle_repair(session, args) -> int:
    result = repair(session, args.user_id)
    print(
        f"User {args.user_id} repaired via {result.path}: membership={result.membership.id} "
        f"deactivated={result.deactivated_count}"
    )
    return 0


def _handle_sweep(session) -> int:
    result = sweep_expired(session)
    payload = result.to_payload()
    print(
        f"expired={payload['expiredCount']} affected={payload['affectedUsers']} "
        f"repointed={payload['repointedUsers']} failed={len(payload['failedUserIds'])}"
    )
    for user_id in payload["failedUserIds"]:
        print(f"  needs repair: {user_id}")
    return 1 if payload["failedUserIds"] else 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Audit and repair user membership state.")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO).")

    subparsers = parser.add_subparsers(dest="command", required=True)

    audit_parser = subparsers.add_parser("audit", help="List users whose membership state is inconsistent.")
    audit_parser.add_argument("--fix", action="store_true", help="Run repair for every inconsistent user.")
    audit_parser.add_argument("--limit", type=int, default=None, help="Maximum users to scan.")

    show_parser = subparsers.add_parser("show", help="Show one user's membership records and issues.")
    show_parser.add_argument("user_id", type=_parse_user_id, help="User UUID.")

    repair_parser = subparsers.add_parser("repair", help="Repair one user's membership state.")
    repair_parser.add_argument("user_id", type=_parse_user_id, help="User UUID.")

    subparsers.add_parser("sweep", help="Run the expiry sweeper once.")

    args = parser.parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    try:
        with session_scope() as session:
            if args.command == "audit":
                return _handle_audit(session, args)
            if args.command == "show":
                return _handle_show(session, args)
            if args.command == "repair":
                return _handle_repair(session, args)
            if args.command == "sweep":
                return _handle_sweep(session)
            parser.error(f"Unknown command {args.command}")
    except MembershipError as exc:
        print(f"{exc.code}: {exc.message}")
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
