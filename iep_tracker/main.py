import argparse
import logging
import sys

from iep_tracker.core.app import TrackerApp
from iep_tracker.core.auth import DriveAuth
from iep_tracker.core.config import Config
from iep_tracker.core.report import overall_success_rate, render_student_report, sort_by_last_name, student_status_counts
from iep_tracker.storage.errors import StorageError


def setup_basic_logging():
    """Setup basic stdout logging before config is loaded"""
    root_logger = logging.getLogger()
    if not root_logger.handlers:  # Only add handler if none exists
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
        ))
        root_logger.addHandler(handler)
        root_logger.setLevel(logging.DEBUG)
        logging.debug("Basic logging initialized")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="iep-tracker", description="IEP goal and assessment tracker")
    parser.add_argument('--config', help='Path to config file (default: ~/.iep_tracker/config.yaml)')
    parser.add_argument('--token', help='Google OAuth access token (overrides the cached login)')

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("serve", help="Run the HTTP API")
    sub.add_parser("list", help="List students with due and overdue goal counts")

    report = sub.add_parser("report", help="Print a progress report")
    report.add_argument("student_id", nargs="?", help="Student id (all students when omitted)")

    export = sub.add_parser("export", help="Write an export file (and a Drive copy when signed in)")
    export.add_argument("--filename", help="Export file name")

    import_cmd = sub.add_parser("import", help="Replace all students with the contents of an export file")
    import_cmd.add_argument("path")

    sub.add_parser("backups", help="List local automatic backups")
    restore = sub.add_parser("restore", help="Restore a local backup")
    restore.add_argument("key")

    sub.add_parser("remote-backup", help="Create a dated backup file on Google Drive")

    clear = sub.add_parser("clear", help="Delete all local and Google Drive data")
    clear.add_argument("--yes", action="store_true", help="Do not ask for confirmation")

    sub.add_parser("login", help="Sign in to Google Drive")
    sub.add_parser("logout", help="Forget the cached Google token")
    sub.add_parser("info", help="Show storage usage")
    return parser


def _drive_auth(config_path):
    drive_config = Config(config_path=config_path).section("google_drive")
    return DriveAuth(drive_config.get("client_secret_path"), drive_config["token_path"])


def _print_students(app: TrackerApp) -> None:
    students = sort_by_last_name(app.snapshot())
    if not students:
        print("No students")
        return
    for student in students:
        counts = student_status_counts(student)
        print(
            f"{student.student_id:<12} {student.student_name:<30} goals={len(student.goals)} "
            f"due={counts['due_today']} overdue={counts['overdue']} "
            f"success={overall_success_rate(student):.0f}%"
        )


def run_command(app: TrackerApp, args: argparse.Namespace) -> int:
    command = args.command

    if command == "serve":
        from iep_tracker.api.server import run_api_server
        run_api_server(app)
    elif command == "list":
        _print_students(app)
    elif command == "report":
        students = [app.get_student(args.student_id)] if args.student_id else sort_by_last_name(app.snapshot())
        print("\n".join(render_student_report(s) for s in students), end="")
    elif command == "export":
        result = app.export(args.filename)
        print(f"Exported to {result.path}")
        if result.remote.attempted:
            print("Google Drive copy: " + ("saved" if result.remote.ok else f"failed ({result.remote.error})"))
    elif command == "import":
        students = app.import_students(args.path)
        print(f"Imported {len(students)} student(s)")
    elif command == "backups":
        backups = app.list_backups()
        if not backups:
            print("No backups")
        for backup in backups:
            when = backup.date.isoformat() if backup.date else "unknown date"
            print(f"{backup.key}  {when}  {backup.student_count} student(s)")
    elif command == "restore":
        students = app.restore_backup(args.key)
        print(f"Restored {len(students)} student(s) from {args.key}")
    elif command == "remote-backup":
        file_id = app.create_remote_backup()
        print(f"Google Drive backup created: {file_id}")
    elif command == "clear":
        if not args.yes:
            answer = input("Delete ALL students, goals and backups (local and Google Drive)? [y/N] ")
            if answer.strip().lower() != "y":
                print("Cancelled")
                return 1
        result = app.clear_all()
        print("Local data cleared" + (", Google Drive data cleared" if result.ok else ""))
    elif command == "info":
        info = app.storage_info()
        for key, value in info.items():
            print(f"{key}: {value}")
    return 0


def main(argv=None) -> int:
    setup_basic_logging()
    args = build_parser().parse_args(argv)

    if args.command == "login":
        token = _drive_auth(args.config).login()
        print("Signed in to Google Drive" if token else "Google sign-in failed")
        return 0 if token else 1
    if args.command == "logout":
        removed = _drive_auth(args.config).logout()
        print("Signed out" if removed else "Not signed in")
        return 0

    app = TrackerApp.from_config(config_path=args.config)
    if args.token:
        app.set_access_token(args.token)
    try:
        app.load()
        return run_command(app, args)
    except (StorageError, LookupError, ValueError) as e:
        logging.error(str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        app.shutdown()


if __name__ == "__main__":
    sys.exit(main())
