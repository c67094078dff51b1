import argparse
import json
import os
import time
from pathlib import Path
from typing import Any, Tuple

from sqlalchemy.orm import sessionmaker

from . import __version__
from .cleanup import purge_finished_jobs
from .config import JOB_PRIORITIES, QUEUE_CREDIBILITY, QUEUE_NAMES, QUEUE_SYNC, Settings, load_settings
from .credibility import get_credibility_score
from .database import init_database, make_session_factory, session_scope
from .env import load_env
from .errors import CredscoreError, DuplicateJobError
from .events import EventLogger
from .jobs import (
    SYNC_SOURCES,
    CertificationSyncPayload,
    CredibilityPayload,
    EducationSyncPayload,
    FullSyncPayload,
)
from .logger import get_logger
from .queue import JobQueue, enqueue_sync
from .reference import get_reference_data
from .scheduler import enqueue_due_syncs, schedule_bulk_sync
from .skills import SkillGapAnalyzer, load_inventory
from .storage import (
    connect_account,
    get_source_profile,
    ingest_certification,
    ingest_education,
    list_sync_statuses,
    set_professional_profile,
)
from .worker import SyncWorkerPool


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, sort_keys=True, default=str))


def _read_json(path: str) -> Any:
    input_path = Path(path)
    if not input_path.exists():
        raise SystemExit(f"Input file not found: {input_path}")
    with input_path.open("r", encoding="utf-8") as f:
        return json.load(f)


def _services(args: argparse.Namespace) -> Tuple[Settings, sessionmaker, JobQueue]:
    settings = load_settings(Path(args.db) if args.db else None)
    get_logger(level=settings.log_level)
    engine = init_database(settings.db_path)
    sessions = make_session_factory(engine)
    return settings, sessions, JobQueue(sessions, settings)


def _job_view(job) -> dict:
    return {
        "id": job.id,
        "queue": job.queue_name,
        "type": job.job_type,
        "state": job.state,
        "priority": job.priority,
        "attempts": job.attempts,
        "max_attempts": job.max_attempts,
        "progress": job.progress,
        "last_error": job.last_error,
        "result": job.result,
        "enqueued_at": job.enqueued_at,
        "run_at": job.run_at,
        "finished_at": job.finished_at,
    }


def cmd_init_db(args: argparse.Namespace) -> None:
    settings, _, _ = _services(args)
    print(f"Database ready: {settings.db_path}")


def cmd_connect(args: argparse.Namespace) -> None:
    _, sessions, _ = _services(args)
    token = args.token or os.getenv(f"{args.source.upper()}_ACCESS_TOKEN")
    with session_scope(sessions) as session:
        outcome = connect_account(session, args.user, args.source, args.identifier, token)
    print(f"Account: {args.user}/{args.source} ({args.identifier})")
    print(f"Status: {outcome['status']}")


def cmd_enqueue(args: argparse.Namespace) -> None:
    _, _, job_queue = _services(args)
    try:
        job_id = enqueue_sync(
            job_queue,
            args.user,
            args.source,
            identifier=args.identifier,
            force_refresh=args.force,
            priority=args.priority,
            on_duplicate="reject" if args.reject_duplicates else "coalesce",
        )
    except DuplicateJobError as e:
        raise SystemExit(f"{e} (job {e.existing_job_id})")
    print(f"Job: {job_id}")


def cmd_full_sync(args: argparse.Namespace) -> None:
    _, _, job_queue = _services(args)
    sources = tuple(s.strip() for s in args.sources.split(",") if s.strip()) if args.sources else None
    payload = FullSyncPayload(user_id=args.user, sources=sources, force_refresh=args.force)
    job_id = job_queue.enqueue(QUEUE_SYNC, payload, priority=args.priority)
    print(f"Job: {job_id}")


def cmd_bulk_sync(args: argparse.Namespace) -> None:
    _, _, job_queue = _services(args)
    users = [u.strip() for u in args.users.split(",") if u.strip()]
    if not users:
        raise SystemExit("No users specified. Use --users \"user1,user2\"")
    jobs = schedule_bulk_sync(job_queue, users, args.source, priority=args.priority, force_refresh=args.force)
    for user_id, job_id in jobs.items():
        print(f"[{user_id}] {job_id}")


def cmd_schedule(args: argparse.Namespace) -> None:
    _, sessions, job_queue = _services(args)
    job_ids = enqueue_due_syncs(job_queue, sessions)
    print(f"Scheduled {len(job_ids)} due syncs")


def cmd_work(args: argparse.Namespace) -> None:
    settings, sessions, job_queue = _services(args)
    events = EventLogger(job_queue.channel)
    pool = SyncWorkerPool(job_queue, sessions, settings, queues=args.queues.split(",") if args.queues else None)
    if args.once:
        processed = pool.run_until_idle(max_jobs=args.max_jobs)
        events.drain()
        events.stop()
        print(f"Processed {processed} jobs")
        return

    events.start()
    pool.start()
    print("Workers running. Press Ctrl+C to stop.")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        print("Stopping workers...")
    finally:
        pool.stop()
        events.stop()


def cmd_status(args: argparse.Namespace) -> None:
    _, sessions, job_queue = _services(args)
    with session_scope(sessions) as session:
        rows = list_sync_statuses(session, args.user)
        if not rows:
            print(f"No sync status for {args.user}.")
            return
        print(f"Sync status for {args.user}:\n")
        for row in rows:
            profile = get_source_profile(session, args.user, row.source)
            print(f"{row.source}: {row.status}")
            if profile is not None:
                print(f"  Sub-score: {profile.subscore} (verified: {profile.verified})")
            print(f"  Last sync: {row.last_sync_at or '-'}")
            print(f"  Next sync: {row.next_sync_at or '-'}")
            if row.last_error:
                print(f"  Last error: {row.last_error}")
            if row.last_job_id:
                print(f"  Last job: {row.last_job_id}")
    active = job_queue.list_jobs(user_id=args.user, limit=args.limit)
    if active:
        print("\nRecent jobs:")
        for job in active:
            print(f"  {job.id} {job.job_type} {job.state} {job.progress}%")


def cmd_job(args: argparse.Namespace) -> None:
    _, _, job_queue = _services(args)
    job = job_queue.get_job(args.job_id)
    if job is None:
        raise SystemExit(f"Job not found: {args.job_id}")
    _print_json(_job_view(job))


def cmd_metrics(args: argparse.Namespace) -> None:
    _, _, job_queue = _services(args)
    names = [args.queue] if args.queue else list(QUEUE_NAMES)
    _print_json({name: job_queue.get_metrics(name) for name in names})


def cmd_health(args: argparse.Namespace) -> None:
    _, _, job_queue = _services(args)
    report = job_queue.check_health()
    _print_json(report)
    if not report["healthy"]:
        raise SystemExit(1)


def cmd_retry(args: argparse.Namespace) -> None:
    _, _, job_queue = _services(args)
    try:
        job = job_queue.retry(args.job_id)
    except CredscoreError as e:
        raise SystemExit(str(e))
    print(f"Job {job.id}: {job.state}")


def cmd_pause(args: argparse.Namespace) -> None:
    _, _, job_queue = _services(args)
    job_queue.pause(args.queue)
    print(f"Queue {args.queue}: paused")


def cmd_resume(args: argparse.Namespace) -> None:
    _, _, job_queue = _services(args)
    job_queue.resume(args.queue)
    print(f"Queue {args.queue}: resumed")


def _ingest_record(args: argparse.Namespace, ingest, payload_cls) -> None:
    _, sessions, job_queue = _services(args)
    data = _read_json(args.input)
    with session_scope(sessions) as session:
        outcome = ingest(session, args.user, data, get_reference_data())
    if outcome["status"] == "validation_error":
        print("Invalid:")
        for e in outcome["errors"]:
            print(f" - {e}")
        raise SystemExit(2)
    print(f"Record: {outcome['record_id']}")
    print(f"Status: {outcome['status']}")
    for w in outcome.get("warnings", []):
        print(f" ! {w}")
    job_id = job_queue.enqueue(
        QUEUE_SYNC, payload_cls(user_id=args.user, record_id=outcome["record_id"]), priority="critical"
    )
    print(f"Job: {job_id}")


def cmd_add_education(args: argparse.Namespace) -> None:
    _ingest_record(args, ingest_education, EducationSyncPayload)


def cmd_add_certification(args: argparse.Namespace) -> None:
    _ingest_record(args, ingest_certification, CertificationSyncPayload)


def cmd_set_profile(args: argparse.Namespace) -> None:
    _, sessions, job_queue = _services(args)
    with session_scope(sessions) as session:
        outcome = set_professional_profile(
            session, args.user, args.years, career_stage=args.stage,
            title=args.title, company=args.company, location=args.location,
        )
    if outcome["status"] == "validation_error":
        print("Invalid:")
        for e in outcome["errors"]:
            print(f" - {e}")
        raise SystemExit(2)
    print(f"Status: {outcome['status']}")
    job_id = job_queue.enqueue(QUEUE_CREDIBILITY, CredibilityPayload(user_id=args.user))
    print(f"Job: {job_id}")


def cmd_score(args: argparse.Namespace) -> None:
    _, sessions, _ = _services(args)
    with session_scope(sessions) as session:
        result = get_credibility_score(session, args.user, force=args.force)
    _print_json(result.to_dict())


def cmd_gaps(args: argparse.Namespace) -> None:
    try:
        skills, goals = load_inventory(_read_json(args.input))
    except (KeyError, ValueError) as e:
        raise SystemExit(f"Invalid inventory: {e}")
    _print_json(SkillGapAnalyzer().analyze(skills, goals).to_dict())


def cmd_cleanup(args: argparse.Namespace) -> None:
    settings = load_settings(Path(args.db) if args.db else None)
    before, after = purge_finished_jobs(settings.db_path, settings)
    print(f"Done. before={before} after={after} removed={before - after}")


def main():
    # Load .env if present (tokens, CREDSCORE_DB_PATH, etc.)
    load_env()
    parser = argparse.ArgumentParser(prog="credscore", description="Credibility scoring and profile sync")
    parser.add_argument("--version", action="store_true", help="Show version")
    parser.add_argument("--db", help="Path to SQLite database (default: CREDSCORE_DB_PATH or data/credscore.db)")

    subparsers = parser.add_subparsers(dest="command")
    ini = subparsers.add_parser("init-db", help="Create database tables")
    ini.set_defaults(func=cmd_init_db)

    con = subparsers.add_parser("connect", help="Store a platform account for a user")
    con.add_argument("--user", required=True, help="User id")
    con.add_argument("--source", required=True, choices=["github", "instagram", "twitter", "youtube"])
    con.add_argument("--identifier", required=True, help="Username or channel id on the platform")
    con.add_argument("--token", help="Access token (or set <SOURCE>_ACCESS_TOKEN)")
    con.set_defaults(func=cmd_connect)

    enq = subparsers.add_parser("enqueue", help="Enqueue a single-source sync")
    enq.add_argument("--user", required=True, help="User id")
    enq.add_argument("--source", required=True, choices=list(SYNC_SOURCES))
    enq.add_argument("--identifier", help="Override the connected account identifier")
    enq.add_argument("--force", action="store_true", help="Sync even if the profile is fresh")
    enq.add_argument("--priority", default="critical", choices=list(JOB_PRIORITIES))
    enq.add_argument("--reject-duplicates", action="store_true", help="Fail instead of joining an in-flight job")
    enq.set_defaults(func=cmd_enqueue)

    ful = subparsers.add_parser("full-sync", help="Enqueue a sync of every source of a user")
    ful.add_argument("--user", required=True, help="User id")
    ful.add_argument("--sources", help="Comma-separated subset of sources")
    ful.add_argument("--force", action="store_true", help="Sync even if profiles are fresh")
    ful.add_argument("--priority", default="critical", choices=list(JOB_PRIORITIES))
    ful.set_defaults(func=cmd_full_sync)

    blk = subparsers.add_parser("bulk-sync", help="Enqueue one source for many users")
    blk.add_argument("--users", required=True, help="Comma-separated user ids")
    blk.add_argument("--source", required=True, choices=list(SYNC_SOURCES))
    blk.add_argument("--force", action="store_true")
    blk.add_argument("--priority", default="low", choices=list(JOB_PRIORITIES))
    blk.set_defaults(func=cmd_bulk_sync)

    sch = subparsers.add_parser("schedule", help="Enqueue syncs for every profile that is due")
    sch.set_defaults(func=cmd_schedule)

    wrk = subparsers.add_parser("work", help="Run sync workers")
    wrk.add_argument("--once", action="store_true", help="Drain due jobs and exit")
    wrk.add_argument("--max-jobs", type=int, help="With --once: stop after this many jobs")
    wrk.add_argument("--queues", help="Comma-separated queues to serve (default: all)")
    wrk.set_defaults(func=cmd_work)

    sts = subparsers.add_parser("status", help="Show per-source sync status of a user")
    sts.add_argument("--user", required=True, help="User id")
    sts.add_argument("--limit", type=int, default=10, help="Recent jobs to list")
    sts.set_defaults(func=cmd_status)

    job = subparsers.add_parser("job", help="Show a job")
    job.add_argument("job_id")
    job.set_defaults(func=cmd_job)

    met = subparsers.add_parser("metrics", help="Job counts per queue")
    met.add_argument("--queue", choices=list(QUEUE_NAMES))
    met.set_defaults(func=cmd_metrics)

    hlt = subparsers.add_parser("health", help="Queue health report (exit 1 when unhealthy)")
    hlt.set_defaults(func=cmd_health)

    rty = subparsers.add_parser("retry", help="Retry a failed job")
    rty.add_argument("job_id")
    rty.set_defaults(func=cmd_retry)

    pau = subparsers.add_parser("pause", help="Pause a queue")
    pau.add_argument("queue", choices=list(QUEUE_NAMES))
    pau.set_defaults(func=cmd_pause)

    res = subparsers.add_parser("resume", help="Resume a queue")
    res.add_argument("queue", choices=list(QUEUE_NAMES))
    res.set_defaults(func=cmd_resume)

    edu = subparsers.add_parser("add-education", help="Validate and store an education record JSON")
    edu.add_argument("--user", required=True, help="User id")
    edu.add_argument("--input", required=True, help="Path to education record JSON")
    edu.set_defaults(func=cmd_add_education)

    crt = subparsers.add_parser("add-certification", help="Validate and store a certificate JSON")
    crt.add_argument("--user", required=True, help="User id")
    crt.add_argument("--input", required=True, help="Path to certificate JSON")
    crt.set_defaults(func=cmd_add_certification)

    prf = subparsers.add_parser("set-profile", help="Set professional experience of a user")
    prf.add_argument("--user", required=True, help="User id")
    prf.add_argument("--years", type=float, required=True, help="Years of experience")
    prf.add_argument("--stage", help="Career stage (student, entry, mid, senior, lead, executive)")
    prf.add_argument("--title")
    prf.add_argument("--company")
    prf.add_argument("--location")
    prf.set_defaults(func=cmd_set_profile)

    scr = subparsers.add_parser("score", help="Show the credibility score of a user")
    scr.add_argument("--user", required=True, help="User id")
    scr.add_argument("--force", action="store_true", help="Recalculate instead of using the stored score")
    scr.set_defaults(func=cmd_score)

    gap = subparsers.add_parser("gaps", help="Skill gap analysis from an inventory JSON")
    gap.add_argument("--input", required=True, help="JSON with \"skills\" and \"goals\"")
    gap.set_defaults(func=cmd_gaps)

    cln = subparsers.add_parser("cleanup", help="Apply job retention policies")
    cln.set_defaults(func=cmd_cleanup)

    args = parser.parse_args()

    if args.version:
        print(__version__)
        return

    if hasattr(args, "func"):
        args.func(args)
        return

    parser.print_help()


if __name__ == "__main__":
    main()
