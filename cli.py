import argparse
import datetime
import json
import logging
import random
import shutil
import time

import requests

from models import ROLE_ADMIN, DashboardScope, dashboard_to_dict
from rest_api import AthleteTrackAPI
from config import DEFAULT_DB_PATH

logger = logging.getLogger(__name__)

DEMO_EXERCISES = [
    ("Running", 11.0),
    ("Cycling", 8.0),
    ("Swimming", 10.0),
    ("Walking", 4.0),
    ("Yoga", 3.0),
]
DEMO_ATHLETES = [
    ("Demo Athlete", "athlete@example.com"),
    ("Second Athlete", "second@example.com"),
]
DEMO_NOTES = [
    "Great session!",
    "Felt tired but pushed through",
    "Focused on form",
    "Early morning session",
    None,
]


def backup_db(db_path: str, backup_path: str) -> None:
    shutil.copy(db_path, backup_path)


def restore_db(backup_path: str, db_path: str) -> None:
    shutil.copy(backup_path, db_path)


def demo_data(
    db_path: str,
    yaml_path: str,
    days: int = 14,
    now: datetime.datetime | None = None,
    seed: int = 42,
) -> bool:
    """Populate an empty database with a demo catalog, users and workouts."""
    api = AthleteTrackAPI(db_path=db_path, yaml_path=yaml_path)
    if api.workouts.fetch_history():
        print("Database already contains workouts")
        return False
    now = now or datetime.datetime.now(api.timezone())
    rng = random.Random(seed)
    per_day = api.settings.get_int("demo_workouts_per_athlete", 2)

    catalog = {e["name"]: e["id"] for e in api.exercises.fetch_all_exercises(True)}
    for name, rate in DEMO_EXERCISES:
        if name not in catalog:
            catalog[name] = api.exercises.add(name, rate)
    exercise_ids = [
        e["id"] for e in api.exercises.fetch_all_exercises(include_deleted=False)
    ]

    existing = {u["email"]: u["id"] for u in api.users.fetch_all_users()}
    if "admin@example.com" not in existing:
        api.users.create("Admin", "admin@example.com", ROLE_ADMIN)
    athlete_ids = []
    for name, email in DEMO_ATHLETES:
        uid = existing.get(email)
        if uid is None:
            uid = api.users.create(name, email, created_at=now - datetime.timedelta(days=days))
        athlete_ids.append(uid)

    count = 0
    for offset in range(days):
        day = now - datetime.timedelta(days=offset)
        for athlete_id in athlete_ids:
            for exercise_id in rng.sample(exercise_ids, min(per_day, len(exercise_ids))):
                occurred = day.replace(hour=rng.randint(6, 20), minute=rng.choice([0, 15, 30, 45]))
                if occurred > now:
                    occurred = now
                api.workouts.create(
                    athlete_id,
                    exercise_id,
                    rng.randint(15, 90),
                    occurred,
                    rng.choice(DEMO_NOTES),
                )
                count += 1
    logger.info("inserted %d demo workouts", count)
    print(f"Demo data inserted ({count} workouts)")
    return True


def print_dashboard(
    db_path: str,
    yaml_path: str,
    athlete_id: int | None = None,
    now: str | None = None,
) -> dict:
    api = AthleteTrackAPI(db_path=db_path, yaml_path=yaml_path)
    scope = DashboardScope.admin() if athlete_id is None else DashboardScope.athlete(athlete_id)
    data = dashboard_to_dict(api.statistics.dashboard(scope, api.reference_time(now)))
    print(json.dumps(data, indent=2))
    return data


def benchmark(url: str, runs: int = 10) -> None:
    times: list[float] = []
    for _ in range(runs):
        t0 = time.time()
        requests.get(f"{url}/health", timeout=5)
        times.append(time.time() - t0)
    avg = sum(times) / len(times)
    print(f"Average /health response time over {runs} runs: {avg:.4f}s")


def main() -> None:
    parser = argparse.ArgumentParser(description="Utility commands")
    parser.add_argument("--log-level", default="WARNING")
    sub = parser.add_subparsers(dest="cmd", required=True)

    bkp = sub.add_parser("backup")
    bkp.add_argument("--db", default=DEFAULT_DB_PATH)
    bkp.add_argument("--out", default="backup.db")

    rst = sub.add_parser("restore")
    rst.add_argument("--in", dest="src", default="backup.db")
    rst.add_argument("--db", default=DEFAULT_DB_PATH)

    demo = sub.add_parser("demo")
    demo.add_argument("--db", default=DEFAULT_DB_PATH)
    demo.add_argument("--yaml", default="settings.yaml")
    demo.add_argument("--days", type=int, default=14)

    dash = sub.add_parser("dashboard")
    dash.add_argument("--db", default=DEFAULT_DB_PATH)
    dash.add_argument("--yaml", default="settings.yaml")
    dash.add_argument("--athlete", type=int, default=None, help="athlete id; omit for the admin view")
    dash.add_argument("--now", default=None, help="ISO 8601 reference time")

    bench = sub.add_parser("benchmark")
    bench.add_argument("--url", default="http://localhost:8000")
    bench.add_argument("--runs", type=int, default=10)

    args = parser.parse_args()
    logging.basicConfig(level=args.log_level.upper())

    if args.cmd == "backup":
        backup_db(args.db, args.out)
    elif args.cmd == "restore":
        restore_db(args.src, args.db)
    elif args.cmd == "demo":
        demo_data(args.db, args.yaml, args.days)
    elif args.cmd == "dashboard":
        print_dashboard(args.db, args.yaml, args.athlete, args.now)
    elif args.cmd == "benchmark":
        benchmark(args.url, args.runs)


if __name__ == "__main__":
    main()
