import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
BACKEND = ROOT / "backend"
os.chdir(BACKEND)
if str(BACKEND) not in sys.path:
    sys.path.insert(0, str(BACKEND))

from course_planner.db import Base, SessionLocal, engine, ensure_runtime_migrations  # noqa: E402
from course_planner.requirements import check_migration_needed, migrate_requirements_schema  # noqa: E402


def main() -> None:
    parser = argparse.ArgumentParser(description="Convert legacy course_code requirements to course_options.")
    parser.add_argument("--check", action="store_true", help="only report whether a migration is needed")
    args = parser.parse_args()

    Base.metadata.create_all(engine)
    ensure_runtime_migrations()
    with SessionLocal() as db:
        if args.check:
            print("migration needed" if check_migration_needed(db) else "up to date")
            return
        summary = migrate_requirements_schema(db)
    print(f"migrated={summary['migrated']}")


if __name__ == "__main__":
    main()
