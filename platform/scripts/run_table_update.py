"""
Run one DataMall table update outside Airflow.

    python platform/scripts/run_table_update.py cars --env-file .env
    python platform/scripts/run_table_update.py coe --force --batch-size 1000

Database credentials are read from DATAMALL_DB_* variables in the env file
(or the process environment).
"""

import argparse
import json
import logging
import sys

from datamall.collectors.exceptions import IngestionError
from datamall.collectors.updater.updater import DEFAULT_BATCH_SIZE, Updater
from datamall.db.core import DatabaseCredentials, PostgresEngine
from datamall.sources.table_specs import TABLE_SPECS_BY_NAME
from datamall.tracking.checksum_store import ChecksumStore
from datamall.tracking.ingestion_tracker import IngestionTracker

logger = logging.getLogger("run_table_update")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("table", choices=sorted(TABLE_SPECS_BY_NAME))
    parser.add_argument("--env-file", default=".env")
    parser.add_argument("--batch-size", type=int, default=DEFAULT_BATCH_SIZE)
    parser.add_argument(
        "--force",
        action="store_true",
        help="Re-diff the file even when its checksum is unchanged.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    args = parse_args(argv)
    creds = DatabaseCredentials.from_env_file(args.env_file)
    logger.info("Using %s", creds)

    with PostgresEngine(creds) as engine:
        checksum_store = ChecksumStore(engine=engine)
        checksum_store.ensure_table()
        tracker = IngestionTracker(engine=engine)
        tracker.ensure_table()
        updater = Updater(
            TABLE_SPECS_BY_NAME[args.table],
            engine=engine,
            checksum_store=checksum_store,
            tracker=tracker,
            batch_size=args.batch_size,
        )
        try:
            result = updater.update(force=args.force)
        except IngestionError as e:
            logger.error("Update failed (%s): %s", e.kind, e)
            return 1

    print(json.dumps(result.as_dict(), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
