import datetime as dt
from logging import Logger

from airflow.exceptions import AirflowFailException
from airflow.sdk import task, task_group
from airflow.sdk.bases.operator import chain

from datamall import settings
from datamall.collectors.exceptions import IngestionError
from datamall.collectors.updater.updater import Updater
from datamall.db.af_utils import get_postgres_engine
from datamall.sources.table_specs import get_table_spec
from datamall.sources.update_configs import DatasetUpdateConfig
from datamall.tasks.task_utils import check_ingestion_log, choose_update_mode
from datamall.tracking.checksum_store import ChecksumStore
from datamall.tracking.ingestion_tracker import IngestionTracker

DEFAULT_ARGS = {
    "retries": settings.UPDATE_RETRIES,
    "retry_delay": dt.timedelta(minutes=settings.UPDATE_RETRY_DELAY_MINUTES),
    "retry_exponential_backoff": True,
}


def run_table_updates(
    update_config: DatasetUpdateConfig, conn_id: str, task_logger: Logger, force: bool
) -> list[dict]:
    pg_engine = get_postgres_engine(conn_id=conn_id, logger=task_logger)
    checksum_store = ChecksumStore(engine=pg_engine)
    checksum_store.ensure_table()
    tracker = IngestionTracker(engine=pg_engine)
    tracker.ensure_table()

    results = []
    with pg_engine:
        for table_name in update_config.table_names:
            updater = Updater(
                get_table_spec(table_name),
                engine=pg_engine,
                checksum_store=checksum_store,
                tracker=tracker,
            )
            try:
                result = updater.update(force=force)
            except IngestionError as e:
                if not e.retryable:
                    raise AirflowFailException(str(e)) from e
                task_logger.warning("Update of %s failed, retrying: %s", table_name, e)
                raise
            task_logger.info("%s: %s", result.target, result.message)
            results.append(result.as_dict())
    return results


@task
def run_incremental_update(
    update_config: DatasetUpdateConfig, conn_id: str, task_logger: Logger
) -> list[dict]:
    return run_table_updates(update_config, conn_id, task_logger, force=False)


@task
def run_forced_update(
    update_config: DatasetUpdateConfig, conn_id: str, task_logger: Logger
) -> list[dict]:
    return run_table_updates(update_config, conn_id, task_logger, force=True)


@task_group
def update_datamall_tables(
    update_config: DatasetUpdateConfig, conn_id: str, task_logger: Logger
) -> None:
    _update_mode = choose_update_mode(update_config=update_config, task_logger=task_logger)
    _forced_update = run_forced_update(
        update_config=update_config, conn_id=conn_id, task_logger=task_logger
    )
    _incremental_update = run_incremental_update(
        update_config=update_config, conn_id=conn_id, task_logger=task_logger
    )
    _check_ingestion_log = check_ingestion_log(
        conn_id=conn_id, update_config=update_config, task_logger=task_logger
    )

    chain(_update_mode, _forced_update, _check_ingestion_log)
    chain(_update_mode, _incremental_update, _check_ingestion_log)
