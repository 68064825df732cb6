from logging import Logger

import pendulum
from airflow.models.taskinstance import TaskInstance
from airflow.sdk import get_current_context, task
from airflow.task.trigger_rule import TriggerRule
from croniter import croniter

from datamall.collectors.updater.updater import Updater
from datamall.db.af_utils import get_postgres_engine
from datamall.sources.update_configs import DatasetUpdateConfig
from datamall.tracking.ingestion_tracker import IngestionTracker


def get_task_group_id_prefix(task_instance: TaskInstance) -> str:
    task_id_parts = task_instance.task_id.split(".")
    if len(task_id_parts) > 1:
        return ".".join(task_id_parts[:-1]) + "."
    return ""


def is_full_update_date(full_update_cron: str, logical_date: pendulum.DateTime) -> bool:
    cron = croniter(full_update_cron, logical_date.subtract(seconds=1))
    next_hit = pendulum.instance(cron.get_next(pendulum.DateTime))
    return next_hit.date() == logical_date.date()


@task.branch()
def choose_update_mode(update_config: DatasetUpdateConfig, task_logger: Logger) -> str:
    context = get_current_context()
    tg_id_prefix = get_task_group_id_prefix(task_instance=context["ti"])
    if is_full_update_date(update_config.full_update_cron, context["logical_date"]):
        task_logger.info("Forced update for %s", update_config.dataset_id)
        return f"{tg_id_prefix}run_forced_update"
    return f"{tg_id_prefix}run_incremental_update"


@task(trigger_rule=TriggerRule.NONE_FAILED_MIN_ONE_SUCCESS)
def check_ingestion_log(
    conn_id: str, update_config: DatasetUpdateConfig, task_logger: Logger
) -> bool:
    pg_engine = get_postgres_engine(conn_id=conn_id, logger=task_logger)
    log_records = pg_engine.query(
        f"""
        select distinct on (dataset_id)
            dataset_id, status, rows_parsed, rows_inserted, high_water_mark,
            completed_at, error_message
        from {IngestionTracker.TABLE_NAME}
        where dataset_id = any(%(table_names)s)
        order by dataset_id, completed_at desc
        """,
        {"table_names": list(update_config.table_names)},
    )
    task_logger.info("Latest runs for %s:\n%s", update_config.dataset_id, log_records)
    failed = log_records.loc[log_records["status"] != "success", "dataset_id"].tolist()
    if failed:
        task_logger.warning("Last run failed for: %s", ", ".join(failed))

    tracker = IngestionTracker(engine=pg_engine)
    for table_name in update_config.table_names:
        task_logger.info(
            "Last processed checksum for %s: %s",
            table_name,
            tracker.get_high_water_mark(Updater.SOURCE_NAME, table_name),
        )
    pg_engine.close()
    return not failed
