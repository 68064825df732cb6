import datetime as dt
import logging

from airflow.sdk import dag
from datamall.settings import CONN_ID
from datamall.sources.update_configs import CAR_POPULATION_UPDATE_CONFIG as UPDATE_CONFIG
from datamall.tasks.updater_tasks import DEFAULT_ARGS, update_datamall_tables

task_logger = logging.getLogger("airflow.task")


@dag(
    schedule=UPDATE_CONFIG.update_cron,
    start_date=dt.datetime(2024, 1, 1),
    catchup=False,
    max_active_runs=1,
    default_args=DEFAULT_ARGS,
    tags=["lta_datamall", "population"],
)
def update_lta_car_population():
    update_datamall_tables(
        update_config=UPDATE_CONFIG,
        conn_id=CONN_ID,
        task_logger=task_logger,
    )


update_lta_car_population()
