from __future__ import annotations

import os
import tempfile
from pathlib import Path

LTA_DATAMALL_BASE_URL = os.getenv(
    "LTA_DATAMALL_BASE_URL",
    "https://datamall.lta.gov.sg/content/dam/datamall/datasets/Facts_Figures",
).rstrip("/")

DOWNLOAD_DIR = Path(
    os.getenv("DATAMALL_DOWNLOAD_DIR", Path(tempfile.gettempdir()) / "datamall")
)

DEFAULT_BATCH_SIZE = int(os.getenv("DATAMALL_BATCH_SIZE", "500"))

CONN_ID = os.getenv("DATAMALL_CONN_ID", "gis_dwh_db")
TARGET_SCHEMA = os.getenv("DATAMALL_TARGET_SCHEMA", "raw_data")

# Airflow task retries for transient failures (5xx, 429, timeouts, dropped connections).
UPDATE_RETRIES = int(os.getenv("DATAMALL_UPDATE_RETRIES", "3"))
UPDATE_RETRY_DELAY_MINUTES = int(os.getenv("DATAMALL_UPDATE_RETRY_DELAY_MINUTES", "5"))
