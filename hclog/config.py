"""
Runtime configuration for HCLog.

Every setting is a module-level constant with a sensible default that can be
overridden through an environment variable, so the Streamlit app, the tests,
and any one-off scripts all read the same values.
"""
# hclog/config.py

import os
from pathlib import Path

# Directory holding one encrypted file per collection slot.
DATA_DIR = Path(os.environ.get("HCLOG_DATA_DIR", "data"))

# Fernet key used to encrypt the data files at rest.
KEY_FILE = Path(os.environ.get("HCLOG_KEY_FILE", "secret.key"))

LOG_LEVEL = os.environ.get("HCLOG_LOG_LEVEL", "INFO").upper()

# Storage slot names, one encrypted file each under DATA_DIR.
USERS_KEY = "clinicalHistoryUsers"
RECORDS_KEY = "clinicalHistoryRecords"
DETAILS_KEY = "clinicalHistoryDetails"
REQUESTS_KEY = "clinicalHistoryRequests"
TRANSFERS_KEY = "clinicalHistoryTransfers"
NOTIFICATIONS_KEY = "clinicalHistoryNotifications"

# The account seeded on first run. It can never be deleted.
DEFAULT_ADMIN_USERNAME = "admin"
DEFAULT_ADMIN_PASSWORD = "admin"

HOSPITAL_NAME = "Hospital de Quillabamba"
APP_TITLE = "Control de Historias Clínicas"
EXPORT_BASENAME = "ControlHistoriasClinicas_HospitalQuillabamba"
