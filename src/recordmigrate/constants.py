"""Constants used throughout the recordmigrate codebase.

Centralizes type names, file names, column names and numeric defaults shared
by the exporter, importer and folder builder.
"""

# Time-based constants (seconds)
SECONDS_PER_MINUTE = 60
SECONDS_PER_HOUR = 3600

# Session pool
DEFAULT_ACQUIRE_TIMEOUT_SECONDS = 30.0
MAX_POOL_SIZE = 64

# Retry constants
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_SECONDS = 1
DEFAULT_RETRY_MAX_WAIT_SECONDS = 10

# Export defaults
DEFAULT_EXPORT_THREADS = 10
DEFAULT_DRAIN_TIMEOUT_SECONDS = 24 * SECONDS_PER_HOUR
DEFAULT_EXPORT_DIR = "DigidakMetadata_Export"

# Import defaults
DEFAULT_CONTENT_TIMEOUT_SECONDS = 5 * SECONDS_PER_MINUTE
MAX_CONTENT_PATH_BYTES = 255  # Longer local paths are staged through a short temp copy
MAX_CLEANABLE_EXTENSION_LENGTH = 6  # Including the dot
DEFAULT_CONTENT_EXTENSION = ".docx"
UNKNOWN_FORMAT = "unknown"

# Repository type names
SOURCE_FOLDER_TYPE = "edmapp_letter_folder"
SOURCE_MOVEMENT_TYPE = "edmapp_letter_movement_reg"
SOURCE_DOCUMENT_TYPE = "edmapp_letter_document"
TARGET_FOLDER_TYPE = "cms_digidak_folder"
TARGET_MOVEMENT_TYPE = "cms_digidak_movement_re"
TARGET_DOCUMENT_TYPE = "cms_digidak_document"
BASE_FOLDER_TYPE = "dm_folder"
CABINET_TYPE = "dm_cabinet"
ACL_TYPE = "dm_acl"
USER_TYPE = "dm_user"
GROUP_TYPE = "dm_group"
FORMAT_TYPE = "dm_format"

# Folder hierarchy
DEFAULT_CABINET_NAME = "Digidak Legacy"
DEFAULT_GROUP_FOLDER = "default_group"

# Per-record files
MOVEMENT_REGISTER_CSV = "movement_register.csv"
MOVEMENT_REGISTER_UPDATED_CSV = "movement_register_updated.csv"
DOCUMENT_METADATA_CSV = "document_metadata.csv"
REPEATING_FILE_PREFIX = "repeating_"

# Ledger columns and statuses
EXPORT_STATUS_COLUMN = "export_status"
EXPORT_ERROR_COLUMN = "error_message"
IMPORT_STATUS_COLUMN = "import_status"
IMPORT_ERROR_COLUMN = "import_error"
STATUS_SUCCESS = "SUCCESS"
STATUS_FAILED = "FAILED"
STATUS_CLEANUP_FAILED = "FAILED - Cleanup Failed"
STATUS_EXPORT_TIMEOUT = "FAILED - Export Timeout"
STATUS_SKIPPED = "SKIPPED_ALREADY_SUCCESS"

# ACL constants
PERMIT_READ = 3
ACL_NAME_PREFIX = "acl_digidak_"
HO_ACL_NAME = "ecm_legacy_digidak_ho"
HO_GROUP_PREFIX = "ecm_ho_"
REGION_GROUP_PREFIX = "ecm_legacy_digidak_"

# User lookup
DEFAULT_USER_BATCH_SIZE = 50

# Preview limits for CLI output
ERROR_PREVIEW_LIMIT = 10
PROGRESS_LOGGING_INTERVAL = 100
