# apps/api/main.py
from apps.api.app_factory import create_app
from apps.common.log import configure_logging
from apps.common.settings import load_settings
from services.ingestion.staging import FileStager, ThumbnailPreviewer
from services.ingestion.storage import LocalBlobStore, LocalRecordStore
from services.submission.coordinator import SubmissionCoordinator

SETTINGS = load_settings()
configure_logging(SETTINGS.log_level)

app = create_app(
    coordinator=SubmissionCoordinator(
        blob_store=LocalBlobStore(str(SETTINGS.blob_root), public_base_url=SETTINGS.public_base_url),
        record_store=LocalRecordStore(str(SETTINGS.record_root)),
    ),
    stager=FileStager(ThumbnailPreviewer(max_edge=SETTINGS.preview_max_edge)),
)
