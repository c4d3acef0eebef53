"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings
from typing import Dict, Optional


class Settings(BaseSettings):
    # Leonardo AI
    leonardo_api_key: str = ""
    leonardo_base_url: str = "https://cloud.leonardo.ai/api/rest/v1"
    leonardo_key_owner_id: Optional[str] = None  # load users.leonardo_api_key when key is empty
    request_timeout_seconds: float = 30.0

    # Polling
    poll_initial_delay_seconds: float = 5.0
    poll_interval_seconds: float = 5.0
    poll_max_attempts: int = 60  # 5 minutes at the default interval

    # Submission
    upload_settle_seconds: float = 5.0
    default_image_model_id: str = "ac614f96-1082-45bf-be9d-757f2d31c174"  # Leonardo Creative
    motion_model_id: Optional[str] = None
    motion_control_elements: Dict[str, str] = {}

    # Supabase
    supabase_url: str = ""
    supabase_service_role_key: str = ""
    storage_bucket: str = "cinema_files"

    # Result archiving
    archive_completed_results: bool = False
    archive_owner_id: Optional[str] = None

    log_level: str = "INFO"
    service_port: int = 8002

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
