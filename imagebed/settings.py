from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Service
    service_port: int = 17020
    service_host: str = "0.0.0.0"  # nosec B104

    # CORS
    cors_origins: str = "http://localhost:3000"

    # App metadata
    app_name: str = "imagebed-upload-service"
    app_version: str = "0.1.0"

    # Image host API
    image_api_base_url: str = "http://localhost:8080/api/v1"
    image_api_token: str | None = None
    image_api_timeout_seconds: float = 10.0
    upload_timeout_seconds: float = 30.0

    # Upload defaults (lowest-priority config layer)
    upload_max_size_mb: float = 10
    upload_allowed_formats: str = "image/jpeg,image/jpg,image/png,image/webp,image/gif"
    upload_batch_limit: int = 15
    upload_batch_limit_ceiling: int = 15
    upload_compression_quality: int = 85
    upload_concurrency: int = 3

    # Previews
    preview_dir: str = "./data/previews"
    preview_max_bytes: int = 5 * 1024 * 1024

    # Gallery refresh hook (empty = disabled)
    gallery_refresh_url: str = ""

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def upload_allowed_format_list(self) -> list[str]:
        return [f.strip() for f in self.upload_allowed_formats.split(",") if f.strip()]


settings = Settings()
