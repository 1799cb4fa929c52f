from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str
    version: str
    uploading: bool
    in_flight: int


class VersionResponse(BaseModel):
    name: str
    version: str
    git_sha: str
    build_time: str
