from pydantic import BaseModel, Field


class VersionSchema(BaseModel):
    """Schema for response /version"""

    python: str = Field(title="Python", description="Python version")
    playwright: str = Field(title="Playwright", description="Playwright version")
    chromeRenderService: str | None = Field(title="Chrome Render Service", description="Service version")
    timestamp: str | None = Field(title="Build Timestamp", description="Build timestamp")
    chromium: str | None = Field(title="Chromium", description="Chromium version")


class HealthSchema(BaseModel):
    """Schema for detailed health status response"""

    status: str = Field(title="Status", description="Overall health status: healthy or unhealthy")
    version: str = Field(title="Version", description="Chrome render service version")
    chromium_reachable: bool = Field(title="Chromium Reachable", description="Whether Chromium could be connected to or launched")
    chromium_version: str | None = Field(title="Chromium Version", description="Chromium version if available")
    endpoint: str = Field(title="Endpoint", description="Configured Chromium endpoint, or 'launched per request'")
