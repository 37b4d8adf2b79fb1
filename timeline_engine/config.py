from datetime import date
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="TIMELINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Timezone ---
    HOME_TZ: str = "UTC"  # Fallback for any zone that fails to resolve

    # --- Drag grid ---
    SNAP_MINUTES: int = 15
    MIN_DURATION_MINUTES: int = 15

    # --- Pointer / touch ---
    TOUCH_HOLD_MS: int = 200
    TOUCH_MOVE_THRESHOLD_PX: float = 10.0
    DRAG_THRESHOLD_PX: float = 5.0  # Movement below this is a click, not a drag
    CLICK_GUARD_MS: int = 150

    # --- Detach phase (lift a card off the timeline) ---
    DETACH_MOBILE_BREAKPOINT_PX: int = 768
    DETACH_MIN_MOBILE_PX: float = 15.0
    DETACH_MIN_DESKTOP_PX: float = 40.0
    DETACH_VIEWPORT_FRACTION: float = 0.04

    # --- Magnets ---
    MAGNET_THRESHOLD_MINUTES: int = 15
    SNAP_RELEASE_THRESHOLD_MINUTES: int = 20

    # --- Gaps & snapping ---
    CONTIGUOUS_GAP_MINUTES: int = 5
    TRANSPORT_GAP_MINUTES: int = 120
    SPLIT_ADD_GAP_MINUTES: int = 360
    AUTO_SNAP_THRESHOLD_MINUTES: int = 30
    CENTERED_SNAP_MAX_MINUTES: int = 90
    TRANSPORT_ROUND_MINUTES: int = 5
    DEFAULT_TRANSPORT_MODE: str = "transit"

    # --- Blocks ---
    BLOCK_GAP_TOLERANCE_MINUTES: int = 2

    # --- Undated trips ---
    UNDATED_REFERENCE_DATE: date = date(2099, 1, 1)
    DEFAULT_UNDATED_DAYS: int = 3

    # --- Routing collaborator ---
    ROUTING_URL: Optional[str] = None
    ROUTING_API_KEY: Optional[str] = None
    ROUTING_TIMEOUT_S: float = 30.0

    # --- Persistence ---
    DATABASE_URL: str = "sqlite:///timeline_engine.db"

    @property
    def min_duration_hours(self) -> float:
        return self.MIN_DURATION_MINUTES / 60


# Instantiate a single settings object for the whole package
settings = Settings()
