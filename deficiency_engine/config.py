# deficiency_engine/config.py
from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ---- App ----
    app_env: str = "local"  # local|dev|prod

    # ---- Stores ----
    # Operational: hot keyed store (active + archive paths, properties, inspections)
    # Analytic: document store queried by predicates
    operational_database_url: str = "sqlite:///./deficiency_operational.db"
    analytic_database_url: str = "sqlite:///./deficiency_analytic.db"

    # ---- Celery ----
    celery_broker_url: str | None = None
    celery_result_backend: str | None = None
    task_max_retries: int = 3
    task_retry_base_seconds: int = 5
    task_retry_max_seconds: int = 120

    # ---- Periodic tick / publishing ----
    overdue_sweep_interval_seconds: int = 3600
    status_update_topic: str = "deficient-item-status-update"

    # ---- Ticket board (Trello-style REST) ----
    ticket_board_base_url: str = "https://api.trello.com/1"
    ticket_board_api_key: str | None = None
    ticket_board_auth_token: str | None = None
    ticket_board_timeout_seconds: float = 20.0

    # ---- Deficient items ----
    # mainInputType (lower-cased) -> deficient? per mainInputSelection index
    di_eligibility_matrix: dict[str, list[bool]] = {
        "twoactions_checkmarkx": [False, True],
        "twoactions_thumbs": [False, True],
        "threeactions_checkmarkexclamationx": [False, True, True],
        "threeactions_abc": [False, True, True],
        "fiveactions_onetofive": [True, True, True, False, False],
        "oneaction_notes": [False],
    }
    di_all_states: list[str] = [
        "requires-action",
        "go-back",
        "pending",
        "requires-progress-update",
        "overdue",
        "deferred",
        "incomplete",
        "completed",
        "closed",
    ]
    di_required_action_states: list[str] = [
        "requires-action",
        "go-back",
        "requires-progress-update",
        "overdue",
    ]
    di_follow_up_action_states: list[str] = ["completed", "incomplete"]
    di_overdue_eligible_states: list[str] = ["pending", "requires-progress-update"]
    di_excluded_num_of_deficient_items_states: list[str] = ["closed"]

    # DI fields mirroring inspection item state (never DI-owned workflow fields)
    di_proxy_attrs: list[str] = [
        "itemTitle",
        "itemInspectorNotes",
        "itemAdminEdits",
        "itemPhotosData",
        "hasItemPhotoData",
        "itemMainInputType",
        "itemMainInputSelection",
        "itemScore",
        "sectionTitle",
        "sectionSubtitle",
        "sectionType",
    ]

    di_progress_update_min_days: int = 5
    # When set, pending -> requires-progress-update also needs DI.willRequireProgressNote
    di_progress_update_requires_note_flag: bool = False

    def model_post_init(self, __context) -> None:
        known = set(self.di_all_states)
        for name in (
            "di_required_action_states",
            "di_follow_up_action_states",
            "di_overdue_eligible_states",
            "di_excluded_num_of_deficient_items_states",
        ):
            unknown = [s for s in getattr(self, name) if s not in known]
            if unknown:
                raise ValueError(f"CONFIG: {name} has unknown states: {unknown}")

        if "state" in self.di_proxy_attrs:
            raise ValueError("CONFIG: di_proxy_attrs may not include DI-owned 'state'")

        if self.di_progress_update_min_days < 0:
            raise ValueError("CONFIG: di_progress_update_min_days must be >= 0")

        env = (self.app_env or "local").strip().lower()
        if env in ("prod", "production"):
            if self.operational_database_url == self.analytic_database_url:
                raise ValueError("CONFIG: operational and analytic stores must differ in prod")

    @property
    def di_progress_update_min_seconds(self) -> int:
        return int(self.di_progress_update_min_days) * 24 * 60 * 60


settings = Settings()
