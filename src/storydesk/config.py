from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any

import yaml


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class PathsConfig:
    data_dir: str
    state_db: str


@dataclass(frozen=True)
class IntakeConfig:
    quality_threshold: float
    relevance_threshold: float
    review_margin: float
    duplicate_window_days: int
    title_similarity: float


@dataclass(frozen=True)
class HealthCutoffs:
    recent_activity_days: int = 7
    idle_max_days: int = 30
    productive_min_success_rate: float = 80
    productive_min_articles: int = 5
    filtered_min_success_rate: float = 70
    filtered_max_articles: int = 3
    active_min_success_rate: float = 50
    active_min_articles: int = 3
    technical_issues_below_success_rate: float = 50
    reconnecting_error_success_rate: float = 20


@dataclass(frozen=True)
class HealthConfig:
    cutoffs: HealthCutoffs
    success_window_runs: int
    alert_tiers: list[str]
    auto_rescrape: bool


@dataclass(frozen=True)
class QueueConfig:
    max_attempts: int
    stuck_after_minutes: int
    batch_size: int


@dataclass(frozen=True)
class ReconciliationConfig:
    debounce_seconds: float


@dataclass(frozen=True)
class CollaboratorsConfig:
    story_generator: str


@dataclass(frozen=True)
class Config:
    paths: PathsConfig
    intake: IntakeConfig
    health: HealthConfig
    queue: QueueConfig
    reconciliation: ReconciliationConfig
    collaborators: CollaboratorsConfig


DEFAULT_CONFIG: dict[str, Any] = {
    "paths": {
        "data_dir": "/data",
        "state_db": "/data/storydesk.sqlite3",
    },
    "intake": {
        "quality_threshold": 50.0,
        "relevance_threshold": 50.0,
        "review_margin": 0.0,
        "duplicate_window_days": 7,
        "title_similarity": 0.8,
    },
    "health": {
        "recent_activity_days": 7,
        "idle_max_days": 30,
        "productive_min_success_rate": 80.0,
        "productive_min_articles": 5,
        "filtered_min_success_rate": 70.0,
        "filtered_max_articles": 3,
        "active_min_success_rate": 50.0,
        "active_min_articles": 3,
        "technical_issues_below_success_rate": 50.0,
        "reconnecting_error_success_rate": 20.0,
        "success_window_runs": 10,
        "alert_tiers": ["technical_issues", "reconnecting"],
        "auto_rescrape": True,
    },
    "queue": {
        "max_attempts": 3,
        "stuck_after_minutes": 10,
        "batch_size": 10,
    },
    "reconciliation": {
        "debounce_seconds": 0.0,
    },
    "collaborators": {
        "story_generator": "",
    },
}

CONFIG_KEY = "config.runtime"
DEFAULT_CONFIG_PATH = "/config/config.yml"


def get_config_path(path: str | None = None) -> str:
    return path or os.environ.get("SD_CONFIG_PATH") or DEFAULT_CONFIG_PATH


def load_config(path: str | None = None) -> Config:
    config_path = get_config_path(path)
    raw: dict[str, Any] = {}
    if os.path.exists(config_path):
        try:
            with open(config_path, "r", encoding="utf-8") as handle:
                loaded = yaml.safe_load(handle)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {config_path}: {exc}") from exc
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigError(f"{config_path} must contain a mapping")
        raw = loaded
    elif path:
        raise ConfigError(f"Config file not found: {config_path}")
    return build_config(raw)


def build_config(overrides: dict[str, Any] | None) -> Config:
    cfg = _deep_copy(DEFAULT_CONFIG)
    data_dir = os.environ.get("SD_DATA_DIR")
    if data_dir:
        cfg["paths"]["data_dir"] = data_dir
        cfg["paths"]["state_db"] = os.path.join(data_dir, "storydesk.sqlite3")
    errors: list[str] = []
    merged = _merge_validated(cfg, overrides or {}, DEFAULT_CONFIG, "config", errors)
    if errors:
        raise ConfigError("Invalid config: " + "; ".join(errors))
    return _build_config(merged)


def get_runtime_overrides(conn) -> dict[str, Any]:
    from .storage import get_setting

    value = get_setting(conn, CONFIG_KEY, {})
    if not isinstance(value, dict):
        raise ConfigError("config.runtime must be a JSON object")
    return value


def set_runtime_overrides(conn, overrides: dict[str, Any]) -> None:
    from .storage import set_setting

    errors = validate_overrides(overrides)
    if errors:
        raise ConfigError("Invalid config.runtime: " + "; ".join(errors))
    set_setting(conn, CONFIG_KEY, _deep_copy(overrides))


def load_runtime_config(conn, base: Config) -> Config:
    """Apply the runtime overrides stored in ``settings`` on top of ``base``."""
    overrides = get_runtime_overrides(conn)
    if not overrides:
        return base
    errors: list[str] = []
    merged = _merge_validated(config_to_dict(base), overrides, DEFAULT_CONFIG, "config", errors)
    if errors:
        raise ConfigError("Invalid config.runtime: " + "; ".join(errors))
    return _build_config(merged)


def validate_overrides(overrides: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    if not isinstance(overrides, dict):
        return ["config must be an object"]
    _merge_validated(_deep_copy(DEFAULT_CONFIG), overrides, DEFAULT_CONFIG, "config", errors)
    return errors


def config_to_dict(config: Config) -> dict[str, Any]:
    cutoffs = config.health.cutoffs
    return {
        "paths": {
            "data_dir": config.paths.data_dir,
            "state_db": config.paths.state_db,
        },
        "intake": {
            "quality_threshold": config.intake.quality_threshold,
            "relevance_threshold": config.intake.relevance_threshold,
            "review_margin": config.intake.review_margin,
            "duplicate_window_days": config.intake.duplicate_window_days,
            "title_similarity": config.intake.title_similarity,
        },
        "health": {
            "recent_activity_days": cutoffs.recent_activity_days,
            "idle_max_days": cutoffs.idle_max_days,
            "productive_min_success_rate": cutoffs.productive_min_success_rate,
            "productive_min_articles": cutoffs.productive_min_articles,
            "filtered_min_success_rate": cutoffs.filtered_min_success_rate,
            "filtered_max_articles": cutoffs.filtered_max_articles,
            "active_min_success_rate": cutoffs.active_min_success_rate,
            "active_min_articles": cutoffs.active_min_articles,
            "technical_issues_below_success_rate": cutoffs.technical_issues_below_success_rate,
            "reconnecting_error_success_rate": cutoffs.reconnecting_error_success_rate,
            "success_window_runs": config.health.success_window_runs,
            "alert_tiers": list(config.health.alert_tiers),
            "auto_rescrape": config.health.auto_rescrape,
        },
        "queue": {
            "max_attempts": config.queue.max_attempts,
            "stuck_after_minutes": config.queue.stuck_after_minutes,
            "batch_size": config.queue.batch_size,
        },
        "reconciliation": {
            "debounce_seconds": config.reconciliation.debounce_seconds,
        },
        "collaborators": {
            "story_generator": config.collaborators.story_generator,
        },
    }


def _merge_validated(
    base: dict[str, Any],
    overrides: dict[str, Any],
    schema: dict[str, Any],
    path: str,
    errors: list[str],
) -> dict[str, Any]:
    if not isinstance(overrides, dict):
        errors.append(f"{path} must be an object")
        return base
    for key, value in overrides.items():
        if key not in schema:
            errors.append(f"unknown {path}.{key}")
            continue
        default = schema[key]
        if isinstance(default, dict):
            base[key] = _merge_validated(base[key], value, default, f"{path}.{key}", errors)
            continue
        error = _validate_value(value, default, f"{path}.{key}")
        if error:
            errors.append(error)
            continue
        base[key] = value
    return base


def _validate_value(value: Any, default: Any, path: str) -> str | None:
    if isinstance(default, list):
        if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
            return f"{path} must be a list of strings"
        return None
    if isinstance(default, bool):
        if not isinstance(value, bool):
            return f"{path} must be a boolean"
        return None
    if isinstance(default, int):
        if isinstance(value, bool) or not isinstance(value, int):
            return f"{path} must be an integer"
        return None
    if isinstance(default, float):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return f"{path} must be a number"
        return None
    if isinstance(default, str):
        if not isinstance(value, str):
            return f"{path} must be a string"
    return None


def _build_config(cfg: dict[str, Any]) -> Config:
    paths_cfg = cfg["paths"]
    intake_cfg = cfg["intake"]
    health_cfg = cfg["health"]
    queue_cfg = cfg["queue"]

    cutoffs = HealthCutoffs(
        recent_activity_days=int(health_cfg["recent_activity_days"]),
        idle_max_days=int(health_cfg["idle_max_days"]),
        productive_min_success_rate=float(health_cfg["productive_min_success_rate"]),
        productive_min_articles=int(health_cfg["productive_min_articles"]),
        filtered_min_success_rate=float(health_cfg["filtered_min_success_rate"]),
        filtered_max_articles=int(health_cfg["filtered_max_articles"]),
        active_min_success_rate=float(health_cfg["active_min_success_rate"]),
        active_min_articles=int(health_cfg["active_min_articles"]),
        technical_issues_below_success_rate=float(
            health_cfg["technical_issues_below_success_rate"]
        ),
        reconnecting_error_success_rate=float(health_cfg["reconnecting_error_success_rate"]),
    )

    return Config(
        paths=PathsConfig(
            data_dir=str(paths_cfg["data_dir"]),
            state_db=str(paths_cfg["state_db"]),
        ),
        intake=IntakeConfig(
            quality_threshold=float(intake_cfg["quality_threshold"]),
            relevance_threshold=float(intake_cfg["relevance_threshold"]),
            review_margin=float(intake_cfg["review_margin"]),
            duplicate_window_days=int(intake_cfg["duplicate_window_days"]),
            title_similarity=float(intake_cfg["title_similarity"]),
        ),
        health=HealthConfig(
            cutoffs=cutoffs,
            success_window_runs=int(health_cfg["success_window_runs"]),
            alert_tiers=list(health_cfg["alert_tiers"]),
            auto_rescrape=bool(health_cfg["auto_rescrape"]),
        ),
        queue=QueueConfig(
            max_attempts=int(queue_cfg["max_attempts"]),
            stuck_after_minutes=int(queue_cfg["stuck_after_minutes"]),
            batch_size=int(queue_cfg["batch_size"]),
        ),
        reconciliation=ReconciliationConfig(
            debounce_seconds=float(cfg["reconciliation"]["debounce_seconds"]),
        ),
        collaborators=CollaboratorsConfig(
            story_generator=str(cfg["collaborators"]["story_generator"]),
        ),
    )


def _deep_copy(value: dict[str, Any]) -> dict[str, Any]:
    return json.loads(json.dumps(value))
