"""
Zentrale Konfiguration - liest .env und settings.yaml
"""

import logging
import shutil
from pathlib import Path
from typing import Optional

import yaml
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Umgebungsvariablen aus .env"""

    # Foresight Server
    foresight_host: str = "0.0.0.0"
    foresight_port: int = 8210

    # Redis (Snapshot-Persistenz)
    redis_url: str = "redis://localhost:6379"

    log_level: str = "INFO"

    # Pfad zur settings.yaml (leer = config/settings.yaml im Projekt)
    settings_path: str = ""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


DEFAULT_SETTINGS_PATH = Path(__file__).parent.parent / "config" / "settings.yaml"


def load_yaml_config(path: Optional[str] = None) -> dict:
    """Laedt settings.yaml, erzeugt sie aus .example wenn sie fehlt.

    Fehlt beides oder ist die Datei kaputt, laufen die Engines mit ihren
    eingebauten Defaults.
    """
    config_path = Path(path) if path else DEFAULT_SETTINGS_PATH
    example_path = config_path.with_suffix(".yaml.example")

    if not config_path.exists() and example_path.exists():
        try:
            shutil.copy2(example_path, config_path)
        except OSError as e:
            logger.debug("settings.yaml nicht anlegbar, lese Beispiel: %s", e)
            config_path = example_path

    if not config_path.exists():
        logger.info("Keine settings.yaml unter %s, nutze Defaults", config_path)
        return {}
    try:
        data = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        logger.warning("settings.yaml fehlerhaft, nutze Defaults: %s", e)
        return {}
    return data if isinstance(data, dict) else {}


def section_config(section: str, overrides: Optional[dict] = None) -> dict:
    """YAML-Abschnitt mit Overrides des Aufrufers (Overrides gewinnen)."""
    cfg = dict(yaml_config.get(section) or {})
    if overrides:
        for key, value in overrides.items():
            if isinstance(value, dict) and isinstance(cfg.get(key), dict):
                cfg[key] = {**cfg[key], **value}
            else:
                cfg[key] = value
    return cfg


# Globale Instanzen
settings = Settings()
yaml_config = load_yaml_config(settings.settings_path or None)
