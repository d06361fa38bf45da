from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from romcurator import config
from romcurator.core.options import Options

logger = logging.getLogger(__name__)


class ConfigManager:
    """Gere a persistência das opções de escrita em formato JSON."""

    def __init__(self, config_file: Path | str = config.SETTINGS_FILE):
        self.config_path = Path(config_file)
        self.values: dict[str, Any] = {}
        self.load()

    def load(self) -> None:
        """Carrega as configurações do disco, fundindo com os defaults."""
        self.values = {
            "output": config.OUTPUT_DEFAULT,
            "dir_game_subdir": "multiple",
            "fix_extension": "auto",
            "merge_roms": "fullnonmerged",
            "link_mode": "hardlink",
            "reader_threads": config.DEFAULT_READER_THREADS,
            "writer_threads": config.DEFAULT_WRITER_THREADS,
            "write_retry": config.DEFAULT_WRITE_RETRY,
        }

        if self.config_path.exists():
            try:
                with open(self.config_path, "r", encoding="utf-8") as f:
                    stored = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Ignoring unreadable settings file %s: %s", self.config_path, e)
                return
            if not isinstance(stored, dict):
                logger.warning("Ignoring settings file %s: not a JSON object", self.config_path)
                return
            self.values.update(stored)

    def save(self) -> bool:
        """Grava as configurações atuais no disco."""
        try:
            with open(self.config_path, "w", encoding="utf-8") as f:
                json.dump(self.values, f, indent=4, ensure_ascii=False)
            return True
        except (OSError, TypeError) as e:
            logger.warning("Could not save settings to %s: %s", self.config_path, e)
            return False

    def get(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.values[key] = value

    def to_options(self, **overrides: Any) -> Options:
        """Constrói ``Options`` a partir das configurações; ``None`` nos overrides é ignorado."""
        values = dict(self.values)
        values.update({k: v for k, v in overrides.items() if v is not None})
        return Options.from_mapping(values)
