from pathlib import Path

import yaml

from registry_mirror.models.config import MirrorConfig


def load_mirror_config(path: Path) -> MirrorConfig:
    if path.is_dir():
        raise IsADirectoryError(f"'{path}' is not a file")
    with open(path, encoding="utf-8") as f:
        raw = yaml.safe_load(f)  # YAML → Python dict
    return MirrorConfig.model_validate(raw or {})  # dict → Pydantic model
