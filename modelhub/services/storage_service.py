# modelhub/services/storage_service.py
import os
import re
from pathlib import Path
from typing import Dict

from ..core.config import settings

_FILE_SCHEME = "file://"


class StorageService:
    """
    Simple local storage layout.
    Datasets live under: <datasets_dir>/<user_id>/<name>.<format>
    Saved models live under: <models_dir>/<relative path>
    Only paths are managed here; file contents are written by their producers.
    """

    def __init__(self, datasets_root: str | None = None, models_root: str | None = None):
        self.datasets_root = Path(datasets_root or settings.datasets_dir)
        self.models_root = Path(models_root or settings.models_dir)

    # ============ DATASETS ============
    def user_dataset_dir(self, user_id: str) -> Path:
        # enforce per-user folders
        folder = self.datasets_root / str(user_id)
        folder.mkdir(parents=True, exist_ok=True)
        return folder

    @staticmethod
    def dataset_filename(name: str, fmt: str) -> str:
        base = re.sub(r"\s+", "_", name.strip()).lower()
        return f"{base}.{fmt}"

    @staticmethod
    def version_filename(file_name: str, version_number: int) -> str:
        base, ext = os.path.splitext(file_name)
        return f"{base}_v{version_number}{ext}"

    def dataset_storage_info(self, user_id: str, name: str, fmt: str) -> Dict[str, str]:
        return {
            "location": str(self.user_dataset_dir(user_id).resolve()),
            "fileName": self.dataset_filename(name, fmt),
        }

    # ============ MODELS ============
    def resolve_model_path(self, path: str, within: Path | None = None) -> Path:
        """
        Normalizes a model location to an absolute directory.
        'file://' prefixes are stripped; relative paths land under `within`
        (models_root by default) and the result must stay inside it.
        """
        raw = path[len(_FILE_SCHEME):] if path.startswith(_FILE_SCHEME) else path
        if raw.startswith(("http://", "https://")):
            raise ValueError("Remote model locations are not supported by local storage.")
        base = (within or self.models_root).resolve()
        p = Path(raw)
        if not p.is_absolute():
            p = base / p
        p = p.resolve()
        if not p.is_relative_to(base):
            raise ValueError(f"Model location must stay inside {base}")
        return p

    def user_model_dir(self, user_id: str) -> Path:
        return self.models_root / str(user_id)

    def user_model_path(self, user_id: str, path: str) -> str:
        """Caller-chosen save locations are confined to the owner's folder."""
        return str(self.resolve_model_path(path, within=self.user_model_dir(user_id)))

    def default_model_path(self, model_id: str, version: int | None = None) -> str:
        suffix = f"_v{version}" if version else ""
        return str(self.resolve_model_path(f"model_{model_id}{suffix}"))
