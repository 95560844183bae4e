from __future__ import annotations

from pathlib import Path
from typing import Optional, Tuple

_CONFIG_FILES = ("config.json",)
_WEIGHT_FILES = ("model.safetensors", "pytorch_model.bin", "model.safetensors.index.json", "pytorch_model.bin.index.json")


def _has_tokenizer_assets(folder: Path) -> bool:
    for item in folder.rglob("*"):
        name = item.name.lower()
        if name in {"tokenizer.json", "vocab.json", "preprocessor_config.json"}:
            return True
        if "merges" in name or "tokenizer" in name:
            return True
    return False


def model_assets_available(folder: Optional[Path]) -> Tuple[bool, str]:
    if folder is None:
        return False, "no model folder configured"
    if not folder.is_dir():
        return False, f"model folder not found: {folder}"
    for name in _CONFIG_FILES:
        if not (folder / name).exists():
            return False, f"{name} missing in {folder}"
    if not any((folder / name).exists() for name in _WEIGHT_FILES):
        return False, f"model weights missing in {folder}"
    if not _has_tokenizer_assets(folder):
        return False, f"tokenizer assets missing in {folder}"
    return True, ""


def installed_model_ids(model_root: Path) -> list[str]:
    if not model_root.is_dir():
        return []
    out: list[str] = []
    for child in sorted(model_root.iterdir()):
        if child.is_dir() and not child.name.startswith("."):
            ok, _ = model_assets_available(child)
            if ok:
                out.append(child.name)
    return out


def resolve_model_folder(model_root: Path, model_id: str) -> Tuple[Optional[Path], str]:
    """
    Resolve the folder for ``model_id`` with precedence:
    1) ``model_id`` as an explicit folder path
    2) ``<model_root>/<model_id>``
    3) the first installed model under ``model_root``

    Returns ``(folder, resolved_model_id)``; folder is None when nothing usable exists.
    """

    explicit = Path(model_id).expanduser()
    if model_id and explicit.is_absolute():
        ok, _ = model_assets_available(explicit)
        return (explicit if ok else None), model_id

    if model_id:
        candidate = model_root / model_id
        ok, _ = model_assets_available(candidate)
        if ok:
            return candidate, model_id

    for installed in installed_model_ids(model_root):
        return model_root / installed, installed
    return None, model_id
