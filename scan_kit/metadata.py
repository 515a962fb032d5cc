from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional, Tuple, Union

from .types import ClassMap


def _parse_metadata(metadata_path: Union[str, Path]) -> Tuple[Dict[int, str], Optional[str]]:
    names: Dict[int, str] = {}
    fallback: Optional[str] = None
    in_names = False

    with open(metadata_path, "r", encoding="utf-8") as f:
        for raw in f:
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            if line == "names:":
                in_names = True
                continue

            # A top-level key ends the names block.
            if not raw[:1].isspace():
                in_names = False
                if line.startswith("fallback:"):
                    fallback = line.split(":", 1)[1].strip().strip("'").strip('"') or None
                continue
            if not in_names:
                continue

            # Parse "id: label"
            if ":" not in line:
                continue
            left, right = line.split(":", 1)
            left = left.strip()
            right = right.strip().strip("'").strip('"')
            if not left.isdigit():
                continue
            names[int(left)] = right

    return names, fallback


def load_class_names(metadata_path: Union[str, Path]) -> Dict[int, str]:
    """
    Load class names from the `metadata.yaml` shipped next to a model.

    The file stores a simple mapping:

        names:
          0: Normal
          1: Incipient
        fallback: Incipient

    This function intentionally avoids adding a PyYAML dependency.
    """

    names, _ = _parse_metadata(metadata_path)
    return names


def load_class_map(metadata_path: Union[str, Path], fallback: Optional[str] = None) -> ClassMap:
    """
    Build the model's `ClassMap` from its metadata file.

    An explicit `fallback` wins over the file's `fallback:` key; without
    either, the highest-index class is used.
    """

    path = Path(metadata_path)
    if not path.exists():
        raise FileNotFoundError(f"Class metadata not found: {path}")
    names, file_fallback = _parse_metadata(path)
    if not names:
        raise ValueError(f"No class names found in {path}")
    chosen = fallback or file_fallback or names[max(names)]
    return ClassMap(names=names, fallback=chosen)
