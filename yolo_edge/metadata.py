from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

DEFAULT_INPUT_SIZE = 640
UNKNOWN_LABEL = "unknown"

PathLike = Union[str, Path]


@dataclass(frozen=True)
class ModelMetadata:
    class_names: Tuple[str, ...]
    input_size: int = DEFAULT_INPUT_SIZE


def _parse_int_list(text: str) -> List[int]:
    body = text.strip().lstrip("[").rstrip("]")
    out: List[int] = []
    for part in body.split(","):
        part = part.strip()
        if part.isdigit():
            out.append(int(part))
    return out


def _parse(metadata_path: PathLike) -> Tuple[Dict[int, str], List[int]]:
    """
    Read the two sections we need from an exporter `metadata.yaml`:

        imgsz:
        - 640
        - 640
        names:
          0: person
          1: bicycle

    `imgsz: [640, 640]` on one line is accepted too. Everything else is
    skipped, so no PyYAML dependency is needed.
    """

    path = Path(metadata_path)
    if not path.exists():
        raise FileNotFoundError(f"Model metadata not found: {path}")

    names: Dict[int, str] = {}
    imgsz: List[int] = []
    section: Optional[str] = None

    with path.open("r", encoding="utf-8") as f:
        for raw in f:
            line = raw.rstrip("\n")
            stripped = line.strip()
            if not stripped or stripped.startswith("#"):
                continue

            # top-level key opens (or closes) a section
            if not line[0].isspace() and not stripped.startswith("-"):
                key, _, rest = stripped.partition(":")
                section = key.strip()
                if section == "imgsz" and rest.strip():
                    imgsz = _parse_int_list(rest)
                continue

            if section == "imgsz" and stripped.startswith("-"):
                value = stripped[1:].strip()
                if value.isdigit():
                    imgsz.append(int(value))
            elif section == "names" and ":" in stripped:
                left, right = stripped.split(":", 1)
                left = left.strip()
                if not left.isdigit():
                    continue
                names[int(left)] = right.strip().strip("'").strip('"')

    return names, imgsz


def load_class_names(metadata_path: PathLike) -> Dict[int, str]:
    """
    Load the `names` mapping {class_id: label}.
    """

    names, _ = _parse(metadata_path)
    return names


def load_model_metadata(metadata_path: PathLike) -> ModelMetadata:
    """
    Load class names (ordered by id) and the square input size.

    Ids missing from the mapping are filled with "unknown" so that
    `class_names[class_index]` always resolves. The input size is the
    larger of the listed `imgsz` sides, or 640 when the file has none.
    """

    names, imgsz = _parse(metadata_path)
    if not names:
        raise ValueError(f"No class names found in metadata: {metadata_path}")

    class_names = tuple(names.get(i, UNKNOWN_LABEL) for i in range(max(names) + 1))
    input_size = max(imgsz) if imgsz else DEFAULT_INPUT_SIZE
    if not imgsz:
        logger.debug("No imgsz in %s, using default input size %d", metadata_path, input_size)

    logger.info("Loaded metadata: %d classes, input size %d", len(class_names), input_size)
    return ModelMetadata(class_names=class_names, input_size=input_size)
