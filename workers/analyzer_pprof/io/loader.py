"""
Loader — read a parsed profile from JSON.

Input is the symbolized profile as a JSON document using the field names
of ``analyzer_pprof.core.profile`` (sample_types, samples, locations,
lines, function, ...).  Files ending in ``.gz`` are decompressed first.

Validation is delegated to a pydantic ``TypeAdapter`` over the dataclass
model, so a malformed document raises ``pydantic.ValidationError``.
"""
from __future__ import annotations

import gzip
import json
import logging
from pathlib import Path
from typing import Any, Dict, Union

from pydantic import TypeAdapter

from analyzer_pprof.core.profile import Profile

logger = logging.getLogger(__name__)

_PROFILE_ADAPTER = TypeAdapter(Profile)


def profile_from_dict(data: Dict[str, Any]) -> Profile:
    """Validate a decoded JSON document into a ``Profile``."""
    return _PROFILE_ADAPTER.validate_python(data)


def profile_to_dict(profile: Profile) -> Dict[str, Any]:
    return _PROFILE_ADAPTER.dump_python(profile, mode="json")


def load_profile(path: Union[str, Path]) -> Profile:
    """
    Load and validate a profile file.

    Raises FileNotFoundError if *path* does not exist.
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Profile not found: {path}")

    if path.suffix == ".gz":
        with gzip.open(path, "rt", encoding="utf-8") as fh:
            data = json.load(fh)
    else:
        data = json.loads(path.read_text(encoding="utf-8"))

    profile = profile_from_dict(data)
    logger.debug(
        "Loaded %s: %d sample types, %d samples",
        path.name, len(profile.sample_types), len(profile.samples),
    )
    return profile
