from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Mapping, Optional

import numpy as np

from dicimage.errors import ConfigError
from dicimage.log import get_logger

logger = get_logger(__name__)

INTENSITY_DTYPE = np.float64
SCALAR_DTYPE = np.float64

# 4th-order central difference: c1*(I[-2] - I[+2]) + c2*(I[+1] - I[-1])
GRAD_C1 = 1.0 / 12.0
GRAD_C2 = 8.0 / 12.0
GRAD_HALO = 2

MIN_GAUSS_MASK_SIZE = 3
MAX_GAUSS_MASK_SIZE = 13
MAX_GAUSS_HALF_MASK = (MAX_GAUSS_MASK_SIZE - 1) // 2
DEFAULT_GAUSS_MASK_SIZE = 7

DEFAULT_TEAM_SIZE = 256
MAX_TEAM_SIZE = 1024
FLAT_THREADS_PER_BLOCK = 256


def validate_mask_size(mask_size: int) -> int:
    if isinstance(mask_size, bool) or not isinstance(mask_size, (int, np.integer)):
        raise ConfigError(f"gauss_mask_size must be an int, got {type(mask_size).__name__}")
    mask_size = int(mask_size)
    if mask_size % 2 == 0:
        raise ConfigError(f"gauss_mask_size must be odd, got {mask_size}")
    if not MIN_GAUSS_MASK_SIZE <= mask_size <= MAX_GAUSS_MASK_SIZE:
        raise ConfigError(
            f"gauss_mask_size must be in [{MIN_GAUSS_MASK_SIZE}, {MAX_GAUSS_MASK_SIZE}], "
            f"got {mask_size}"
        )
    return mask_size


def validate_team_size(team_size: int) -> int:
    if isinstance(team_size, bool) or not isinstance(team_size, (int, np.integer)):
        raise ConfigError(f"team_size must be an int, got {type(team_size).__name__}")
    team_size = int(team_size)
    if not 1 <= team_size <= MAX_TEAM_SIZE:
        raise ConfigError(f"team_size must be in [1, {MAX_TEAM_SIZE}], got {team_size}")
    return team_size


@dataclass
class ImageParams:
    gauss_mask_size: int = DEFAULT_GAUSS_MASK_SIZE
    gauss_filter_image: bool = False
    compute_image_gradients: bool = False
    use_hierarchical_parallelism: bool = False
    team_size: int = DEFAULT_TEAM_SIZE

    def __post_init__(self) -> None:
        self.gauss_mask_size = validate_mask_size(self.gauss_mask_size)
        self.team_size = validate_team_size(self.team_size)
        for name in (
            "gauss_filter_image",
            "compute_image_gradients",
            "use_hierarchical_parallelism",
        ):
            if not isinstance(getattr(self, name), (bool, np.bool_)):
                raise ConfigError(f"{name} must be a bool, got {getattr(self, name)!r}")
            setattr(self, name, bool(getattr(self, name)))

    @property
    def half_mask(self) -> int:
        return (self.gauss_mask_size - 1) // 2

    @classmethod
    def from_mapping(cls, mapping: Optional[Mapping[str, Any]]) -> "ImageParams":
        """Build params from a plain parameter dict; unknown keys are ignored."""
        if mapping is None:
            return cls()
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(mapping) - known)
        if unknown:
            logger.debug("Ignoring unrecognized image parameters: %s", unknown)
        return cls(**{k: v for k, v in mapping.items() if k in known})


def resolve_params(params: Any) -> ImageParams:
    if params is None:
        return ImageParams()
    if isinstance(params, ImageParams):
        return params
    if isinstance(params, Mapping):
        return ImageParams.from_mapping(params)
    raise ConfigError(f"params must be ImageParams or a mapping, got {type(params).__name__}")
