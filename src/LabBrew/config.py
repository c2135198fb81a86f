"""Define typed configuration models for the conversion service.

Use `PipelineConfig` to load, validate, and persist runtime settings, and
`ConversionSettings` for the per-job settings record submitted with an upload.
"""

import os
import logging
import yaml
from dataclasses import dataclass, field, fields
from typing import Dict, List
from enum import Enum

from .errors import SettingsError

logger = logging.getLogger("labpbr_pipeline.config")


class TextureRole(Enum):
    """Enumerate LabPBR texture roles recognised by filename suffix."""

    BASE = "base"
    NORMAL = "normal"
    SPECULAR = "specular"
    EMISSION = "emission"
    HEIGHT = "height"


class TextureKind(Enum):
    """Declared kind passed to the channel validator."""

    SPECULAR = "specular"
    NORMAL = "normal"
    UNKNOWN = "unknown"


class InputType(Enum):
    """Enumerate accepted upload shapes."""

    SINGLE = "single"
    SEQUENCE = "sequence"
    RESOURCEPACK = "resourcepack"


TEXTURE_PATTERNS: Dict[TextureRole, List[str]] = {
    TextureRole.NORMAL:   ["_n"],
    TextureRole.SPECULAR: ["_s"],
    TextureRole.EMISSION: ["_e"],
    TextureRole.HEIGHT:   ["_h"],
}

TEXTURE_EXTENSIONS: List[str] = [".png", ".jpg", ".jpeg", ".tiff", ".tga"]

# Suffixes written next to each processed base texture in the output archive.
OUTPUT_SUFFIXES: Dict[str, str] = {
    "base_color": "",
    "normal": "_n",
    "specular": "_s",
    "height": "_h",
    "ao": "_ao",
}


@dataclass
class NormalConfig:
    """Store settings for normal-from-depth synthesis."""

    kernel: str = "central"  # "central" | "sobel"
    green_convention: str = "directx"  # "directx" (Y-) | "opengl" (Y+)
    min_strength: float = 0.1


@dataclass
class HeightConfig:
    """Store settings for height map approximation."""

    blur_sigma: float = 1.0
    use_depth_estimator: bool = False


@dataclass
class AOConfig:
    """Store settings for ambient occlusion approximation."""

    radius_scale: float = 10.0
    brightness: float = 0.7


@dataclass
class SpecularConfig:
    """Default LabPBR channel values for generated specular maps."""

    default_f0: int = 10
    default_porosity: int = 0
    default_emission: int = 0


@dataclass
class ValidationConfig:
    """Store settings for LabPBR channel validation."""

    check_power_of_two: bool = True
    recommend_png: bool = True
    unknown_kind_as_specular: bool = True
    normal_sample_size: int = 100
    normal_length_tolerance: float = 0.1


@dataclass
class DepthConfig:
    """Store settings for the remote depth estimation service."""

    endpoint: str = "https://api-inference.huggingface.co/models"
    model: str = "jingheya/lotus-depth-g-v1-0"
    api_key_env: str = "HUGGING_FACE_API_KEY"
    max_retries: int = 5
    default_wait_seconds: float = 5.0
    max_wait_seconds: float = 30.0
    timeout_seconds: float = 60.0


@dataclass
class ArchiveConfig:
    """Store settings for resource pack assembly."""

    pack_format: int = 15
    description: str = "LabPBR converted resource pack"
    copy_non_textures: bool = True
    download_suffix: str = "_labpbr"


@dataclass
class JobsConfig:
    """Store settings for job scheduling."""

    max_concurrent_jobs: int = 2
    pixel_workers: int = 2
    total_steps: int = 5


_SUPPORTED_CONFIG_VERSION = 1


@dataclass
class PipelineConfig:
    """Master service configuration."""

    config_version: int = 1
    log_level: str = "INFO"
    log_file: str = ""
    max_image_pixels: int = 67108864  # 8192x8192
    max_upload_bytes: int = 256 * 1024 * 1024

    normal: NormalConfig = field(default_factory=NormalConfig)
    height: HeightConfig = field(default_factory=HeightConfig)
    ao: AOConfig = field(default_factory=AOConfig)
    specular: SpecularConfig = field(default_factory=SpecularConfig)
    validation: ValidationConfig = field(default_factory=ValidationConfig)
    depth: DepthConfig = field(default_factory=DepthConfig)
    archive: ArchiveConfig = field(default_factory=ArchiveConfig)
    jobs: JobsConfig = field(default_factory=JobsConfig)

    @classmethod
    def from_yaml(cls, path: str) -> "PipelineConfig":
        """Load service configuration from YAML or return defaults."""
        if not os.path.exists(path):
            logger.info("Config file '%s' not found. Using defaults.", path)
            config = cls()
            config.validate()
            return config
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(
                f"Failed to parse YAML config '{path}': {exc}"
            ) from exc
        if not isinstance(data, dict):
            raise ValueError(
                f"Config file '{path}' must contain a YAML mapping, "
                f"got {type(data).__name__}"
            )
        yaml_version = data.get("config_version", 1)
        if isinstance(yaml_version, int) and yaml_version > _SUPPORTED_CONFIG_VERSION:
            logger.warning(
                "Config file '%s' has config_version=%d, but this build only "
                "supports up to version %d. Some settings may be ignored.",
                path, yaml_version, _SUPPORTED_CONFIG_VERSION,
            )
        config = cls()
        _merge_dict_to_dataclass(config, data)
        try:
            config.validate()
        except ValueError as exc:
            raise ValueError(f"{path}: {exc}") from exc
        return config

    def to_yaml(self, path: str):
        """Write service configuration to a YAML file."""
        import dataclasses
        import threading as _th
        data = dataclasses.asdict(self)
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        ext = os.path.splitext(path)[1]
        tmp_path = f"{path}.tmp.{os.getpid()}.{_th.get_ident()}{ext}"
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                yaml.dump(data, f, default_flow_style=False, sort_keys=False)
            os.replace(tmp_path, path)
        finally:
            if os.path.exists(tmp_path):
                try:
                    os.remove(tmp_path)
                except OSError:
                    pass

    def depth_api_key(self) -> str:
        """Return the depth service API key from the environment, or ''."""
        return os.environ.get(self.depth.api_key_env, "")

    def validate(self):
        """Validate configuration values. Raises ValueError on invalid config."""
        errors = []

        valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if self.log_level.upper() not in valid_log_levels:
            errors.append(
                f"log_level must be one of {sorted(valid_log_levels)}, "
                f"got '{self.log_level}'"
            )
        if self.max_image_pixels < 0:
            errors.append("max_image_pixels must be >= 0 (0 = unlimited)")
        if self.max_upload_bytes < 1:
            errors.append("max_upload_bytes must be >= 1")

        # Normal
        valid_kernels = {"central", "sobel"}
        if self.normal.kernel not in valid_kernels:
            errors.append(
                f"normal.kernel must be one of {sorted(valid_kernels)}, "
                f"got '{self.normal.kernel}'"
            )
        valid_conventions = {"directx", "opengl"}
        if self.normal.green_convention not in valid_conventions:
            errors.append(
                f"normal.green_convention must be one of {sorted(valid_conventions)}, "
                f"got '{self.normal.green_convention}'"
            )
        if self.normal.min_strength <= 0:
            errors.append("normal.min_strength must be > 0")

        # Height / AO
        if self.height.blur_sigma < 0:
            errors.append("height.blur_sigma must be >= 0")
        if self.ao.radius_scale <= 0:
            errors.append("ao.radius_scale must be > 0")
        if not (0.0 <= self.ao.brightness <= 1.0):
            errors.append("ao.brightness must be in [0, 1]")

        # Specular defaults must themselves be valid LabPBR values
        if not (0 <= self.specular.default_f0 <= 229):
            errors.append("specular.default_f0 must be a dielectric value in [0, 229]")
        if not (0 <= self.specular.default_porosity <= 255):
            errors.append("specular.default_porosity must be in [0, 255]")
        if not (0 <= self.specular.default_emission <= 254):
            errors.append("specular.default_emission must be in [0, 254]")

        # Validation
        if self.validation.normal_sample_size < 1:
            errors.append("validation.normal_sample_size must be >= 1")
        if not (0 < self.validation.normal_length_tolerance <= 1):
            errors.append("validation.normal_length_tolerance must be in (0, 1]")

        # Depth
        if not self.depth.endpoint:
            errors.append("depth.endpoint must not be empty")
        if not self.depth.model:
            errors.append("depth.model must not be empty")
        if self.depth.max_retries < 1:
            errors.append("depth.max_retries must be >= 1")
        if self.depth.default_wait_seconds < 0:
            errors.append("depth.default_wait_seconds must be >= 0")
        if self.depth.max_wait_seconds < self.depth.default_wait_seconds:
            errors.append("depth.max_wait_seconds must be >= default_wait_seconds")
        if self.depth.timeout_seconds <= 0:
            errors.append("depth.timeout_seconds must be > 0")

        # Archive
        if self.archive.pack_format < 1:
            errors.append("archive.pack_format must be >= 1")

        # Jobs
        if not (1 <= self.jobs.max_concurrent_jobs <= 64):
            errors.append("jobs.max_concurrent_jobs must be in [1, 64]")
        if not (1 <= self.jobs.pixel_workers <= 64):
            errors.append("jobs.pixel_workers must be in [1, 64]")
        if self.jobs.total_steps < 1:
            errors.append("jobs.total_steps must be >= 1")

        if self.height.use_depth_estimator and not self.depth_api_key():
            logger.warning(
                "height.use_depth_estimator is enabled but %s is not set. "
                "Height and normal maps fall back to luminance.",
                self.depth.api_key_env,
            )

        if errors:
            raise ValueError(
                "Configuration validation failed:\n" +
                "\n".join(f"  - {e}" for e in errors)
            )


def _merge_dict_to_dataclass(obj, data: dict, _path: str = ""):
    import dataclasses
    for key, value in data.items():
        if hasattr(obj, key):
            field_val = getattr(obj, key)
            if dataclasses.is_dataclass(field_val) and isinstance(value, dict):
                _merge_dict_to_dataclass(field_val, value, f"{_path}{key}.")
            else:
                full_key = f"{_path}{key}"
                if value is None and field_val is not None:
                    logger.warning(
                        "Config key '%s' is null but field default is %s. "
                        "Using default value.",
                        full_key, type(field_val).__name__,
                    )
                    continue
                expected_type = type(field_val)
                # Allow int->float and exact float->int promotion
                if (field_val is not None
                        and not isinstance(value, expected_type)
                        and not (expected_type is float
                                 and isinstance(value, int))
                        and not (expected_type is int
                                 and isinstance(value, float)
                                 and value == int(value))):
                    logger.warning(
                        "Config type mismatch for '%s': expected %s, got %s (%r). "
                        "Using default value.",
                        full_key, expected_type.__name__, type(value).__name__, value,
                    )
                    continue
                if (expected_type is int and isinstance(value, float)
                        and value == int(value)):
                    value = int(value)
                setattr(obj, key, value)
        else:
            full_key = f"{_path}{key}"
            logger.warning("Unknown config key ignored: '%s'", full_key)


# Per-job settings -----------------------------------------------------------

_SETTINGS_ALIASES = {
    "generateBaseColor": "generate_base_color",
    "generateRoughness": "generate_roughness",
    "generateNormal": "generate_normal",
    "generateHeight": "generate_height",
    "generateAO": "generate_ao",
    "baseColorContrast": "base_color_contrast",
    "roughnessIntensity": "roughness_intensity",
    "roughnessInvert": "roughness_invert",
    "normalStrength": "normal_strength",
    "heightDepth": "height_depth",
    "aoRadius": "ao_radius",
    "inputType": "input_type",
}
_SETTINGS_WIRE_NAMES = {v: k for k, v in _SETTINGS_ALIASES.items()}

_NUMERIC_RANGES = {
    "base_color_contrast": (0.0, 2.0),
    "roughness_intensity": (0.0, 1.0),
    "normal_strength": (0.0, 3.0),
    "height_depth": (0.0, 1.0),
    "ao_radius": (0.0, 1.0),
}

# Accepted for compatibility with existing clients; no processing exists for these.
_IGNORED_SETTINGS = {"advancedProcessing", "advanced_processing"}


@dataclass(frozen=True)
class ConversionSettings:
    """Settings record submitted with a conversion upload."""

    generate_base_color: bool = True
    generate_roughness: bool = True
    generate_normal: bool = True
    generate_height: bool = True
    generate_ao: bool = True
    base_color_contrast: float = 1.2
    roughness_intensity: float = 0.8
    roughness_invert: bool = False
    normal_strength: float = 1.0
    height_depth: float = 0.25
    ao_radius: float = 0.5
    input_type: InputType = InputType.SINGLE

    @classmethod
    def from_dict(cls, data) -> "ConversionSettings":
        """Build settings from camelCase or snake_case keys.

        Every problem is collected before raising, so a client sees the
        full list of schema violations in one `SettingsError`.
        """
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise SettingsError(
                f"settings must be a mapping, got {type(data).__name__}"
            )
        known = {f.name for f in fields(cls)}
        problems = []
        values = {}
        for key, value in data.items():
            if key in _IGNORED_SETTINGS:
                logger.warning("Settings key '%s' is not supported and was ignored.", key)
                continue
            name = _SETTINGS_ALIASES.get(key, key)
            if name not in known:
                logger.warning("Unknown settings key ignored: '%s'", key)
                continue
            label = _SETTINGS_WIRE_NAMES.get(name, name)
            if name == "input_type":
                try:
                    values[name] = InputType(value)
                except ValueError:
                    problems.append(
                        f"{label} must be one of "
                        f"{[t.value for t in InputType]}, got {value!r}"
                    )
                continue
            if name in _NUMERIC_RANGES:
                if isinstance(value, bool) or not isinstance(value, (int, float)):
                    problems.append(f"{label} must be a number, got {value!r}")
                    continue
                lo, hi = _NUMERIC_RANGES[name]
                if not (lo <= value <= hi):
                    problems.append(f"{label} must be in [{lo:g}, {hi:g}], got {value!r}")
                    continue
                values[name] = float(value)
                continue
            if not isinstance(value, bool):
                problems.append(f"{label} must be a boolean, got {value!r}")
                continue
            values[name] = value
        if problems:
            raise SettingsError(problems)
        return cls(**values)

    def to_dict(self) -> dict:
        """Return settings keyed by their camelCase wire names."""
        out = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, Enum):
                value = value.value
            out[_SETTINGS_WIRE_NAMES.get(f.name, f.name)] = value
        return out
