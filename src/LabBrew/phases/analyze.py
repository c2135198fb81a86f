"""Aggregate specular texture statistics into a material identification report."""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union

import numpy as np

from ..core.buffers import PixelBuffer, decode_image, to_rgba
from ..core.catalog import (
    DIELECTRIC_MAX, GREEN_METAL_CODES, POROSITY_MAX, SSS_MIN, closest_entry,
)

logger = logging.getLogger("labpbr_pipeline.analyzer")

WARN_NO_CONTENT = "Green channel has no LabPBR content (expected F0 or metal codes)."
WARN_MIXED_GREEN = "Texture mixes dielectric F0 and metal codes; ensure masks are intentional."
WARN_NONSTANDARD_METAL = "Green channel uses metal codes outside the standard 230–237 range."
WARN_F0_DRIFT = "Average F0 exceeds dielectric range; clamp to 0–229 for non-metals."
WARN_NEAR_EMISSIVE = "High alpha values imply strong emission; verify emission intent."
WARN_MIXED_BLUE = "Blue channel mixes porosity and SSS; verify masks are separated."
WARN_NO_PIXELS = "Texture has no pixel data."


@dataclass(frozen=True)
class MaterialMatch:
    name: str
    category: str
    f0: int
    reflectance: Optional[float]
    difference: float
    ior: Optional[float] = None
    rgb_f0: Optional[Tuple[int, int, int]] = None
    notes: Optional[str] = None

    def to_dict(self) -> dict:
        out = {
            "name": self.name,
            "category": self.category,
            "f0": self.f0,
            "reflectance": self.reflectance,
            "ior": self.ior,
            "difference": self.difference,
        }
        if self.rgb_f0 is not None:
            r, g, b = self.rgb_f0
            out["rgbF0"] = {"r": r, "g": g, "b": b}
        if self.notes is not None:
            out["notes"] = self.notes
        return out


@dataclass(frozen=True)
class MaterialReport:
    width: int
    height: int
    avg_red: float = 0.0
    avg_red_pct: float = 0.0
    avg_green: float = 0.0
    avg_blue: float = 0.0
    avg_alpha: float = 0.0
    green_f0_coverage_pct: float = 0.0
    green_metal_coverage_pct: float = 0.0
    avg_f0_encoded: Optional[float] = None
    avg_f0_percent: Optional[float] = None
    top_metal_code: Optional[int] = None
    top_metal_name: Optional[str] = None
    porosity_coverage_pct: float = 0.0
    sss_coverage_pct: float = 0.0
    avg_porosity_pct: Optional[float] = None
    avg_sss_pct: Optional[float] = None
    avg_emission_pct: float = 0.0
    closest_material: Optional[MaterialMatch] = None
    red_distribution: Dict[int, int] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "width": self.width,
            "height": self.height,
            "avgRed": self.avg_red,
            "avgRedPct": self.avg_red_pct,
            "avgGreen": self.avg_green,
            "avgBlue": self.avg_blue,
            "avgAlpha": self.avg_alpha,
            "greenF0CoveragePct": self.green_f0_coverage_pct,
            "greenMetalCoveragePct": self.green_metal_coverage_pct,
            "avgF0Encoded": self.avg_f0_encoded,
            "avgF0Percent": self.avg_f0_percent,
            "topMetalCode": self.top_metal_code,
            "topMetalName": self.top_metal_name,
            "porosityCoveragePct": self.porosity_coverage_pct,
            "sssCoveragePct": self.sss_coverage_pct,
            "avgPorosityPct": self.avg_porosity_pct,
            "avgSSSPct": self.avg_sss_pct,
            "avgEmissionPct": self.avg_emission_pct,
            "closestMaterial": (
                self.closest_material.to_dict() if self.closest_material else None
            ),
            "redDistribution": {str(k): v for k, v in self.red_distribution.items()},
            "warnings": list(self.warnings),
        }


def _pct(count: float, total: float) -> float:
    return float(count) / float(total) * 100.0 if total else 0.0


def _emission_pct(avg_alpha: float) -> float:
    # 255 means "no emission" in LabPBR, everything else scales to 254.
    return 0.0 if avg_alpha == 255 else avg_alpha / 254.0 * 100.0


def analyze_specular(image: Union[PixelBuffer, bytes]) -> MaterialReport:
    """Compute channel statistics and the nearest catalog material.

    RGB input is treated as fully opaque (alpha 255) and grayscale input is
    replicated across RGB. An empty buffer, or zero-length bytes, yields
    zero/None fields and the "no pixel data" warning, never NaN.
    """
    if isinstance(image, (bytes, bytearray)):
        buf = decode_image(image) if image else PixelBuffer(0, 0, 4, b"")
    else:
        buf = image
    rgba = to_rgba(buf.to_array()).reshape(-1, 4)
    total = rgba.shape[0]

    if total == 0:
        logger.debug("Analyzed empty specular buffer")
        return MaterialReport(
            width=buf.width, height=buf.height,
            warnings=[WARN_NO_CONTENT, WARN_NO_PIXELS],
        )

    r_hist = np.bincount(rgba[:, 0], minlength=256)
    g_hist = np.bincount(rgba[:, 1], minlength=256)
    b_hist = np.bincount(rgba[:, 2], minlength=256)
    a_hist = np.bincount(rgba[:, 3], minlength=256)
    levels = np.arange(256, dtype=np.float64)

    avg_red = float(r_hist @ levels) / total
    avg_green = float(g_hist @ levels) / total
    avg_blue = float(b_hist @ levels) / total
    avg_alpha = float(a_hist @ levels) / total

    f0_hist = g_hist[: DIELECTRIC_MAX + 1]
    f0_count = int(f0_hist.sum())
    metal_hist = g_hist[DIELECTRIC_MAX + 1:]
    metal_count = int(metal_hist.sum())

    avg_f0_encoded = None
    avg_f0_percent = None
    if f0_count:
        avg_f0_encoded = float(f0_hist @ levels[: DIELECTRIC_MAX + 1]) / f0_count
        avg_f0_percent = avg_f0_encoded / 255.0 * 100.0

    top_metal_code = None
    top_metal_name = None
    if metal_count:
        # argmax returns the first maximum, so ties resolve to the lowest code.
        top_metal_code = int(np.argmax(metal_hist)) + DIELECTRIC_MAX + 1
        top_metal_name = GREEN_METAL_CODES.get(top_metal_code)

    porosity_hist = b_hist[: POROSITY_MAX + 1]
    sss_hist = b_hist[SSS_MIN:]
    porosity_count = int(porosity_hist.sum())
    sss_count = int(sss_hist.sum())
    avg_porosity_pct = None
    avg_sss_pct = None
    if porosity_count:
        norm = float(porosity_hist @ (levels[: POROSITY_MAX + 1] / POROSITY_MAX))
        avg_porosity_pct = norm / porosity_count * 100.0
    if sss_count:
        norm = float(sss_hist @ ((levels[SSS_MIN:] - SSS_MIN) / (255 - SSS_MIN)))
        avg_sss_pct = norm / sss_count * 100.0

    closest = None
    if avg_f0_encoded is not None:
        entry, diff = closest_entry(avg_f0_encoded)
        closest = MaterialMatch(
            name=entry.name, category=entry.category, f0=entry.f0,
            reflectance=entry.reflectance, difference=diff, ior=entry.ior,
            rgb_f0=entry.rgb_f0, notes=entry.notes,
        )

    green_f0_pct = _pct(f0_count, total)
    green_metal_pct = _pct(metal_count, total)
    porosity_pct = _pct(porosity_count, total)
    sss_pct = _pct(sss_count, total)

    warnings = []
    if green_f0_pct == 0 and green_metal_pct == 0:
        warnings.append(WARN_NO_CONTENT)
    if green_f0_pct > 0 and green_metal_pct > 0:
        warnings.append(WARN_MIXED_GREEN)
    if top_metal_code is not None and not (230 <= top_metal_code <= 237):
        warnings.append(WARN_NONSTANDARD_METAL)
    # avg_f0_encoded never exceeds DIELECTRIC_MAX; drift uses the whole channel.
    if f0_count and avg_green > DIELECTRIC_MAX:
        warnings.append(WARN_F0_DRIFT)
    if avg_alpha >= 250 and avg_alpha != 255:
        warnings.append(WARN_NEAR_EMISSIVE)
    if sss_pct > 0 and porosity_pct > 0:
        warnings.append(WARN_MIXED_BLUE)

    red_distribution = {int(v): int(c) for v, c in enumerate(r_hist) if c}

    report = MaterialReport(
        width=buf.width,
        height=buf.height,
        avg_red=avg_red,
        avg_red_pct=_pct(avg_red, 255),
        avg_green=avg_green,
        avg_blue=avg_blue,
        avg_alpha=avg_alpha,
        green_f0_coverage_pct=green_f0_pct,
        green_metal_coverage_pct=green_metal_pct,
        avg_f0_encoded=avg_f0_encoded,
        avg_f0_percent=avg_f0_percent,
        top_metal_code=top_metal_code,
        top_metal_name=top_metal_name,
        porosity_coverage_pct=porosity_pct,
        sss_coverage_pct=sss_pct,
        avg_porosity_pct=avg_porosity_pct,
        avg_sss_pct=avg_sss_pct,
        avg_emission_pct=_emission_pct(avg_alpha),
        closest_material=closest,
        red_distribution=red_distribution,
        warnings=warnings,
    )
    logger.debug(
        "Analyzed %dx%d specular buffer: f0=%.1f%% metal=%.1f%% warnings=%d",
        buf.width, buf.height, green_f0_pct, green_metal_pct, len(warnings),
    )
    return report
