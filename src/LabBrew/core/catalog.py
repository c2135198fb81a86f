"""Static LabPBR material catalog and green-channel metal codes."""

import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

GREEN_METAL_CODES: Dict[int, str] = {
    230: "Iron",
    231: "Gold",
    232: "Aluminum",
    233: "Chrome",
    234: "Copper",
    235: "Lead",
    236: "Platinum",
    237: "Silver",
}

DIELECTRIC_MAX = 229
ALBEDO_METAL_CODE = 255
POROSITY_MAX = 64
SSS_MIN = 65


def f0_encode(f0_percent: float) -> int:
    """Encode an F0 percentage into the 0-255 green channel scale."""
    return int(math.floor(f0_percent * 2.55 + 0.5))


def f0_percent_from_ior(ior: float) -> float:
    """Return normal-incidence reflectance (percent) for an index of refraction."""
    r = (ior - 1.0) / (ior + 1.0)
    return r * r * 100.0


@dataclass(frozen=True)
class CatalogEntry:
    """One material in the catalog."""

    name: str
    category: str
    f0: int
    f0_percent: Optional[float] = None
    ior: Optional[float] = None
    rgb_f0: Optional[Tuple[int, int, int]] = None
    notes: Optional[str] = None

    @property
    def reflectance(self) -> Optional[float]:
        if self.f0_percent is not None:
            return self.f0_percent
        if self.ior is not None:
            return f0_percent_from_ior(self.ior)
        return None


def _dielectric(category, name, ior, notes=None) -> CatalogEntry:
    pct = f0_percent_from_ior(ior)
    return CatalogEntry(
        name=name, category=category, f0=f0_encode(pct),
        f0_percent=pct, ior=ior, notes=notes,
    )


def _metal(name, code, rgb, notes) -> CatalogEntry:
    return CatalogEntry(name=name, category="metals", f0=code, rgb_f0=rgb, notes=notes)


_DIELECTRICS = {
    "liquids": [
        ("Water (20°C)", 1.333, "Clear fresh water"),
        ("Ice (−10°C)", 1.31, None),
        ("Milk (turbid)", 1.35, "Scattering dominates; F0 driven by base fluid"),
        ("Ethanol (alcohol)", 1.361, None),
        ("Vegetable oil", 1.47, None),
        ("Glycerin (~75% sugar-like)", 1.473, None),
        ("Sucrose solution (~50%)", 1.42, "Representative for syrups"),
    ],
    "surfaces": [
        ("PTFE (Teflon)", 1.35, None),
        ("Human skin (epidermis)", 1.50, "Topcoat only; SSS dominates appearance"),
        ("Rubber", 1.52, None),
        ("Cellulose (paper/wood fibers)", 1.47, None),
        ("Polystyrene", 1.59, None),
        ("Nylon", 1.53, None),
        ("Ceramic glaze (gloss)", 1.52, None),
        ("Asphalt (binder)", 1.52, "Macro-rough; low spec visually"),
    ],
    "plastics": [
        ("PMMA (Acrylic/Plexiglas)", 1.49, None),
        ("Polycarbonate (PC)", 1.585, None),
        ("PVC", 1.54, None),
        ("ABS", 1.54, None),
    ],
    "gems": [
        ("Quartz (SiO₂)", 1.544, None),
        ("Halite (rock salt)", 1.544, None),
        ("Amethyst (quartz)", 1.544, None),
        ("Amber", 1.55, None),
        ("Jadeite", 1.66, None),
        ("Emerald (beryl)", 1.58, None),
        ("Sapphire (corundum)", 1.76, None),
        ("Ruby (corundum)", 1.76, None),
        ("Topaz", 1.62, None),
        ("Cubic zirconia", 2.15, None),
        ("Diamond", 2.417, None),
    ],
    "transparents": [
        ("Fused silica", 1.458, None),
        ("Borosilicate (Pyrex)", 1.47, None),
        ("Soda-lime glass", 1.52, None),
        ("Flint glass (dense)", 1.62, None),
        ("Crystal (lead glass)", 1.70, None),
    ],
    "human": [
        ("Tears/Saliva (aqueous)", 1.336, None),
        ("Cornea", 1.376, None),
        ("Eye lens", 1.406, None),
        ("Tooth dentin", 1.54, None),
        ("Tooth enamel", 1.62, None),
        ("Hair (surface)", 1.55, None),
    ],
    "building": [
        ("Concrete (binder)", 1.52, "Macro-rough, porous"),
        ("Granite (polished)", 1.60, None),
        ("Marble (polished)", 1.49, None),
        ("Porcelain tile (glaze)", 1.52, None),
    ],
    "woods": [
        ("Bare wood (cellulose)", 1.47, "Finish changes gloss only"),
        ("Varnished wood", 1.52, None),
        ("Oiled wood", 1.47, None),
    ],
    "paints": [
        ("Matte paint (binder)", 1.52, "Microfacet roughness high"),
        ("Gloss clearcoat", 1.52, None),
    ],
}

_METALS = [
    ("Iron", 230, (196, 199, 199), "Gray, slightly bluish"),
    ("Gold", 231, (255, 215, 0), "Rich yellow tone"),
    ("Aluminum", 232, (224, 223, 219), "Light gray, near-white"),
    ("Chrome", 233, (236, 236, 236), "Neutral reflective silver"),
    ("Copper", 234, (184, 115, 51), "Warm reddish-brown"),
    ("Lead", 235, (140, 140, 140), "Dull gray, low reflectance"),
    ("Platinum", 236, (229, 228, 226), "Pale silvery-white"),
    ("Silver", 237, (245, 245, 245), "Bright, nearly white metal"),
]

MATERIAL_CATALOG: Dict[str, List[CatalogEntry]] = {
    category: [_dielectric(category, *row) for row in rows]
    for category, rows in _DIELECTRICS.items()
}
MATERIAL_CATALOG["metals"] = [_metal(*row) for row in _METALS]


def iter_catalog():
    """Yield every catalog entry in category order."""
    for entries in MATERIAL_CATALOG.values():
        yield from entries


def closest_entry(f0_encoded: float) -> Tuple[CatalogEntry, float]:
    """Return the entry whose encoded F0 is nearest, and the difference.

    Ties keep the first entry in catalog order.
    """
    best = None
    best_diff = math.inf
    for entry in iter_catalog():
        diff = abs(f0_encoded - entry.f0)
        if diff < best_diff:
            best, best_diff = entry, diff
    return best, best_diff
