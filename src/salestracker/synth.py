from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import numpy as np
import pandas as pd

from .types import CATEGORIES, QUARTERS
from .validation import ProjectIn, TargetIn

PICS = ["Andi Saputra", "Budi Santoso", "Citra Lestari", "Dewi Anggraini", "Eko Prasetyo", "Fajar Nugroho"]
PRODUCTS = ["NetApp", "VMware", "Veeam", "Fortinet", "Cisco", "Microsoft 365", ""]
PARTNERS = ["Mitra Data Nusantara", "Solusi Prima", "Inti Teknologi", "Sinar Integrasi"]
END_USERS = ["Bank Sentosa", "PT Kargo Jaya", "Dinas Kominfo", "RS Harapan", "Universitas Merdeka"]


@dataclass(frozen=True)
class SynthSpec:
    year: int
    projects: int
    seed: int


def generate_synthetic_projects(spec: SynthSpec) -> tuple[list[ProjectIn], TargetIn]:
    rng = np.random.default_rng(spec.seed)

    projects: list[ProjectIn] = []
    for _ in range(spec.projects):
        quarter = str(rng.choice(QUARTERS))
        category = str(rng.choice(CATEGORIES, p=[0.5, 0.35, 0.15]))
        # Implementation deals are larger; round to the nearest Rp 100.000.
        scale = 180_000_000 if category == "Implementation" else 60_000_000
        amount = max(float(rng.lognormal(np.log(scale), 0.6)), 5_000_000.0)
        projects.append(
            ProjectIn(
                business_partner=str(rng.choice(PARTNERS)),
                end_user=str(rng.choice(END_USERS)),
                category=category,
                product=str(rng.choice(PRODUCTS)) or None,
                pic=str(rng.choice(PICS)),
                nett_gp=int(round(amount, -5)),
                quarter=quarter,
                year=spec.year,
            )
        )

    total = sum(p.nett_gp for p in projects)
    # Target is set ~10% above what the synthetic year actually delivers.
    quarter_target = int(round(total * 1.1 / 4, -6))
    target = TargetIn(
        year=spec.year,
        q1_target=quarter_target,
        q2_target=quarter_target,
        q3_target=quarter_target,
        q4_target=quarter_target,
        yearly_target=max(quarter_target * 4, 1),
    )
    return projects, target


def write_synthetic_workbook(path: str | Path, spec: SynthSpec) -> Path:
    """Write synthetic projects in the bulk-import layout."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    projects, _ = generate_synthetic_projects(spec)
    df = pd.DataFrame(
        [
            {
                "PID": "",
                "Business Partner": p.business_partner,
                "End User": p.end_user,
                "Category": p.category,
                "Product": p.product or "",
                "PIC": p.pic,
                "Nett GP": p.nett_gp,
                "Quarter": p.quarter,
                "Year": p.year,
                "Keterangan": "",
            }
            for p in projects
        ]
    )
    df.to_excel(path, index=False, sheet_name="Projects", engine="openpyxl")
    return path
