"""Reference branches and a few sample incidents for a fresh installation."""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Tuple

from .classifier import ClassificationResult
from .models import Branch, IncidentStatus, Priority, fold

logger = logging.getLogger(__name__)

# (name, region, brand, address, image)
BRANCH_ROWS: List[Tuple[str, str, str, str, str]] = [
    ("KFC Xalapa 1", "Xalapa", "KFC", "123 Colonel St, Metropolis, USA", "branch-1"),
    ("KFC Xalapa 2", "Xalapa", "KFC", "789 Zinger Ln, Star City, USA", "branch-3"),
    ("KFC Xalapa 3", "Xalapa", "KFC", "212 Bucket Rd, Coast City, USA", "branch-5"),
    ("KFC Xalapa 4", "Xalapa", "KFC", "456 Gravy Ave, Gotham, USA", "branch-2"),
    ("Dairy Queen Villa Magna", "San Luis", "DQ", "Av. Hernán Cortes, San Luis, SLP", "branch-4"),
    ("Dairy Queen Aconcagua", "San Luis", "DQ", "Aconcagua, San Luis, SLP", "branch-6"),
    ("Dairy Queen Chapultepec", "San Luis", "DQ", "Chapultepec, San Luis, SLP", "branch-1"),
    ("Dairy Queen - Centro", "San Luis", "DQ", "Av Himno Nacional, San Luis, SLP", "branch-3"),
    ("Dairy Queen Sendero", "San Luis", "DQ", "Av Industrias, San Luis, SLP", "branch-5"),
    ("KFC Merida 1", "Merida", "KFC", "Calle 60, Merida, YUC", "branch-1"),
    ("KFC Merida 2", "Merida", "KFC", "Paseo de Montejo, Merida, YUC", "branch-2"),
    ("KFC Merida 3", "Merida", "KFC", "Av. Itzaes, Merida, YUC", "branch-3"),
    ("KFC Merida 4", "Merida", "KFC", "Plaza Altabrisa, Merida, YUC", "branch-4"),
    ("KFC Merida 5", "Merida", "KFC", "Gran Plaza, Merida, YUC", "branch-5"),
    ("DQ Merida 1", "Merida", "DQ", "City Center, Merida, YUC", "branch-6"),
    ("DQ Merida 2", "Merida", "DQ", "Paseo 60, Merida, YUC", "branch-1"),
    ("DQ Merida 3", "Merida", "DQ", "La Isla, Merida, YUC", "branch-2"),
    ("DQ Merida 4", "Merida", "DQ", "Macroplaza, Merida, YUC", "branch-3"),
    ("DQ Merida 5", "Merida", "DQ", "Galerias Merida, Merida, YUC", "branch-4"),
    ("KFC Puebla 1", "Puebla", "KFC", "Angelopolis, Puebla, PUE", "branch-5"),
    ("KFC Puebla 2", "Puebla", "KFC", "Zocalo, Puebla, PUE", "branch-6"),
    ("KFC Puebla 3", "Puebla", "KFC", "Av. Juarez, Puebla, PUE", "branch-1"),
    ("KFC Puebla 4", "Puebla", "KFC", "Plaza Dorada, Puebla, PUE", "branch-2"),
    ("KFC Puebla 5", "Puebla", "KFC", "Galerias Serdan, Puebla, PUE", "branch-3"),
    ("DQ Puebla 1", "Puebla", "DQ", "Explanada, Puebla, PUE", "branch-4"),
    ("DQ Puebla 2", "Puebla", "DQ", "Solesta, Puebla, PUE", "branch-5"),
    ("DQ Puebla 3", "Puebla", "DQ", "Cruz del Sur, Puebla, PUE", "branch-6"),
    ("DQ Puebla 4", "Puebla", "DQ", "Parque Puebla, Puebla, PUE", "branch-1"),
    ("DQ Puebla 5", "Puebla", "DQ", "Plaza San Pedro, Puebla, PUE", "branch-2"),
    ("KFC Veracruz 1", "Veracruz", "KFC", "Plaza Las Americas, Boca del Rio, VER", "branch-1"),
    ("KFC Veracruz 2", "Veracruz", "KFC", "Malecon, Veracruz, VER", "branch-2"),
    ("KFC Veracruz 3", "Veracruz", "KFC", "Plaza Mocambo, Boca del Rio, VER", "branch-3"),
    ("KFC Veracruz 4", "Veracruz", "KFC", "Av. Diaz Miron, Veracruz, VER", "branch-4"),
    ("KFC Veracruz 5", "Veracruz", "KFC", "Plaza Crystal, Veracruz, VER", "branch-5"),
    ("KFC Veracruz 6", "Veracruz", "KFC", "Plaza El Dorado, Boca del Rio, VER", "branch-6"),
    ("KFC Veracruz 7", "Veracruz", "KFC", "Av. Rafael Cuervo, Veracruz, VER", "branch-1"),
    ("DQ Veracruz 1", "Veracruz", "DQ", "Plaza Andamar, Boca del Rio, VER", "branch-2"),
    ("DQ Veracruz 2", "Veracruz", "DQ", "Plaza Vela, Boca del Rio, VER", "branch-3"),
    ("DQ Veracruz 3", "Veracruz", "DQ", "Plaza Sol, Boca del Rio, VER", "branch-4"),
    ("DQ Veracruz 4", "Veracruz", "DQ", "Zocalo, Veracruz, VER", "branch-5"),
    ("DQ Veracruz 5", "Veracruz", "DQ", "Reforma, Veracruz, VER", "branch-6"),
    ("DQ Veracruz 6", "Veracruz", "DQ", "Costa de Oro, Boca del Rio, VER", "branch-1"),
    ("DQ Veracruz 7", "Veracruz", "DQ", "Plaza Rio, Boca del Rio, VER", "branch-2"),
    ("DQ Veracruz 8", "Veracruz", "DQ", "Av. Ejercito Mexicano, Boca del Rio, VER", "branch-3"),
]

# branch name -> sample incident
SAMPLE_INCIDENTS: Dict[str, ClassificationResult] = {
    "KFC Xalapa 1": ClassificationResult(
        title="Fuga de agua en el baño",
        category="Instalaciones",
        priority=Priority.MEDIUM,
        priority_reasoning="Medium: the restroom is affected but the branch keeps operating.",
        status=IncidentStatus.OPEN,
        description="Se reporta una fuga de agua constante en el baño de hombres, cerca del lavamanos.",
    ),
    "Dairy Queen Villa Magna": ClassificationResult(
        title="Falla en máquina de helado",
        category="Equipo de Cocina",
        priority=Priority.HIGH,
        priority_reasoning="High: the main product line cannot be served.",
        status=IncidentStatus.IN_PROGRESS,
        description="La máquina de helado suave no enfría correctamente y el producto sale derretido.",
    ),
    "KFC Merida 1": ClassificationResult(
        title="Outlet quemado en la cocina",
        category="Instalaciones",
        priority=Priority.HIGH,
        priority_reasoning="High: the main fryer has no power and is smoking.",
        status=IncidentStatus.OPEN,
        description="El enchufe utilizado para la freidora de pollo principal está quemado y echando humo.",
    ),
}


def slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", fold(name)).strip("-")


def initial_branches() -> List[Branch]:
    return [
        Branch(id=slugify(name), name=name, region=region, brand=brand, address=address, image_ref=image)
        for name, region, brand, address, image in BRANCH_ROWS
    ]


def seed_branches(branches) -> int:
    """Insert the reference branches into an empty branch repository. Returns how many were added."""
    if not branches.is_empty():
        logger.info("Branches already present; skipping seed")
        return 0
    rows = initial_branches()
    for b in rows:
        branches.add(b)
    logger.info(f"Seeded {len(rows)} branches")
    return len(rows)


def seed_incidents(branches, incidents, assembler) -> int:
    """Add the sample incidents once; skipped when any incident exists."""
    if incidents.count() > 0:
        return 0
    by_name = {b.name: b for b in branches.list_all()}
    added = 0
    for name, sample in SAMPLE_INCIDENTS.items():
        branch = by_name.get(name)
        if branch is None:
            continue
        incidents.create(assembler.assemble(branch.id, sample))
        added += 1
    logger.info(f"Seeded {added} sample incidents")
    return added
