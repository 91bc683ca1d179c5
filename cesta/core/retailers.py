from __future__ import annotations

import re
from typing import Dict, Iterable, List, Optional
from urllib.parse import quote

from cesta.schemas.units import SourceName

SOURCE_LABELS: Dict[SourceName, str] = {
    SourceName.PREZUNIC: "Prezunic",
    SourceName.ZONASUL: "Zona Sul",
    SourceName.EXTRA: "Extra",
    SourceName.SUPERMARKETDELIVERY: "Supermarket Delivery",
}

# VTEX storefronts (catalog + intelligent search APIs live under these)
VTEX_BASE_URLS: Dict[SourceName, str] = {
    SourceName.PREZUNIC: "https://www.prezunic.com.br",
    SourceName.ZONASUL: "https://www.zonasul.com.br",
    SourceName.EXTRA: "https://www.extramercado.com.br",
}

# Human-facing search pages (not the APIs the collaborators call)
SOURCE_SEARCH_URLS: Dict[SourceName, str] = {
    SourceName.PREZUNIC: "https://www.prezunic.com.br/busca/?ft={term}",
    SourceName.ZONASUL: "https://www.zonasul.com.br/busca?ft={term}",
    SourceName.EXTRA: "https://www.extramercado.com.br/busca?ft={term}",
    SourceName.SUPERMARKETDELIVERY: "https://www.supermarketdelivery.com.br/search?term={term}",
}

SOURCE_CATEGORIES: Dict[SourceName, List[str]] = {
    SourceName.PREZUNIC: [
        "Hortifruti",
        "Açougue e Peixaria",
        "Padaria",
        "Laticínios e Frios",
        "Mercearia",
        "Bebidas",
        "Congelados",
        "Limpeza",
        "Higiene e Beleza",
        "Bebê e Infantil",
        "Pet Shop",
    ],
    SourceName.ZONASUL: [
        "Hortifruti",
        "Carnes, Aves e Peixes",
        "Frios e Laticínios",
        "Padaria",
        "Mercearia e Gastronomia",
        "Bebidas e Adega",
        "Congelados",
        "Limpeza da Casa",
        "Higiene e Beleza",
        "Bebês e Crianças",
        "Pet Shop",
        "Utilidades Domésticas",
    ],
    SourceName.EXTRA: [
        "Açougue e Peixaria",
        "Frios e Laticínios",
        "Padaria",
        "Hortifruti",
        "Mercearia",
        "Bebidas",
        "Congelados",
        "Limpeza",
        "Higiene e Beleza",
        "Bebê",
        "Pet Shop",
        "Utilidades Domésticas",
    ],
    SourceName.SUPERMARKETDELIVERY: [
        "Hortifruti",
        "Carnes e Peixes",
        "Mercearia",
        "Laticínios e Frios",
        "Padaria e Biscoitos",
        "Bebidas",
        "Congelados",
        "Limpeza",
        "Higiene e Beleza",
        "Bebê",
        "Pet Shop",
        "Utilidades e Bazar",
    ],
}


def normalize_source_name(source: Optional[str]) -> Optional[SourceName]:
    """
    Map free-form store strings to a SourceName:
      - "Zona Sul", "zonasul.com.br", "ZONA-SUL" => zonasul
      - "Extra Mercado" => extra
      - "Supermarket Delivery" => supermarketdelivery
    Returns None for stores we don't scrape.
    """
    if not source:
        return None

    s = source.strip().lower()
    s = re.sub(r"\.com(\.br)?$", "", s)
    s = re.sub(r"^www\.", "", s)
    compact = re.sub(r"[^a-z]", "", s)

    if "prezunic" in compact:
        return SourceName.PREZUNIC
    if "zonasul" in compact:
        return SourceName.ZONASUL
    if "supermarketdelivery" in compact:
        return SourceName.SUPERMARKETDELIVERY
    if compact.startswith("extra"):
        return SourceName.EXTRA
    return None


def resolve_sources(names: Iterable[str]) -> List[SourceName]:
    """Known sources in the given order, without duplicates."""
    out: List[SourceName] = []
    for name in names:
        src = normalize_source_name(name)
        if src is not None and src not in out:
            out.append(src)
    return out


def make_source_search_url(source: SourceName, term: str) -> str:
    """Storefront search page for `term`: zonasul + "pão" -> .../busca?ft=p%C3%A3o"""
    return SOURCE_SEARCH_URLS[source].format(term=quote(term, safe=""))
