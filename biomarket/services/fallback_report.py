"""Rule-based market report built only from the facts payload.

Used whenever the model path fails; the output has the same shape as a
validated model report.
"""
from __future__ import annotations

from typing import Any

from biomarket.services.normalize import to_float, to_int

NOT_AVAILABLE = "Non disponible"


def potential_label(growth_pct: float | None) -> str:
    if growth_pct is None:
        return "non disponible"
    if growth_pct >= 8:
        return "très élevé"
    if growth_pct >= 4:
        return "élevé"
    if growth_pct >= 1:
        return "modéré"
    return "sous tension"


def growth_trend(value: float | None) -> str:
    if value is None:
        return NOT_AVAILABLE
    if value >= 15:
        return "Explosive"
    if value >= 10:
        return "Forte"
    if value >= 5:
        return "Modérée"
    if value >= 0:
        return "Faible"
    return "Décroissante"


def actors_trend(count: int | None) -> str:
    if not count:
        return NOT_AVAILABLE
    if count > 300:
        return "Croissant"
    if count > 150:
        return "Dynamique"
    if count > 50:
        return "Stable"
    return "Limité"


def format_pct(value: float | None) -> str:
    return NOT_AVAILABLE if value is None else f"{value:+.1f}%"


def format_amount(value: float | None, unit: str) -> str:
    if value is None:
        return NOT_AVAILABLE
    return f"{value:,.1f}".replace(",", " ") + f" {unit}"


def _series(labels: list[Any], values: list[Any]) -> dict[str, list[Any]]:
    return {"labels": labels, "values": values}


def _g(d: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(d, dict):
            return None
        d = d.get(key)
    return d


def build_kpis(facts: dict[str, Any]) -> dict[str, Any]:
    growth = to_float(_g(facts, "sales", "average_growth_pct"))
    market = to_float(_g(facts, "trade", "latest_total_m_eur"))
    actors = to_int(_g(facts, "competition", "total_operators")) or 0
    potential = potential_label(growth)
    return {
        "marche": format_amount(market, "M€"),
        "croissance": format_pct(growth),
        "acteurs": actors,
        "potentiel": potential,
        "trends": {
            "marche": growth_trend(to_float(_g(facts, "trade", "growth_pct"))),
            "croissance": growth_trend(growth),
            "acteurs": actors_trend(actors),
            "potentiel": potential.capitalize(),
        },
    }


def _risk_sentence(risks: dict[str, Any]) -> str | None:
    parts = []
    pollution = risks.get("pollution") or {}
    flood = risks.get("flood") or {}
    disasters = risks.get("disaster_history") or {}
    if pollution.get("total") or pollution.get("label"):
        parts.append(f"pollution des sols {pollution.get('label') or str(pollution.get('total')) + ' site(s)'}")
    if flood.get("total") or flood.get("label"):
        parts.append(f"zones inondables {flood.get('label') or str(flood.get('total')) + ' zone(s)'}")
    if disasters.get("total"):
        parts.append(f"{disasters['total']} arrêté(s) de catastrophe naturelle")
    if not parts:
        return None
    return "Risques environnementaux identifiés : " + ", ".join(parts) + "."


def build_summary(facts: dict[str, Any], kpis: dict[str, Any], segment: str, place: str) -> str:
    geo = facts.get("place") or {}
    city = geo.get("city") or place
    where = f"{city} ({geo['region']})" if geo.get("region") else city
    text = f'Cette analyse du segment "{segment}" à {where} '
    growth = to_float(_g(facts, "sales", "average_growth_pct"))
    actors = kpis["acteurs"]
    if actors or growth is not None:
        bits = []
        if actors:
            bits.append(f"{actors} opérateurs bio recensés localement")
        if growth is not None:
            bits.append(f"des ventes en évolution moyenne de {format_pct(growth)} par an")
        text += "révèle " + " et ".join(bits) + f", pour un potentiel {kpis['potentiel']}. "
    else:
        text += "repose sur des données locales limitées ; les indicateurs de marché ne sont pas disponibles. "
    if kpis["marche"] != NOT_AVAILABLE:
        text += f"Les échanges commerciaux bio représentent {kpis['marche']} sur la dernière année connue. "
    risk = _risk_sentence(facts.get("risks") or {})
    if risk:
        text += risk + " "
    if growth is not None and growth < 1:
        text += "Le marché présente des défis importants nécessitant une stratégie adaptée."
    else:
        text += "Le marché présente des opportunités à confirmer par une étude terrain."
    return text.strip()


def build_key_points(facts: dict[str, Any]) -> list[str]:
    points: list[str] = []
    geo = facts.get("place") or {}
    competition = facts.get("competition") or {}
    population = to_int(geo.get("population"))
    if population:
        points.append(f"{geo.get('city')} compte {population:,} habitants.".replace(",", " "))

    total = to_int(competition.get("total_operators")) or 0
    if total:
        line = f"{total} opérateurs bio recensés, dont {competition.get('direct_competitors') or 0} concurrents directs"
        top = competition.get("top_activities") or []
        if top:
            line += f" ; activité dominante : {top[0]['label']} ({top[0]['count']})"
        points.append(line + ".")

    sales = facts.get("sales") or {}
    growth = to_float(sales.get("average_growth_pct"))
    if growth is not None:
        details = sales.get("details") or []
        span = f" entre {details[0]['year']} et {details[-1]['year']}" if len(details) >= 2 else ""
        points.append(f"Les ventes bio évoluent en moyenne de {format_pct(growth)} par an{span}.")

    regional = _g(facts, "production", "regional") or []
    if regional:
        last = regional[-1]
        line = f"La production régionale atteint {format_amount(to_float(last.get('surface_ha')), 'ha')}"
        if last.get("farms"):
            line += f" pour {last['farms']} fermes"
        points.append(line + f" en {last['year']}.")

    risk = _risk_sentence(facts.get("risks") or {})
    if risk:
        points.append(risk)

    if not points:
        points.append("Données locales insuffisantes : une collecte terrain est nécessaire pour qualifier le marché.")
    return points


def build_recommendations(facts: dict[str, Any], segment: str) -> list[dict[str, str]]:
    competition = facts.get("competition") or {}
    total = to_int(competition.get("total_operators")) or 0
    top = competition.get("top_activities") or []
    recos = [
        {
            "title": "Structurer l'offre locale",
            "desc": f'Nouer des partenariats avec les producteurs et distributeurs locaux du segment "{segment}".',
            "comment": (
                f"{total} opérateurs recensés, principalement en {top[0]['label']}."
                if total and top
                else "Peu d'opérateurs recensés : l'approvisionnement local reste à construire."
            ),
        }
    ]
    growth = to_float(_g(facts, "sales", "average_growth_pct"))
    if growth is not None:
        recos.append(
            {
                "title": "Accélérer sur la croissance des ventes",
                "desc": "Prioriser les circuits de vente les plus dynamiques et ajuster l'offre en conséquence.",
                "comment": (
                    f"Croissance moyenne des ventes de {format_pct(growth)} : "
                    + ("un rythme favorable à un déploiement progressif." if growth >= 1 else "une approche prudente par étapes s'impose.")
                ),
            }
        )
    risk = _risk_sentence(facts.get("risks") or {})
    recos.append(
        {
            "title": "Maîtriser les risques environnementaux",
            "desc": "Intégrer les risques de pollution et d'inondation dans le choix des sites et l'assurance.",
            "comment": risk or "Aucun risque majeur recensé, une vérification locale reste recommandée.",
        }
    )
    return recos


def build_actors(facts: dict[str, Any], limit: int = 6) -> list[dict[str, Any]]:
    return [
        {
            "name": op.get("name"),
            "type": op.get("activity"),
            "location": op.get("city"),
            "labels": list(op.get("labels") or []),
        }
        for op in (_g(facts, "competition", "sample_operators") or [])[:limit]
    ]


def build_chart_data(facts: dict[str, Any]) -> dict[str, Any]:
    competition = facts.get("competition") or {}
    activities = competition.get("top_activities") or []
    categories = competition.get("top_categories") or []
    trade = _g(facts, "trade", "details") or []
    sales = _g(facts, "sales", "details") or []
    production = _g(facts, "production", "regional") or []
    return {
        "actorsByActivity": _series([a["label"] for a in activities], [a["count"] for a in activities]),
        "actorsByCategory": _series([c["label"] for c in categories], [c["count"] for c in categories]),
        "tradeFlow": _series([str(d["year"]) for d in trade], [d["total_value_m_eur"] for d in trade]),
        "salesGrowth": _series([str(d["year"]) for d in sales], [d["average_growth_pct"] for d in sales]),
        "production": _series([str(d["year"]) for d in production], [d.get("surface_ha") for d in production]),
    }


def build_fallback_report(facts: dict[str, Any], segment: str, place: str, model_label: str) -> dict[str, Any]:
    facts = facts if isinstance(facts, dict) else {}
    kpis = build_kpis(facts)
    return {
        "summary": build_summary(facts, kpis, segment, place),
        "kpis": kpis,
        "keyPoints": build_key_points(facts),
        "actors": build_actors(facts),
        "recommendations": build_recommendations(facts, segment),
        "chartData": build_chart_data(facts),
        "metadata": {"model": model_label, "source": "fallback"},
    }
