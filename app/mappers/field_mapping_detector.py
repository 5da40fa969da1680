"""
app/mappers/field_mapping_detector.py

Language-aware detection of semantic event fields from column headers.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from app.domain.value_parsing import parse_coordinate, parse_timestamp

logger = logging.getLogger(__name__)

BASE_LANGUAGE = "eng"

SEMANTIC_FIELDS: tuple[str, ...] = (
    "title",
    "description",
    "location_name",
    "timestamp",
    "location",
    "latitude",
    "longitude",
)

# Ordered most specific first; earlier patterns score higher.
FIELD_PATTERNS: dict[str, dict[str, tuple[str, ...]]] = {
    "title": {
        "eng": (r"^title$", r"^name$", r"^event.*name$", r"^event.*title$", r"^label$", r"^event$"),
        "deu": (r"^titel$", r"^name$", r"^bezeichnung$", r"^veranstaltung.*name$", r"^veranstaltung.*titel$", r"^veranstaltung$"),
        "fra": (r"^titre$", r"^nom$", r"^événement.*nom$", r"^événement.*titre$", r"^intitulé$", r"^événement$"),
        "spa": (r"^título$", r"^nombre$", r"^evento.*nombre$", r"^evento.*título$", r"^denominación$", r"^evento$"),
        "ita": (r"^titolo$", r"^nome$", r"^evento.*nome$", r"^evento.*titolo$", r"^denominazione$", r"^evento$"),
        "nld": (r"^titel$", r"^naam$", r"^evenement.*naam$", r"^evenement.*titel$", r"^benaming$", r"^evenement$"),
        "por": (r"^título$", r"^nome$", r"^evento.*nome$", r"^evento.*título$", r"^denominação$", r"^evento$"),
    },
    "description": {
        "eng": (r"^description$", r"^details$", r"^summary$", r"^notes$", r"^text$", r"^content$", r"^event.*description$"),
        "deu": (r"^beschreibung$", r"^details$", r"^zusammenfassung$", r"^notizen$", r"^text$", r"^inhalt$", r"^veranstaltung.*beschreibung$"),
        "fra": (r"^description$", r"^détails$", r"^résumé$", r"^notes$", r"^texte$", r"^contenu$", r"^événement.*description$"),
        "spa": (r"^descripción$", r"^detalles$", r"^resumen$", r"^notas$", r"^texto$", r"^contenido$", r"^evento.*descripción$"),
        "ita": (r"^descrizione$", r"^dettagli$", r"^sommario$", r"^note$", r"^testo$", r"^contenuto$", r"^evento.*descrizione$"),
        "nld": (r"^beschrijving$", r"^details$", r"^samenvatting$", r"^notities$", r"^tekst$", r"^inhoud$", r"^evenement.*beschrijving$"),
        "por": (r"^descrição$", r"^detalhes$", r"^resumo$", r"^notas$", r"^texto$", r"^conteúdo$", r"^evento.*descrição$"),
    },
    "location_name": {
        "eng": (r"^venue$", r"^venue.*name$", r"^place$", r"^place.*name$", r"^location$", r"^location.*name$", r"^site$", r"^spot$", r"^where$"),
        "deu": (r"^veranstaltungsort$", r"^ort$", r"^spielstätte$", r"^standort$", r"^platz$", r"^lokalität$", r"^wo$"),
        "fra": (r"^lieu$", r"^endroit$", r"^place$", r"^salle$", r"^site$", r"^où$"),
        "spa": (r"^lugar$", r"^sitio$", r"^local$", r"^sede$", r"^recinto$", r"^donde$", r"^dónde$"),
        "ita": (r"^luogo$", r"^posto$", r"^locale$", r"^sede$", r"^sito$", r"^dove$"),
        "nld": (r"^locatie$", r"^plaats$", r"^plek$", r"^zaal$", r"^site$", r"^waar$"),
        "por": (r"^local$", r"^lugar$", r"^recinto$", r"^sede$", r"^sítio$", r"^onde$"),
    },
    "timestamp": {
        "eng": (r"^date$", r"^timestamp$", r"^datetime$", r"^date.*time$", r"^created.*at$", r"^event.*date$", r"^event.*time$", r"^time$", r"^when$"),
        "deu": (r"^datum$", r"^zeitstempel$", r"^erstellt.*am$", r"^veranstaltung.*datum$", r"^veranstaltung.*zeit$", r"^zeit$", r"^wann$"),
        "fra": (r"^date$", r"^horodatage$", r"^créé.*le$", r"^événement.*date$", r"^événement.*heure$", r"^heure$", r"^quand$"),
        "spa": (r"^fecha$", r"^timestamp$", r"^creado.*el$", r"^evento.*fecha$", r"^evento.*hora$", r"^hora$", r"^cuándo$"),
        "ita": (r"^data$", r"^timestamp$", r"^creato.*il$", r"^evento.*data$", r"^evento.*ora$", r"^ora$", r"^quando$"),
        "nld": (r"^datum$", r"^tijdstempel$", r"^gemaakt.*op$", r"^evenement.*datum$", r"^evenement.*tijd$", r"^tijd$", r"^wanneer$"),
        "por": (r"^data$", r"^timestamp$", r"^criado.*em$", r"^evento.*data$", r"^evento.*hora$", r"^hora$", r"^quando$"),
    },
    "location": {
        "eng": (
            r"^address$", r"^addr$", r"^location$", r"^place$", r"^venue$", r"^city$", r"^town$", r"^region$",
            r"^area$", r"^street$", r"^full.*address$", r"^event.*location$", r"^event.*address$",
            r"^event.*place$", r"^postal.*address$",
        ),
        "deu": (
            r"^adresse$", r"^ort$", r"^standort$", r"^platz$", r"^veranstaltungsort$", r"^stadt$", r"^region$",
            r"^straße$", r"^strasse$", r"^vollständige.*adresse$", r"^veranstaltung.*ort$",
            r"^veranstaltung.*adresse$", r"^postadresse$",
        ),
        "fra": (
            r"^adresse$", r"^lieu$", r"^emplacement$", r"^place$", r"^salle$", r"^ville$", r"^région$", r"^rue$",
            r"^adresse.*complète$", r"^événement.*lieu$", r"^événement.*adresse$", r"^adresse.*postale$",
        ),
        "spa": (
            r"^dirección$", r"^lugar$", r"^ubicación$", r"^sitio$", r"^local$", r"^ciudad$", r"^región$", r"^calle$",
            r"^dirección.*completa$", r"^evento.*lugar$", r"^evento.*dirección$", r"^dirección.*postal$",
        ),
        "ita": (
            r"^indirizzo$", r"^luogo$", r"^posizione$", r"^posto$", r"^locale$", r"^città$", r"^regione$", r"^via$",
            r"^indirizzo.*completo$", r"^evento.*luogo$", r"^evento.*indirizzo$", r"^indirizzo.*postale$",
        ),
        "nld": (
            r"^adres$", r"^locatie$", r"^plaats$", r"^plek$", r"^zaal$", r"^stad$", r"^regio$", r"^straat$",
            r"^volledig.*adres$", r"^evenement.*locatie$", r"^evenement.*adres$", r"^postadres$",
        ),
        "por": (
            r"^endereço$", r"^local$", r"^localização$", r"^lugar$", r"^recinto$", r"^cidade$", r"^região$", r"^rua$",
            r"^endereço.*completo$", r"^evento.*local$", r"^evento.*endereço$", r"^endereço.*postal$",
        ),
    },
}

LATITUDE_PATTERNS: tuple[str, ...] = (
    r"^latitude$", r"^lat$", r"^.*[_\s]lat$", r"^lat[_\s].*$", r"^breitengrad$", r"^latitud$",
    r"^latitudine$", r"^breedtegraad$", r"^y$",
)
LONGITUDE_PATTERNS: tuple[str, ...] = (
    r"^longitude$", r"^lon$", r"^lng$", r"^long$", r"^.*[_\s](lon|lng)$", r"^(lon|lng)[_\s].*$",
    r"^längengrad$", r"^laengengrad$", r"^longitud$", r"^longitudine$", r"^lengtegraad$", r"^x$",
)

LATITUDE_BOUNDS = (-90.0, 90.0)
LONGITUDE_BOUNDS = (-180.0, 180.0)


def normalize_header(header: str) -> str:
    """
    Normalize a column name for flexible matching.
    """

    return "".join(ch for ch in header.strip().lower() if ch.isalnum())


def _compile(patterns: Sequence[str]) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(pattern, re.IGNORECASE) for pattern in patterns)


_COMPILED_FIELD_PATTERNS: dict[str, dict[str, tuple[re.Pattern[str], ...]]] = {
    field_name: {language: _compile(patterns) for language, patterns in by_language.items()}
    for field_name, by_language in FIELD_PATTERNS.items()
}
_COMPILED_COORDINATE_PATTERNS: dict[str, tuple[re.Pattern[str], ...]] = {
    "latitude": _compile(LATITUDE_PATTERNS),
    "longitude": _compile(LONGITUDE_PATTERNS),
}


# ---------------------------------------------------------------------------
# Type validation scores
# ---------------------------------------------------------------------------


def _string_share(stats: Mapping[str, Any]) -> float:
    occurrences = stats.get("occurrences") or 0
    if occurrences <= 0:
        return 0.0
    return (stats.get("type_distribution") or {}).get("string", 0) / occurrences


def _average_string_length(stats: Mapping[str, Any]) -> float | None:
    values = [value for value in stats.get("unique_samples") or () if isinstance(value, str)]
    if not values:
        return None
    return sum(len(value) for value in values) / len(values)


def _score_text(
    stats: Mapping[str, Any],
    *,
    min_string_share: float,
    bands: Sequence[tuple[float, float, float]],
    too_short: tuple[float, float],
    too_long: tuple[float, float] | None,
    marginal: float,
) -> float:
    if _string_share(stats) < min_string_share:
        return 0.0
    if not stats.get("unique_samples"):
        return 0.5
    average = _average_string_length(stats)
    if average is None:
        return 0.0
    for low, high, score in bands:
        if low <= average <= high:
            return score
    if average < too_short[0]:
        return too_short[1]
    if too_long is not None and average > too_long[0]:
        return too_long[1]
    return marginal


def _score_timestamp(stats: Mapping[str, Any]) -> float:
    occurrences = stats.get("occurrences") or 0
    if occurrences <= 0:
        return 0.0
    formats = stats.get("formats") or {}
    dated = formats.get("date", 0) + formats.get("datetime", 0)
    if dated > 0:
        return min(1.0, 0.7 + (dated / occurrences) * 0.3)

    samples = [value for value in stats.get("unique_samples") or () if isinstance(value, str)]
    if _string_share(stats) > 0.5 and samples:
        checked = samples[:10]
        parsed = sum(1 for value in checked if parse_timestamp(value) is not None)
        share = parsed / len(checked)
        if share >= 0.7:
            return 0.9
        if share >= 0.5:
            return 0.7
        if share >= 0.3:
            return 0.5

    numeric = stats.get("numeric")
    if numeric:
        if numeric["min"] > 1_000_000_000 and numeric["max"] < 9_999_999_999:
            return 0.8
        if numeric["min"] > 1_000_000_000_000 and numeric["max"] < 9_999_999_999_999:
            return 0.8
    return 0.0


def _score_coordinate(stats: Mapping[str, Any], bounds: tuple[float, float]) -> float:
    low, high = bounds
    numeric = stats.get("numeric")
    if numeric and low <= numeric["min"] and numeric["max"] <= high:
        return 1.0

    parsed_total = 0
    in_bounds = 0
    for sample in list(stats.get("unique_samples") or ())[:10]:
        if not isinstance(sample, str):
            continue
        value = parse_coordinate(sample)
        if value is None:
            continue
        parsed_total += 1
        if low <= value <= high:
            in_bounds += 1
    if parsed_total and in_bounds / parsed_total >= 0.7:
        return 0.8
    return 0.0


def validate_field_type(stats: Mapping[str, Any], field_name: str) -> float:
    """
    Score from 0 (disqualified) to 1 for how well a column's values fit a field.
    """

    if field_name == "title":
        return _score_text(
            stats,
            min_string_share=0.8,
            bands=((10, 100, 1.0), (5, 200, 0.8)),
            too_short=(3, 0.3),
            too_long=(500, 0.3),
            marginal=0.6,
        )
    if field_name == "description":
        return _score_text(
            stats,
            min_string_share=0.7,
            bands=((20, 500, 1.0), (10, 1000, 0.8)),
            too_short=(5, 0.2),
            too_long=(1000, 0.7),
            marginal=0.6,
        )
    if field_name == "location_name":
        return _score_text(
            stats,
            min_string_share=0.7,
            bands=((3, 50, 1.0), (2, 100, 0.8)),
            too_short=(2, 0.2),
            too_long=(100, 0.6),
            marginal=0.5,
        )
    if field_name == "location":
        return _score_text(
            stats,
            min_string_share=0.7,
            bands=((3, 100, 1.0), (2, 500, 0.8)),
            too_short=(2, 0.2),
            too_long=(500, 0.6),
            marginal=0.5,
        )
    if field_name == "timestamp":
        return _score_timestamp(stats)
    if field_name == "latitude":
        return _score_coordinate(stats, LATITUDE_BOUNDS)
    if field_name == "longitude":
        return _score_coordinate(stats, LONGITUDE_BOUNDS)
    return 0.0


# ---------------------------------------------------------------------------
# Detector
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldMatch:
    path: str
    score: float
    strategy: str
    language: str | None = None


@dataclass(frozen=True)
class FieldMappingResolution:
    """
    Final semantic field -> source column mapping.
    """

    language: str
    matches: dict[str, FieldMatch]

    def path_for(self, field_name: str) -> str | None:
        match = self.matches.get(field_name)
        return match.path if match else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "language": self.language,
            "mappings": {name: self.path_for(name) for name in SEMANTIC_FIELDS},
            "match_strategies": {name: match.strategy for name, match in self.matches.items()},
            "scores": {name: round(match.score, 4) for name, match in self.matches.items()},
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any] | None) -> "FieldMappingResolution":
        payload = payload or {}
        mappings = payload.get("mappings") or {}
        strategies = payload.get("match_strategies") or {}
        scores = payload.get("scores") or {}
        matches = {
            name: FieldMatch(
                path=str(path),
                score=float(scores.get(name, 1.0)),
                strategy=str(strategies.get(name, "language")),
            )
            for name, path in mappings.items()
            if path
        }
        return cls(language=str(payload.get("language") or BASE_LANGUAGE), matches=matches)


class FieldMappingDetector:
    """
    Resolves semantic event fields from field statistics.

    The declared language's patterns are tried first; a field left unmatched
    falls back to the base language. Dataset overrides always win.
    """

    def __init__(self, *, base_language: str = BASE_LANGUAGE) -> None:
        self._base_language = base_language

    def detect(
        self,
        field_stats: Mapping[str, Mapping[str, Any]],
        *,
        language: str | None,
        overrides: Mapping[str, Any] | None = None,
    ) -> FieldMappingResolution:
        declared = (language or self._base_language).lower()
        top_level = {
            path: stats
            for path, stats in field_stats.items()
            if "[]" not in path
        }
        matches: dict[str, FieldMatch] = {}

        matches.update(self._resolve_overrides(overrides, top_level))

        for field_name in ("latitude", "longitude"):
            if field_name in matches:
                continue
            match = self._best_match(top_level, _COMPILED_COORDINATE_PATTERNS[field_name], field_name)
            if match is not None:
                matches[field_name] = FieldMatch(path=match[0], score=match[1], strategy="language")

        for field_name in ("title", "description", "location_name", "timestamp", "location"):
            if field_name in matches:
                continue
            match = self._detect_field(top_level, field_name, declared)
            if match is not None:
                matches[field_name] = match

        logger.debug(
            "Field mappings detected language=%s fields=%s",
            declared,
            {name: match.path for name, match in matches.items()},
        )
        return FieldMappingResolution(language=declared, matches=matches)

    def _detect_field(
        self,
        field_stats: Mapping[str, Mapping[str, Any]],
        field_name: str,
        language: str,
    ) -> FieldMatch | None:
        by_language = _COMPILED_FIELD_PATTERNS[field_name]
        primary_language = language if language in by_language else self._base_language
        found = self._best_match(field_stats, by_language[primary_language], field_name)
        if found is not None:
            strategy = "language" if primary_language == language else "fallback"
            return FieldMatch(path=found[0], score=found[1], strategy=strategy, language=primary_language)

        if primary_language != self._base_language:
            found = self._best_match(field_stats, by_language[self._base_language], field_name)
            if found is not None:
                return FieldMatch(path=found[0], score=found[1], strategy="fallback", language=self._base_language)
        return None

    @staticmethod
    def _best_match(
        field_stats: Mapping[str, Mapping[str, Any]],
        patterns: Sequence[re.Pattern[str]],
        field_name: str,
    ) -> tuple[str, float] | None:
        best: tuple[str, float] | None = None
        for path, stats in field_stats.items():
            leaf = path.rsplit(".", 1)[-1].strip()
            index = next((i for i, pattern in enumerate(patterns) if pattern.search(leaf)), -1)
            if index < 0:
                continue
            validation = validate_field_type(stats, field_name)
            if validation == 0:
                continue
            score = 0.6 * (1 - index / len(patterns)) + 0.4 * validation
            if best is None or score > best[1]:
                best = (path, score)
        return best

    @staticmethod
    def _resolve_overrides(
        overrides: Mapping[str, Any] | None,
        field_stats: Mapping[str, Mapping[str, Any]],
    ) -> dict[str, FieldMatch]:
        if not overrides:
            return {}
        lookup = {normalize_header(path): path for path in field_stats}
        resolved: dict[str, FieldMatch] = {}
        for raw_name, source_column in overrides.items():
            field_name = str(raw_name).strip()
            if field_name.endswith("_path"):
                field_name = field_name[: -len("_path")]
            if field_name not in SEMANTIC_FIELDS or not source_column:
                logger.warning("Ignoring field mapping override field=%s column=%s", raw_name, source_column)
                continue
            matched = field_stats.get(str(source_column)) and str(source_column)
            matched = matched or lookup.get(normalize_header(str(source_column)))
            if matched is None:
                logger.warning(
                    "Field mapping override points to a missing column field=%s column=%s",
                    field_name,
                    source_column,
                )
                continue
            resolved[field_name] = FieldMatch(path=matched, score=1.0, strategy="override")
        return resolved
