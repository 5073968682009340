"""
Prompting the language model for replacement proposals and reading its answer.
"""

import json
import re
from datetime import date
from typing import Any, Dict, Iterable, List, Mapping, Optional

import structlog

from bidfill.fill.mapper import Paragraph
from bidfill.models import ReplacementRequest

logger = structlog.get_logger(__name__)

TEMPLATE_FILL_SYSTEM = """Vyplňuješ formuláře pro české veřejné zakázky. Dostaneš text DOCX šablony \
(každý odstavec začíná svým číslem v hranatých závorkách) a data, která do ní patří. Najdi VŠECHNA místa, \
kde má účastník doplnit údaj, a vrať přesné náhrady ve formátu JSON.

TYPICKÁ MÍSTA K VYPLNĚNÍ:
1. "doplní účastník", "doplní uchazeč", "vyplní účastník", "vyplní uchazeč"
2. "[doplnit]", "[vyplnit]", "[účastník vyplní]", "[DOPLNIT]"
3. podtržítka (3 a více) jako prázdné pole
4. tečky (4 a více) nebo "…" jako prázdné pole
5. popisek bez hodnoty, např. "IČO:" na konci řádku nebo v buňce tabulky
6. datum zapsané jako "XX.XX.XXXX" nebo "__.__.____"

PŘÍKLADY:
- "Obchodní firma: doplní účastník" -> "Obchodní firma: Firma s.r.o."
- "IČ dodavatele: " -> "IČ dodavatele: 12345678"
- "V ........ dne ........" -> "V Praze dne 01.02.2025"
- "podpisem oprávněné osoby" není místo k vyplnění

PRAVIDLA:
1. "original" je přesná kopie textu ze šablony, bez čísla odstavce, nezkrácená a neupravená
2. K obecným výrazům jako "doplní účastník" přidej 5 až 10 slov okolního textu, aby byl "original" jednoznačný
3. Opakuje-li se stejný výraz víckrát, uveď každý výskyt zvlášť s vlastním kontextem
4. Text, který se nemění, v "replacement" zopakuj beze změny
5. Vyplň vše, co z dat zjistíš; neznámý údaj nahraď "N/A"
6. Datum vždy ve tvaru DD.MM.YYYY
7. Ceny vždy ve tvaru "1 234 567,00 Kč"
8. Jiný text šablony neměň

Odpověz POUZE polem JSON, bez markdownu a bez komentářů:
[
  {"original": "přesný text ze šablony", "replacement": "tentýž text s doplněnou hodnotou"}
]"""

SECOND_PASS_SUFFIX = """

DRUHÉ KOLO: v dokumentu po prvním vyplnění zůstala nevyplněná místa. Zaměř se jen na ně. \
Text "original" musí odpovídat současnému znění dokumentu znak po znaku."""

_TENDER_LABELS = [
    ("nazev_zakazky", "Název zakázky"),
    ("evidencni_cislo", "Evidenční číslo"),
    ("zadavatel", "Zadavatel"),
    ("zadavatel_ico", "IČO zadavatele"),
    ("zadavatel_kontakt", "Kontakt zadavatele"),
    ("cena_bez_dph", "Nabídková cena bez DPH"),
    ("cena_s_dph", "Nabídková cena s DPH"),
    ("dph", "DPH"),
    ("datum", "Datum"),
    ("doba_plneni_od", "Doba plnění od"),
    ("doba_plneni_do", "Doba plnění do"),
    ("lhuta_nabidek", "Lhůta pro podání nabídek"),
    ("produkt_nazev", "Nabízený produkt"),
    ("produkt_popis", "Popis produktu"),
]


def render_indexed_text(paragraphs: Iterable[Paragraph]) -> str:
    """One line per non-empty paragraph, prefixed with its stable index."""
    return "\n".join(f"[{p.index}] {p.plain_text}" for p in paragraphs if p.plain_text.strip())


def build_user_message(
    template_text: str,
    template_name: str,
    company: Mapping[str, str],
    tender: Mapping[str, str],
    remaining_markers: Optional[List[str]] = None,
) -> str:
    company_lines = "\n".join(f"- {k}: {v}" for k, v in company.items() if v and not k.startswith("_"))

    tender_lines = []
    for key, label in _TENDER_LABELS:
        value = tender.get(key)
        if key == "datum" and not value:
            value = date.today().strftime("%d.%m.%Y")
        if not value:
            continue
        if key == "dph":
            label = f"DPH ({tender.get('dph_sazba') or '21'} %)"
        tender_lines.append(f"- {label}: {value}")

    message = (
        f"ŠABLONA: {template_name}\n---\n{template_text}\n---\n\n"
        f"DATA FIRMY (účastník):\n{company_lines}\n\n"
        f"DATA ZAKÁZKY:\n" + "\n".join(tender_lines)
    )
    if remaining_markers:
        listed = "\n".join(f"- {m}" for m in remaining_markers)
        message += f"\n\nNEVYPLNĚNÁ MÍSTA:\n{listed}"
    message += (
        "\n\nNajdi všechna místa k vyplnění. Každý výskyt opakujícího se výrazu uveď zvlášť "
        "s jednoznačným kontextem. Vrať pole JSON."
    )
    return message


# --- Lenient parsing ---

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?\s*```")
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")
_OBJECT_RE = re.compile(
    r'\{\s*"original"\s*:\s*"((?:[^"\\]|\\.)*)"\s*,\s*"replacement"\s*:\s*"((?:[^"\\]|\\.)*)"\s*\}',
    re.S,
)


def _escape_bare_controls(text: str) -> str:
    """Escapes raw newlines and tabs that sit inside JSON string literals."""
    out = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            elif ch == "\n":
                out.append("\\n")
                continue
            elif ch == "\r":
                out.append("\\r")
                continue
            elif ch == "\t":
                out.append("\\t")
                continue
        elif ch == '"':
            in_string = True
        out.append(ch)
    return "".join(out)


def _to_requests(data: Any) -> Optional[List[ReplacementRequest]]:
    if isinstance(data, dict):
        data = data.get("replacements", data.get("items"))
    if not isinstance(data, list):
        return None
    requests = []
    for item in data:
        if not isinstance(item, dict):
            continue
        original = item.get("original")
        replacement = item.get("replacement")
        if isinstance(original, str) and isinstance(replacement, str) and original:
            requests.append(ReplacementRequest(original=original, replacement=replacement))
    return requests


def _unescape_json_string(raw: str) -> str:
    try:
        return json.loads(f'"{raw}"')
    except json.JSONDecodeError:
        return raw.replace('\\"', '"').replace("\\n", "\n").replace("\\\\", "\\")


def parse_proposals(text: str) -> List[ReplacementRequest]:
    """
    Reads the model's answer leniently.

    Accepts a bare JSON list, a list inside a fenced code block, or whatever
    lies between the first "[" and the last "]". Broken JSON is repaired
    (raw newlines/tabs in strings, trailing commas) and, failing that,
    individual {"original", "replacement"} objects are picked out with a
    regex. Never raises; an unreadable answer is an empty list.
    """
    if not text or not text.strip():
        return []

    candidate = text.strip()
    fence = _FENCE_RE.search(candidate)
    if fence:
        candidate = fence.group(1).strip()
    if not candidate.startswith(("[", "{")):
        first, last = candidate.find("["), candidate.rfind("]")
        if first != -1 and last > first:
            candidate = candidate[first : last + 1]

    for attempt in (candidate, _TRAILING_COMMA_RE.sub(r"\1", _escape_bare_controls(candidate))):
        try:
            requests = _to_requests(json.loads(attempt))
        except json.JSONDecodeError:
            continue
        if requests is not None:
            return requests

    requests = [
        ReplacementRequest(original=_unescape_json_string(o), replacement=_unescape_json_string(r))
        for o, r in _OBJECT_RE.findall(text)
        if o
    ]
    if requests:
        logger.warning("Proposals recovered by object extraction", count=len(requests))
    else:
        logger.warning("Proposals could not be parsed", preview=text[:200])
    return requests
