from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Strategy(str, Enum):
    """Matching strategies, in the order the engine tries them."""

    EXACT = "exact"
    NORMALIZED = "normalized"
    MULTI_PARAGRAPH = "multi-paragraph"
    FUZZY = "fuzzy"
    LABEL = "label"
    RAW_ENCODED = "raw-encoded"
    RAW_DIRECT = "raw-direct"
    RAW_TOLERANT = "raw-tolerant"
    RAW_PROXIMITY = "raw-proximity"
    NOT_FOUND = "not-found"


class ReplacementRequest(BaseModel):
    """
    A single substitution proposed by the language model.
    The engine treats it as a context-carrying "search and replace".
    """

    original: str = Field(
        ...,
        description=(
            "Text as it appears in the template, including a few words of surrounding context "
            "so that the same placeholder in different places can be told apart."
        ),
    )
    replacement: str = Field(..., description="The same passage with the placeholder filled in.")


class ReplacementOutcome(BaseModel):
    request: ReplacementRequest
    strategy_used: Strategy
    matched_text: Optional[str] = Field(None, description="Decoded document text that was replaced.")
    applied_text: Optional[str] = Field(None, description="Decoded text written in its place.")
    pass_number: int = 1

    @property
    def applied(self) -> bool:
        return self.strategy_used != Strategy.NOT_FOUND


class CompanyProfile(BaseModel):
    """Identification data of the bidding company."""

    model_config = ConfigDict(extra="allow")

    nazev: str = Field(..., description="Registered business name.")
    ico: str = ""
    dic: str = ""
    sidlo: str = ""
    ucet: str = ""
    iban: str = ""
    bic: str = ""
    datova_schranka: str = ""
    rejstrik: str = ""
    jednajici_osoba: str = ""
    telefon: str = ""
    email: str = ""

    def as_fields(self) -> Dict[str, str]:
        return {k: str(v) for k, v in self.model_dump().items() if v not in (None, "")}


class TenderData(BaseModel):
    """Tender metadata and the offered product, as produced by the analysis steps."""

    model_config = ConfigDict(extra="allow")

    nazev_zakazky: str = ""
    evidencni_cislo: str = ""
    zadavatel: str = ""
    zadavatel_ico: str = ""
    zadavatel_kontakt: str = ""
    cena_bez_dph: str = ""
    cena_s_dph: str = ""
    dph: str = ""
    dph_sazba: str = "21"
    datum: str = ""
    doba_plneni_od: str = ""
    doba_plneni_do: str = ""
    lhuta_nabidek: str = ""
    produkt_nazev: str = ""
    produkt_popis: str = ""

    def as_fields(self) -> Dict[str, str]:
        return {k: str(v) for k, v in self.model_dump().items() if v not in (None, "")}


class TemplateCategory(str, Enum):
    COVER_SHEET = "kryci_list"
    SWORN_STATEMENT = "cestne_prohlaseni"
    SUBCONTRACTOR_LIST = "seznam_poddodavatelu"
    PURCHASE_CONTRACT = "kupni_smlouva"
    TECHNICAL_SPECIFICATION = "technicka_specifikace"


class ClassifiedTemplate(BaseModel):
    path: Path
    category: TemplateCategory
    matched_by: str = Field(..., description="'filename', 'content' or 'fallback'.")


class FillResult(BaseModel):
    """Result of filling one template."""

    document: bytes
    mode: str = Field("engine", description="'engine' or 'tags' (direct key substitution).")
    outcomes: List[ReplacementOutcome] = Field(default_factory=list)
    passes: int = 0
    unfilled_remaining: int = 0

    @property
    def applied_count(self) -> int:
        return sum(1 for o in self.outcomes if o.applied)

    @property
    def skipped(self) -> List[ReplacementOutcome]:
        return [o for o in self.outcomes if not o.applied]

    def strategy_usage(self) -> Dict[str, int]:
        usage: Dict[str, int] = {}
        for outcome in self.outcomes:
            key = outcome.strategy_used.value
            usage[key] = usage.get(key, 0) + 1
        return usage


class TemplateFillReport(BaseModel):
    """Per-template entry of a batch fill."""

    source: Path
    category: Optional[TemplateCategory] = None
    success: bool
    output: Optional[Path] = None
    error: Optional[str] = None
    strategy_usage: Dict[str, int] = Field(default_factory=dict)
    unfilled_remaining: int = 0
