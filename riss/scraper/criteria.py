"""Search criteria model and input parsing.

The run input is a JSON object shaped like the portal actor input (camelCase
keys). :func:`parse_criteria` validates it once, before any browser work, and
returns an immutable :class:`SearchCriteria` with every option canonicalised
to the spelling the form fillers expect.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Iterable, Mapping, Optional

from .error_codes import ErrorCode


class CriteriaError(ValueError):
    """Raised when the run input cannot describe a valid search."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.error_code = ErrorCode.CONFIG_INVALID


class SearchMode(str, Enum):
    BY_DATE = "ByDate"
    BY_NAME = "ByName"
    BY_TYPE = "ByType"
    BY_MUNICIPALITY = "ByMunicipality"
    BY_SUBDIVISION = "BySubdivision"
    BY_STR = "BySTR"
    BY_INSTRUMENT = "ByInstrument"
    BY_BOOK_PAGE = "ByBookPage"
    BY_FICHE = "ByFiche"
    BY_PRE1980 = "ByPre1980"

    @property
    def requires_captcha(self) -> bool:
        return self in (SearchMode.BY_DATE, SearchMode.BY_INSTRUMENT)

    @property
    def submits_form(self) -> bool:
        """True when results load by form post on the same page."""

        return self is not SearchMode.BY_DATE

    @property
    def uses_index_types(self) -> bool:
        return self not in (SearchMode.BY_BOOK_PAGE, SearchMode.BY_PRE1980)

    @property
    def uses_sort(self) -> bool:
        return self not in (SearchMode.BY_BOOK_PAGE, SearchMode.BY_PRE1980)

    @property
    def uses_name_filters(self) -> bool:
        return self in (
            SearchMode.BY_NAME,
            SearchMode.BY_TYPE,
            SearchMode.BY_MUNICIPALITY,
            SearchMode.BY_SUBDIVISION,
            SearchMode.BY_STR,
        )


class ExportMode(str, Enum):
    DATA_ONLY = "ExportDataOnly"
    IMAGE_ONLY = "ExportImageOnly"
    ALL = "All"

    @property
    def exports_images(self) -> bool:
        return self in (ExportMode.IMAGE_ONLY, ExportMode.ALL)

    @property
    def exports_links(self) -> bool:
        return self is ExportMode.ALL


INDEX_TYPES: tuple[str, ...] = (
    "Deeds",
    "Mortgages",
    "Partnerships",
    "UCC",
    "Service Discharge",
    "Veteran Graves",
)
NAME_INDEX_TYPES: tuple[str, ...] = INDEX_TYPES[:5]
FICHE_INDEX_TYPES: tuple[str, ...] = ("Deeds", "Mortgages", "UCC")
DEFAULT_INDEX_TYPES: tuple[str, ...] = ("Deeds", "Mortgages")

SORT_ORDERS: tuple[str, ...] = (
    "MATCH ASC",
    "FILE DATE ASC",
    "FILE NUMBER ASC",
    "TYPE ASC",
    "MATCH DESC",
    "FILE DATE DESC",
    "FILE NUMBER DESC",
    "TYPE DESC",
)
FICHE_SORT_ORDERS: tuple[str, ...] = ("FILE DATE ASC", "FILE DATE DESC")
DEFAULT_SORT_ORDER = "FILE DATE ASC"

SIDES: tuple[str, ...] = ("Both", "One", "Two")
NAME_SEARCH_MODIFIERS: tuple[str, ...] = ("BeginWith", "Contains", "Exactly")

BOOK_PAGE_INDEX_TYPES: tuple[str, ...] = (
    "All", "%", "DEED", "DBK", "Deeds", "MTG", "MBK", "Mortgages", "Mortgage", "PLT", "PBK",
)
PRE1980_INDEX_TYPES: tuple[str, ...] = ("All", "%", "PDE", "PMT")

MUNICIPALITIES: tuple[str, ...] = (
    "AMITYVILLE", "ARLINGTON", "BACHMAN", "BEAVERTOWN", "BROOKVILLE", "CARLISLE",
    "CENTERVILLE", "CHAMBERSBURG", "CLAY TOWNSHIP", "CLAYTON", "DAYTON", "DODSON",
    "ENGLEWOOD", "FARMERSVILLE", "GERMAN TOWNSHIP", "GERMANTOWN", "HARRISON TOWNSHIP",
    "JEFFERSON TOWNSHIP", "JOHNSVILLE", "KETTERING", "LIBERTY", "LITTLE YORK",
    "MADISON TOWNSHIP", "MIAMISBURG", "MORAINE", "MURLIN HEIGHTS", "NEW LEBANON",
    "OAKWOOD", "PHILLIPSBURG", "PYRMONT", "RIVERSIDE", "SALEM",
    "SPRINGBORO (MONTGOMERY & WARREN)", "SUNBURY", "TROTWOOD", "UNION", "VANDALIA",
    "VERONA", "WEST CARROLLTON", "WOODBOURNE",
)

STR_PROPERTIES: tuple[str, ...] = (
    "ALL", "BACHMAN", "BROOKVILLE", "BUTLER TOWNSHIP", "CARLISLE", "CENTERVILLE",
    "CHAMBERSBURG", "CLAY TOWNSHIP", "CLAYTON", "DAYTON", "ENGLEWOOD", "FARMERSVILLE",
    "GERMAN TOWNSHIP", "GERMANTOWN", "HARRISON TOWNSHIP", "HUBER HEIGHTS",
    "JACKSON TOWNSHIP", "JEFFERSON TOWNSHIP", "JOHNSVILLE", "KETTERING", "LITTLE YORK",
    "MAD RIVER TOWNSHIP", "MADISON TOWNSHIP", "MIAMI TOWNSHIP", "MIAMISBURG", "MORAINE",
    "MURLIN HEIGHTS", "NEW LEBANON", "OAKWOOD", "PERRY TOWNSHIP", "PHILLIPSBURG",
    "PYRMONT", "RANDOLPH TOWNSHIP", "RIVERSIDE", "SPRINGBORO (MONTGOMERY & WARREN)",
    "SUNBURY", "TROTWOOD", "UNION", "VANDALIA", "VERONA", "WASHINGTON TOWNSHIP",
    "WEST CARROLLTON", "WOODBOURNE",
)

_DATE_FORMAT = "%Y-%m-%d"
_ALNUM = re.compile(r"^[A-Za-z0-9]+$")
_DIGITS = re.compile(r"^[0-9]+$")


@dataclass(frozen=True)
class SearchCriteria:
    mode: SearchMode = SearchMode.BY_DATE
    export_mode: ExportMode = ExportMode.DATA_ONLY
    sort_order: str = DEFAULT_SORT_ORDER
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    index_types: tuple[str, ...] = DEFAULT_INDEX_TYPES
    last_name: str = ""
    first_name: str = ""
    side: str = "Both"
    last_name_search: Optional[str] = None
    first_name_search: Optional[str] = None
    document_types: tuple[str, ...] = ()
    include_federal_lien: bool = False
    properties: str = ""
    subdivisions: tuple[str, ...] = ()
    lot: str = ""
    section: str = ""
    township: str = ""
    range: str = ""
    instrument_year: str = ""
    instrument_number: str = ""
    fiche: str = ""
    book: str = ""
    page: str = ""
    page_thru: str = ""
    book_page_index_type: str = "All"
    pre1980_year: Optional[str] = None
    pre1980_number: str = ""
    pre1980_index_type: str = "All"
    captcha_api_key: Optional[str] = field(default=None, repr=False)

    def date_for_filename(self, today: Optional[date] = None) -> str:
        """Run date used in artifact keys and the output file name (MM-dd-yyyy)."""

        if self.start_date:
            try:
                return datetime.strptime(self.start_date, _DATE_FORMAT).strftime("%m-%d-%Y")
            except ValueError:
                pass
        return (today or date.today()).strftime("%m-%d-%Y")

    def summary(self) -> dict[str, Any]:
        """Loggable view of the criteria; the solver key is only flagged."""

        return {
            "mode": self.mode.value,
            "export_mode": self.export_mode.value,
            "sort_order": self.sort_order,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "index_types": list(self.index_types),
            "side": self.side,
            "captcha_key": "[set]" if self.captcha_api_key else "(not set)",
        }


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    return str(value).strip()


def _optional_text(value: Any) -> Optional[str]:
    text = _text(value)
    return text or None


def _string_list(value: Any) -> Optional[list[str]]:
    """Return the raw entries of a list field, or ``None`` when absent or empty."""

    if value is None:
        return None
    if isinstance(value, str):
        items = [value]
    elif isinstance(value, Iterable):
        items = [_text(v) for v in value]
    else:
        items = [_text(value)]
    return items or None


def _flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return _text(value).lower() in {"1", "true", "yes", "on"}


def _canonical(value: str, allowed: Iterable[str], message: str) -> str:
    needle = value.strip().lower()
    for option in allowed:
        if option.lower() == needle:
            return option
    raise CriteriaError(message)


def _parse_date(value: Optional[str], field_name: str, mode_label: str) -> Optional[date]:
    if not value:
        return None
    try:
        return datetime.strptime(value, _DATE_FORMAT).date()
    except ValueError as exc:
        raise CriteriaError(
            f"{field_name} must use format yyyy-MM-dd (e.g. 2026-02-06) for '{mode_label}' search mode."
        ) from exc


def _validate_dates(
    start: Optional[str], end: Optional[str], mode: SearchMode, *, required: bool
) -> None:
    if required and not start:
        raise CriteriaError(f"startDate is required for '{mode.value}' search mode.")
    if required and not end:
        raise CriteriaError(f"endDate is required for '{mode.value}' search mode.")
    start_value = _parse_date(start, "startDate", mode.value)
    end_value = _parse_date(end, "endDate", mode.value)
    if start_value and end_value and start_value > end_value:
        raise CriteriaError(
            f"startDate must be earlier than or equal to endDate for '{mode.value}' search mode."
        )


def _validate_index_types(raw: Optional[list[str]], mode: SearchMode) -> tuple[str, ...]:
    if raw is None:
        return DEFAULT_INDEX_TYPES
    entries = [entry for entry in raw if entry]
    if not entries:
        raise CriteriaError(
            f"indexTypes is required for '{mode.value}' search mode and must contain at least one index type."
        )
    if mode is SearchMode.BY_NAME:
        allowed = NAME_INDEX_TYPES
    elif mode is SearchMode.BY_FICHE:
        allowed = FICHE_INDEX_TYPES
    else:
        allowed = INDEX_TYPES
    canonical: list[str] = []
    for entry in entries:
        value = _canonical(
            entry,
            allowed,
            f"Invalid indexTypes value for '{mode.value}' search mode: '{entry}'. "
            f"Allowed values: {', '.join(allowed)}.",
        )
        if value not in canonical:
            canonical.append(value)
    return tuple(canonical)


def _validate_sort(value: Optional[str], mode: SearchMode) -> str:
    if not value:
        return DEFAULT_SORT_ORDER
    allowed = FICHE_SORT_ORDERS if mode is SearchMode.BY_FICHE else SORT_ORDERS
    return _canonical(
        value,
        allowed,
        f"For '{mode.value}' search mode, SortOrder must be one of: {', '.join(allowed)}.",
    )


def _validate_name_search(value: Optional[str], field_name: str, mode: SearchMode) -> Optional[str]:
    if not value:
        return None
    return _canonical(
        value,
        NAME_SEARCH_MODIFIERS,
        f"For '{mode.value}' search mode, {field_name} must be one of: BeginWith, Contains, Exactly.",
    )


def unwrap_input(payload: Mapping[str, Any]) -> Mapping[str, Any]:
    """Return the inner object of an ``{"input": {...}}`` wrapper."""

    for key in ("input", "Input"):
        inner = payload.get(key)
        if isinstance(inner, Mapping):
            return inner
    return payload


def parse_criteria(payload: Optional[Mapping[str, Any]]) -> SearchCriteria:
    """Validate the run input and build :class:`SearchCriteria`.

    Raises :class:`CriteriaError` on the first rule that fails.
    """

    source = unwrap_input(payload or {})
    # Keys are matched case-insensitively, as the platform input is.
    data = {str(k).lower(): v for k, v in source.items()}

    def get(key: str) -> Any:
        return data.get(key.lower())

    mode_text = _text(get("searchMode")) or SearchMode.BY_DATE.value
    mode = SearchMode(
        _canonical(
            mode_text,
            [m.value for m in SearchMode],
            f"Unknown search mode: {mode_text}.",
        )
    )

    export_text = _text(get("exportMode")) or ExportMode.DATA_ONLY.value
    export_mode = ExportMode(
        _canonical(
            export_text,
            [m.value for m in ExportMode],
            "exportMode must be one of: ExportDataOnly, ExportImageOnly, All.",
        )
    )

    start_date = _optional_text(get("startDate"))
    end_date = _optional_text(get("endDate"))
    _validate_dates(start_date, end_date, mode, required=mode is SearchMode.BY_DATE)

    index_types = DEFAULT_INDEX_TYPES
    if mode.uses_index_types:
        index_types = _validate_index_types(_string_list(get("indexTypes")), mode)

    sort_order = DEFAULT_SORT_ORDER
    if mode.uses_sort:
        sort_order = _validate_sort(_optional_text(get("sortOrder")), mode)

    side = "Both"
    last_name_search = first_name_search = None
    if mode.uses_name_filters:
        last_name_search = _validate_name_search(_optional_text(get("lastNameSearch")), "lastNameSearch", mode)
        first_name_search = _validate_name_search(_optional_text(get("firstNameSearch")), "firstNameSearch", mode)
        side_text = _optional_text(get("side"))
        if side_text and mode in (SearchMode.BY_NAME, SearchMode.BY_TYPE):
            side = _canonical(
                side_text,
                SIDES,
                f"For '{mode.value}' search mode, side must be one of: Both, One, Two.",
            )

    last_name = _text(get("lastName"))
    if mode is SearchMode.BY_NAME and not last_name:
        raise CriteriaError("LastName is required for 'ByName' search mode.")

    document_types: tuple[str, ...] = ()
    if mode is SearchMode.BY_TYPE:
        raw_types = _string_list(get("documentTypes")) or _string_list(get("documentType")) or []
        document_types = tuple(t for t in raw_types if t)
        if not document_types:
            raise CriteriaError(
                "At least one document type is required for 'ByType' search mode "
                '(e.g. documentTypes: ["DEED", "MORTGAGE"]).'
            )

    properties = _text(get("properties")) or _text(get("municipality"))
    if mode is SearchMode.BY_MUNICIPALITY:
        if not properties:
            raise CriteriaError(
                "Properties is required for 'ByMunicipality' search (e.g. DAYTON, BACHMAN)."
            )
        properties = _canonical(
            properties,
            MUNICIPALITIES,
            f"Properties value '{properties}' is invalid for 'ByMunicipality' search.",
        )

    section = _text(get("section"))
    township = _text(get("township"))
    range_value = _text(get("range"))
    if mode is SearchMode.BY_STR:
        if not (section or township or range_value):
            raise CriteriaError(
                "BySTR requires at least one of: section, township, range "
                '(e.g. section: "01", township: "1", or range: "5MRS").'
            )
        properties = _canonical(
            properties or "ALL",
            STR_PROPERTIES,
            f"Properties value '{properties}' is invalid for 'BySTR' search.",
        )

    subdivisions: tuple[str, ...] = ()
    if mode is SearchMode.BY_SUBDIVISION:
        raw_subs = _string_list(get("subdivisions")) or _string_list(get("subdivision")) or []
        subdivisions = tuple(s for s in raw_subs if s)
        if not subdivisions:
            raise CriteriaError(
                "Subdivisions (or subdivision) is required for 'BySubdivision' search "
                '(e.g. subdivisions: ["ABBEY (LOTS 9 - 32)"]).'
            )

    instrument_year = _text(get("instrumentYear"))
    instrument_number = _text(get("instrumentNumber"))
    if mode is SearchMode.BY_INSTRUMENT:
        if len(instrument_year) != 4:
            raise CriteriaError(
                "InstrumentYear is required for 'ByInstrument' search mode (4-digit year, e.g., 2024)."
            )
        if not instrument_number:
            raise CriteriaError("InstrumentNumber is required for 'ByInstrument' search mode.")

    book = _text(get("book"))
    page = _text(get("page"))
    page_thru = _text(get("pageThru"))
    book_page_index_type = _text(get("bookPageIndexType")) or "All"
    if mode is SearchMode.BY_BOOK_PAGE:
        if not book:
            raise CriteriaError("Book is required for 'ByBookPage' search mode.")
        if not _ALNUM.match(book):
            raise CriteriaError("Book must contain letters and/or numbers only for 'ByBookPage' search mode.")
        if not page:
            raise CriteriaError("Page is required for 'ByBookPage' search mode.")
        if not _DIGITS.match(page):
            raise CriteriaError("Page must be numeric for 'ByBookPage' search mode.")
        if page_thru and not _DIGITS.match(page_thru):
            raise CriteriaError("PageThru must be numeric when provided for 'ByBookPage' search mode.")
        book_page_index_type = _canonical(
            book_page_index_type,
            BOOK_PAGE_INDEX_TYPES,
            "bookPageIndexType must be one of: All, DEED, MTG, PLT (or their DBK/MBK/PBK/% equivalents).",
        )

    fiche = _text(get("fiche"))
    if mode is SearchMode.BY_FICHE:
        if not fiche:
            raise CriteriaError("Fiche is required for 'ByFiche' search mode.")
        if not (6 <= len(fiche) <= 10) or not _ALNUM.match(fiche):
            raise CriteriaError(
                "Fiche must be between 6 and 10 alphanumeric characters for 'ByFiche' search mode (e.g. 910022a05)."
            )
        fiche = fiche.upper()

    pre1980_year = _optional_text(get("pre1980Year"))
    pre1980_number = _text(get("pre1980Number"))
    pre1980_index_type = _text(get("pre1980IndexType")) or "All"
    if mode is SearchMode.BY_PRE1980:
        if not pre1980_number:
            raise CriteriaError("Pre1980Number is required for 'ByPre1980' search mode.")
        if not _DIGITS.match(pre1980_number):
            raise CriteriaError("Pre1980Number must be numeric for 'ByPre1980' search mode.")
        if pre1980_year is not None:
            if not _DIGITS.match(pre1980_year) or not 1971 <= int(pre1980_year) <= 1979:
                raise CriteriaError(
                    "Pre1980Year (if provided) must be a 4-digit year between 1971 and 1979 "
                    "for 'ByPre1980' search mode."
                )
        pre1980_index_type = _canonical(
            pre1980_index_type,
            PRE1980_INDEX_TYPES,
            "pre1980IndexType must be one of: All, PDE, PMT.",
        )

    return SearchCriteria(
        mode=mode,
        export_mode=export_mode,
        sort_order=sort_order,
        start_date=start_date,
        end_date=end_date,
        index_types=index_types,
        last_name=last_name,
        first_name=_text(get("firstName")),
        side=side,
        last_name_search=last_name_search,
        first_name_search=first_name_search,
        document_types=document_types,
        include_federal_lien=_flag(get("includeFederalLien")),
        properties=properties,
        subdivisions=subdivisions,
        lot=_text(get("lot")),
        section=section,
        township=township,
        range=range_value,
        instrument_year=instrument_year,
        instrument_number=instrument_number,
        fiche=fiche,
        book=book,
        page=page,
        page_thru=page_thru,
        book_page_index_type=book_page_index_type,
        pre1980_year=pre1980_year,
        pre1980_number=pre1980_number,
        pre1980_index_type=pre1980_index_type,
        captcha_api_key=_optional_text(get("twoCaptchaApiKey")),
    )


__all__ = [
    "CriteriaError",
    "ExportMode",
    "SearchCriteria",
    "SearchMode",
    "parse_criteria",
    "unwrap_input",
    "INDEX_TYPES",
    "MUNICIPALITIES",
    "SORT_ORDERS",
    "STR_PROPERTIES",
]
