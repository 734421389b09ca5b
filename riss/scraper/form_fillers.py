"""Per-mode search form fillers.

Each search mode has its own sidebar tab, form layout, submission mechanism
and option codes. A :class:`FormFiller` subclass carries all of that as class
data; :meth:`FormFiller.assignments` turns :class:`SearchCriteria` into an
ordered list of :class:`FieldAssignment` values and :meth:`FormFiller.fill`
applies them in one round trip through :data:`FILL_SCRIPT`.
"""
from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import date
from typing import Any, ClassVar, Mapping, Optional, Sequence

from playwright.sync_api import Error as PWError, Page

from . import config
from .criteria import SearchCriteria, SearchMode
from .error_codes import ErrorCode
from .logging_utils import _scraper_event
from .session import wait_seconds
from .utils import log_line

INDEX_TYPE_CODES: Mapping[str, str] = {
    "Deeds": "DEE",
    "Mortgages": "MTG",
    "Partnerships": "PTR",
    "UCC": "FIN",
    "Service Discharge": "DIS",
    "Veteran Graves": "VET",
}
DEFAULT_INDEX_CODES: tuple[str, ...] = ("DEE", "MTG")

SORT_CODES: Mapping[str, str] = {
    "MATCH ASC": "[Match] ASC",
    "FILE DATE ASC": "[FileDateSort] ASC",
    "FILE NUMBER ASC": "[InstrumentNum] ASC",
    "TYPE ASC": "[DocDesc] ASC",
    "MATCH DESC": "[Match] DESC",
    "FILE DATE DESC": "[FileDateSort] DESC",
    "FILE NUMBER DESC": "[InstrumentNum] DESC",
    "TYPE DESC": "[DocDesc] DESC",
}

# Name-based forms sort on a cast of the file date.
SORT_CODES_BY_NAME: Mapping[str, str] = {
    **SORT_CODES,
    "FILE DATE ASC": "CAST([FileDate] as DATE) ASC",
    "FILE DATE DESC": "CAST([FileDate] as DATE) DESC",
}

SIDE_CODES: Mapping[str, str] = {"Both": "%", "Grantor": "1", "Grantee": "2", "One": "1", "Two": "2"}

BOOK_PAGE_INDEX_CODES: Mapping[str, str] = {
    "All": "%", "%": "%",
    "DEED": "DBK", "DBK": "DBK", "Deeds": "DBK",
    "MTG": "MBK", "MBK": "MBK", "Mortgages": "MBK", "Mortgage": "MBK",
    "PLT": "PBK", "PBK": "PBK",
}

PRE1980_INDEX_CODES: Mapping[str, str] = {
    "All": "%", "%": "%",
    "PDE": "PDE", "DEED": "PDE", "Deeds": "PDE",
    "PMT": "PMT", "MTG": "PMT", "Mortgages": "PMT", "Mortgage": "PMT",
}

MORE_FILTERS_SELECTOR = "button.togglebutton[data-id='addition'], button:has-text('More Filters')"

START_DATE = '#StartDate, input[name="StartDate"]'
END_DATE = '#EndDate, input[name="EndDate"]'
INDEX_TYPE = '#IndexType, select[name="IndexType"]'
SORT = '#Sort, select[name="Sort"]'
SIDE = '#Side, select[name="Side"]'
LAST_NAME = '#LastName, input[name="LastName"]'
FIRST_NAME = '#FirstName, input[name="FirstName"]'
LAST_NAME_SEARCH = '#LastName_Search, select[name="LastName_Search"]'
FIRST_NAME_SEARCH = '#FirstName_Search, select[name="FirstName_Search"]'

# Field kinds understood by FILL_SCRIPT.
TEXT = "text"
SELECT = "select"
MULTI = "multi"
FUZZY_MULTI = "fuzzy_multi"
OPTION = "option"
CHECKBOX = "checkbox"

FILL_SCRIPT = """
({scope, fields}) => {
    const root = scope ? document.querySelector(scope) : document;
    if (!root) return { error: 'Form not found' };
    const fireChange = (el) => {
        el.dispatchEvent(new Event('input', { bubbles: true }));
        el.dispatchEvent(new Event('change', { bubbles: true }));
    };
    const chosenUpdate = (el) => {
        if (typeof jQuery !== 'undefined' && jQuery(el).data('chosen')) jQuery(el).trigger('chosen:updated');
    };
    const selected = (el) => Array.from(el.options).filter(o => o.selected).map(o => o.value);
    const result = {};
    for (const f of fields) {
        const el = root.querySelector(f.selector);
        if (!el) continue;
        if (f.kind === 'text') {
            el.value = f.value || '';
            fireChange(el);
            result[f.key] = el.value;
        } else if (f.kind === 'select') {
            if (!f.value) continue;
            el.value = f.value;
            fireChange(el); chosenUpdate(el);
            result[f.key] = el.value;
        } else if (f.kind === 'multi') {
            const wanted = f.value || [];
            if (!wanted.length) continue;
            Array.from(el.options).forEach(o => { o.selected = wanted.includes(o.value); });
            fireChange(el); chosenUpdate(el);
            result[f.key] = selected(el);
        } else if (f.kind === 'fuzzy_multi') {
            const targets = (f.value || []).map(t => (t || '').trim()).filter(Boolean);
            if (!targets.length) continue;
            Array.from(el.options).forEach(o => {
                const val = (o.value || '').trim();
                const txt = (o.textContent || '').trim();
                const txtUpper = txt.toUpperCase();
                o.selected = targets.some(t => {
                    const tu = t.toUpperCase();
                    return val === t || txt === t || txtUpper === tu || (tu.length >= 3 && txtUpper.includes(tu));
                });
            });
            fireChange(el); chosenUpdate(el);
            result[f.key] = selected(el);
        } else if (f.kind === 'option') {
            const wanted = (f.value || '').trim().toUpperCase();
            if (!wanted) continue;
            const opt = Array.from(el.options).find(o =>
                (o.value || '').trim().toUpperCase() === wanted || (o.textContent || '').trim().toUpperCase() === wanted);
            if (!opt) continue;
            el.value = opt.value;
            fireChange(el); chosenUpdate(el);
            result[f.key] = el.value;
        } else if (f.kind === 'checkbox') {
            el.checked = !!f.value;
            fireChange(el);
            result[f.key] = el.checked;
        }
    }
    return result;
}
"""

SUBMIT_FORM_SCRIPT = """
(selectors) => {
    for (const sel of selectors) {
        const form = document.querySelector(sel);
        if (form) { form.submit(); return sel; }
    }
    return null;
}
"""

REWRITE_AND_SUBMIT_SCRIPT = """
({selectors, action}) => {
    for (const sel of selectors) {
        const form = document.querySelector(sel);
        if (form) { form.action = action; form.submit(); return sel; }
    }
    return null;
}
"""


class FormFillError(RuntimeError):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.error_code = ErrorCode.SITE_STRUCTURE


@dataclass(frozen=True)
class FieldAssignment:
    key: str
    selector: str
    kind: str
    value: Any

    def as_payload(self) -> dict[str, Any]:
        return asdict(self)


def translate_index_types(names: Sequence[str]) -> list[str]:
    """Map display index types to portal codes, falling back to deeds and mortgages."""

    codes: list[str] = []
    for name in names:
        code = INDEX_TYPE_CODES.get((name or "").strip())
        if code and code not in codes:
            codes.append(code)
    return codes or list(DEFAULT_INDEX_CODES)


def normalize_name_search(value: Optional[str]) -> str:
    text = (value or "").strip().lower()
    if text == "contains":
        return "Contains"
    if text == "exactly":
        return "Exactly"
    return "BeginWith"


def default_date_range(criteria: SearchCriteria, today: Optional[date] = None) -> tuple[str, str]:
    start = criteria.start_date or (today or date.today()).isoformat()
    end = criteria.end_date or start
    return start, end


class FormFiller:
    """Base class for the search form variants."""

    mode: ClassVar[SearchMode]
    tab_label: ClassVar[str]
    signature_selector: ClassVar[str]
    signature_state: ClassVar[str] = "attached"
    table_selector: ClassVar[str] = "#dataTable2"
    form_scope: ClassVar[Optional[str]] = None
    opens_more_filters: ClassVar[bool] = False
    sort_codes: ClassVar[Mapping[str, str]] = SORT_CODES
    default_sort_code: ClassVar[str] = "[FileDateSort] ASC"
    captcha_input_selector: ClassVar[Optional[str]] = None
    # Submission: either rewrite a form action, or click a button with a form fallback.
    form_action: ClassVar[Optional[str]] = None
    search_button: ClassVar[Optional[str]] = None
    submit_forms: ClassVar[tuple[str, ...]] = ()

    def __init__(self, today: Optional[date] = None) -> None:
        self._today = today

    def sort_code(self, criteria: SearchCriteria) -> str:
        return self.sort_codes.get(criteria.sort_order, self.default_sort_code)

    def date_range(self, criteria: SearchCriteria) -> tuple[str, str]:
        return default_date_range(criteria, self._today)

    def assignments(self, criteria: SearchCriteria) -> list[FieldAssignment]:
        raise NotImplementedError

    def _name_filters(self, criteria: SearchCriteria) -> list[FieldAssignment]:
        return [
            FieldAssignment("lastName", LAST_NAME, TEXT, criteria.last_name.upper()),
            FieldAssignment("firstName", FIRST_NAME, TEXT, criteria.first_name.upper()),
            FieldAssignment("lastNameSearch", LAST_NAME_SEARCH, SELECT, normalize_name_search(criteria.last_name_search)),
            FieldAssignment("firstNameSearch", FIRST_NAME_SEARCH, SELECT, normalize_name_search(criteria.first_name_search)),
        ]

    def _date_fields(self, criteria: SearchCriteria) -> list[FieldAssignment]:
        start, end = self.date_range(criteria)
        return [
            FieldAssignment("startValue", START_DATE, TEXT, start),
            FieldAssignment("endValue", END_DATE, TEXT, end),
        ]

    def _index_field(self, criteria: SearchCriteria) -> FieldAssignment:
        return FieldAssignment("idxSelected", INDEX_TYPE, MULTI, translate_index_types(criteria.index_types))

    def _sort_field(self, criteria: SearchCriteria, selector: str = SORT) -> FieldAssignment:
        return FieldAssignment("sortValue", selector, SELECT, self.sort_code(criteria))

    def select_tab(self, page: Page) -> None:
        tab = page.get_by_text(self.tab_label, exact=False).first
        tab.wait_for(state="visible", timeout=config.PLAYWRIGHT_FORM_FIELD_TIMEOUT_SECONDS * 1000)
        tab.scroll_into_view_if_needed()
        tab.click()
        wait_seconds(page, 0.5)

    def wait_for_form(self, page: Page) -> None:
        page.locator(self.signature_selector).first.wait_for(
            state=self.signature_state,
            timeout=config.PLAYWRIGHT_FORM_FIELD_TIMEOUT_SECONDS * 1000,
        )

    def _open_more_filters(self, page: Page) -> None:
        button = page.locator(MORE_FILTERS_SELECTOR).first
        try:
            if button.count() > 0:
                button.click()
                wait_seconds(page, 0.3)
        except PWError as exc:
            log_line(f"[SEARCH] More Filters toggle failed: {exc}")

    def fill(self, page: Page, criteria: SearchCriteria) -> dict[str, Any]:
        """Apply the mode's field assignments and return what the page accepted."""

        fields = self.assignments(criteria)
        _scraper_event(
            "search",
            phase="form_fill",
            mode=self.mode.value,
            fields={f.key: f.value for f in fields},
        )
        if self.opens_more_filters:
            self._open_more_filters(page)
        applied = page.evaluate(
            FILL_SCRIPT,
            {"scope": self.form_scope, "fields": [f.as_payload() for f in fields]},
        )
        applied = applied if isinstance(applied, dict) else {}
        if applied.get("error"):
            raise FormFillError(f"{self.mode.value} form fill failed: {applied['error']}")
        log_line(f"[SEARCH] {self.mode.value} form fill result: {json.dumps(applied, default=str)}")
        return applied

    def fill_captcha(self, page: Page, solution: str) -> None:
        if not self.captcha_input_selector:
            return
        page.locator(self.captcha_input_selector).first.fill(solution.strip().upper())

    def submit(self, page: Page) -> None:
        """Submit the form using the mode's mechanism."""

        log_line(f"[SEARCH] Submitting {self.mode.value} form...")
        if self.form_action:
            page.evaluate(
                REWRITE_AND_SUBMIT_SCRIPT,
                {"selectors": list(self.submit_forms), "action": self.form_action},
            )
            return

        if self.search_button:
            button = page.locator(self.search_button).first
            if button.count() > 0:
                button.click(timeout=config.PLAYWRIGHT_CLICK_TIMEOUT_MS)
                page.wait_for_load_state("load")
                return
        if self.submit_forms:
            page.evaluate(SUBMIT_FORM_SCRIPT, list(self.submit_forms))
        page.wait_for_load_state("load")


class ByDateFiller(FormFiller):
    mode = SearchMode.BY_DATE
    tab_label = "BY DATE"
    signature_selector = "#StartDateD, #StartDate, input[name='StartDate'], input[type='date']"
    signature_state = "visible"
    default_sort_code = "[InstrumentNum] ASC"
    captcha_input_selector = "#captchaid, input[name='captcha']"
    search_button = "#searchD"

    def assignments(self, criteria: SearchCriteria) -> list[FieldAssignment]:
        start, end = self.date_range(criteria)
        return [
            FieldAssignment("startValue", '#StartDateD, input[name="StartDate"]', TEXT, start),
            FieldAssignment("endValue", '#EndDateD, input[name="EndDate"]', TEXT, end),
            self._index_field(criteria),
            self._sort_field(criteria),
        ]


class ByNameFiller(FormFiller):
    mode = SearchMode.BY_NAME
    tab_label = "BY NAME"
    signature_selector = "#LastName, input[name='LastName']"
    signature_state = "visible"
    table_selector = "table.table-select"
    sort_codes = SORT_CODES_BY_NAME
    default_sort_code = "CAST([FileDate] as DATE) ASC"
    form_action = "/name_search/all_matches.cfm"
    submit_forms = ("#myForm1", "form:has(#LastName)", "form")

    def assignments(self, criteria: SearchCriteria) -> list[FieldAssignment]:
        return [
            *self._name_filters(criteria),
            *self._date_fields(criteria),
            FieldAssignment("sideValue", SIDE, SELECT, SIDE_CODES.get(criteria.side, "%")),
            self._index_field(criteria),
            self._sort_field(criteria),
        ]


class ByTypeFiller(FormFiller):
    mode = SearchMode.BY_TYPE
    tab_label = "BY TYPE"
    signature_selector = "#document_type, select[name='selectedtype']"
    default_sort_code = "[FileDateSort] ASC"
    form_action = "/type_search/all_matches.cfm"
    submit_forms = ("#myForm1", "form:has(#document_type)", "form")

    def assignments(self, criteria: SearchCriteria) -> list[FieldAssignment]:
        return [
            FieldAssignment(
                "docTypeSelected",
                '#document_type, select[name="selectedtype"]',
                FUZZY_MULTI,
                list(criteria.document_types),
            ),
            FieldAssignment(
                "includeFederal",
                '#federallien, input[name="federallien"]',
                CHECKBOX,
                criteria.include_federal_lien,
            ),
            self._index_field(criteria),
            *self._name_filters(criteria),
            *self._date_fields(criteria),
            FieldAssignment("sideValue", SIDE, SELECT, SIDE_CODES.get(criteria.side, "%")),
            # This form names its sort select in lower case.
            self._sort_field(criteria, '#Sort, select[name="sort"]'),
        ]


class _PropertySearchFiller(FormFiller):
    opens_more_filters = True
    sort_codes = SORT_CODES_BY_NAME
    default_sort_code = "CAST([FileDate] as DATE) ASC"

    def _trailing_fields(self, criteria: SearchCriteria) -> list[FieldAssignment]:
        return [
            self._index_field(criteria),
            self._sort_field(criteria),
            *self._name_filters(criteria),
            *self._date_fields(criteria),
        ]


class ByMunicipalityFiller(_PropertySearchFiller):
    mode = SearchMode.BY_MUNICIPALITY
    tab_label = "BY MUNICIPALITY"
    signature_selector = "select[name='properties'], #lot"
    search_button = "#searchP"
    submit_forms = ("#myForm",)

    def assignments(self, criteria: SearchCriteria) -> list[FieldAssignment]:
        return [
            FieldAssignment("properties", 'select[name="properties"], #properties', OPTION, criteria.properties),
            FieldAssignment("lot", '#lot, input[name="lot"]', TEXT, criteria.lot),
            *self._trailing_fields(criteria),
        ]


class BySubdivisionFiller(_PropertySearchFiller):
    mode = SearchMode.BY_SUBDIVISION
    tab_label = "BY SUBDIVISION"
    signature_selector = "#properties, #IndexType, #lot"
    search_button = "#searchP"
    submit_forms = ("#myForm",)

    def assignments(self, criteria: SearchCriteria) -> list[FieldAssignment]:
        return [
            FieldAssignment(
                "propertiesSelected",
                '#properties, select[name="properties"]',
                FUZZY_MULTI,
                list(criteria.subdivisions),
            ),
            FieldAssignment("lot", '#lot, input[name="lot"]', TEXT, criteria.lot),
            *self._trailing_fields(criteria),
        ]


class BySTRFiller(_PropertySearchFiller):
    mode = SearchMode.BY_STR
    tab_label = "BY STR"
    signature_selector = "select[name='properties'], #section, #IndexType"
    search_button = "#search"
    submit_forms = ("form[action*='str_search']", "#myForm")

    def assignments(self, criteria: SearchCriteria) -> list[FieldAssignment]:
        return [
            FieldAssignment("properties", 'select[name="properties"], #properties', OPTION, criteria.properties or "ALL"),
            FieldAssignment("section", '#section, select[name="section"]', OPTION, criteria.section),
            FieldAssignment("township", '#township, select[name="township"]', OPTION, criteria.township),
            FieldAssignment("range", '#range, select[name="range"]', OPTION, criteria.range),
            *self._trailing_fields(criteria),
        ]


class ByInstrumentFiller(FormFiller):
    mode = SearchMode.BY_INSTRUMENT
    tab_label = "BY INSTRUMENT"
    signature_selector = "#InstrumentYear, #InstrumentNumber, input[name='InstrumentYear']"
    default_sort_code = "[FileDateSort] ASC"
    captcha_input_selector = (
        "#captchaid, input[name*='captcha' i], input[id*='captcha' i], input[name*='verify' i]"
    )
    search_button = "#searchI"
    submit_forms = ('form[name="searchForm3"]',)

    def assignments(self, criteria: SearchCriteria) -> list[FieldAssignment]:
        return [
            FieldAssignment("year", '#InstrumentYear, input[name="InstrumentYear"]', TEXT, criteria.instrument_year),
            FieldAssignment("number", '#InstrumentNumber, input[name="InstrumentNumber"]', TEXT, criteria.instrument_number),
            self._index_field(criteria),
            self._sort_field(criteria),
        ]


class ByBookPageFiller(FormFiller):
    mode = SearchMode.BY_BOOK_PAGE
    tab_label = "BY BOOK"
    signature_selector = "#Book, #Page, input[name='Book']"
    table_selector = "#dataTable13"
    search_button = "#searchBP"
    submit_forms = ('form[action*="bookpage_search"]',)

    def assignments(self, criteria: SearchCriteria) -> list[FieldAssignment]:
        fields = [
            FieldAssignment("book", '#Book, input[name="Book"]', TEXT, criteria.book),
            FieldAssignment("page", '#Page, input[name="Page"]', TEXT, criteria.page),
        ]
        if criteria.page_thru:
            fields.append(FieldAssignment("thru", '#Thru, input[name="Thru"]', TEXT, criteria.page_thru))
        fields.append(
            FieldAssignment(
                "indexType",
                '#IndexTypeBP, select[name="IndexType"]',
                OPTION,
                BOOK_PAGE_INDEX_CODES.get(criteria.book_page_index_type, "%"),
            )
        )
        return fields


class ByFicheFiller(FormFiller):
    mode = SearchMode.BY_FICHE
    tab_label = "BY FICHE"
    signature_selector = "#Fiche, input[name='Fiche']"
    sort_codes = SORT_CODES_BY_NAME
    default_sort_code = "CAST([FileDate] as DATE) DESC"
    search_button = "#search"
    submit_forms = ("form[action*='fiche_search']", "#myForm")

    def assignments(self, criteria: SearchCriteria) -> list[FieldAssignment]:
        return [
            FieldAssignment("fiche", '#Fiche, input[name="Fiche"]', TEXT, criteria.fiche),
            self._index_field(criteria),
            self._sort_field(criteria),
        ]


class ByPre1980Filler(FormFiller):
    mode = SearchMode.BY_PRE1980
    tab_label = "BY PRE"
    signature_selector = "#PreYear, #PreNumber, input[name='PreNumber']"
    table_selector = "#dataTable13"
    form_scope = '#searchFormPre, form[action*="pre1980_search"]'
    search_button = "#searchPre"
    submit_forms = ('#searchFormPre, form[action*="pre1980_search"]',)

    def assignments(self, criteria: SearchCriteria) -> list[FieldAssignment]:
        year = criteria.pre1980_year or "1971"
        if not (year.isdigit() and 1971 <= int(year) <= 1979):
            year = "1971"
        return [
            FieldAssignment("preYear", '#PreYear, select[name="PreYear"]', OPTION, year),
            FieldAssignment("preNumber", '#PreNumber, input[name="PreNumber"]', TEXT, criteria.pre1980_number),
            FieldAssignment(
                "indexType",
                '#IndexType, select[name="IndexType"]',
                OPTION,
                PRE1980_INDEX_CODES.get(criteria.pre1980_index_type, "%"),
            ),
        ]


FILLERS: Mapping[SearchMode, type[FormFiller]] = {
    cls.mode: cls
    for cls in (
        ByDateFiller,
        ByNameFiller,
        ByTypeFiller,
        ByMunicipalityFiller,
        BySubdivisionFiller,
        BySTRFiller,
        ByInstrumentFiller,
        ByBookPageFiller,
        ByFicheFiller,
        ByPre1980Filler,
    )
}


def filler_for(mode: SearchMode, *, today: Optional[date] = None) -> FormFiller:
    return FILLERS[mode](today=today)


__all__ = [
    "FILL_SCRIPT",
    "FormFillError",
    "FILLERS",
    "FieldAssignment",
    "FormFiller",
    "default_date_range",
    "filler_for",
    "normalize_name_search",
    "translate_index_types",
]
